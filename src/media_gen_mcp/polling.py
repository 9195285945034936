"""
Job Poller
==========

Drives "create job -> poll status -> fetch artifact" workflows against
prediction-style APIs (Replicate and friends).

The loop is an explicit state machine:

    CREATED -> POLLING -> SUCCEEDED | FAILED | TIMED_OUT

`transition()` is a pure function of (state, latest job, policy), so the
retry policy can be exercised without a network or a clock. `JobPoller`
wires it to an ApiClient and an injectable sleep.
"""

import asyncio
import logging
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, Sequence, Tuple

from .api_client import ApiClient, Artifact
from .errors import InvalidProviderResponse, JobFailed, JobTimeout


logger = logging.getLogger(__name__)


class JobStatus(Enum):
    """Backend-neutral job status."""
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.SUCCEEDED, JobStatus.FAILED)


# Replicate prediction statuses
REPLICATE_STATUS = {
    "starting": JobStatus.PENDING,
    "processing": JobStatus.RUNNING,
    "succeeded": JobStatus.SUCCEEDED,
    "failed": JobStatus.FAILED,
    "canceled": JobStatus.FAILED,
}


@dataclass(frozen=True)
class Job:
    """Snapshot of a backend job."""
    id: str
    status: JobStatus
    poll_url: str
    output: Any = None
    error: Optional[str] = None

    @classmethod
    def from_prediction(cls, data: Dict[str, Any], base_url: str) -> "Job":
        """Build a Job from a Replicate prediction body."""
        if not isinstance(data, dict) or not data.get("id"):
            raise InvalidProviderResponse("No prediction ID returned")

        raw_status = str(data.get("status") or "").lower()
        # Unknown statuses are treated as still queued
        status = REPLICATE_STATUS.get(raw_status, JobStatus.PENDING)

        urls = data.get("urls") or {}
        if not isinstance(urls, dict):
            raise InvalidProviderResponse(f"Malformed prediction urls: {urls!r}")
        poll_url = urls.get("get") or f"{base_url}/predictions/{data['id']}"

        error = data.get("error")
        if status is JobStatus.FAILED and not error:
            error = "canceled" if raw_status == "canceled" else "Generation failed"

        return cls(
            id=data["id"],
            status=status,
            poll_url=poll_url,
            output=data.get("output"),
            error=str(error) if error else None,
        )


@dataclass(frozen=True)
class PollPolicy:
    interval_seconds: float
    max_attempts: int


class PollPhase(Enum):
    CREATED = "created"
    POLLING = "polling"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    TIMED_OUT = "timed_out"

    @property
    def is_final(self) -> bool:
        return self in (PollPhase.SUCCEEDED, PollPhase.FAILED, PollPhase.TIMED_OUT)


@dataclass(frozen=True)
class PollState:
    phase: PollPhase = PollPhase.CREATED
    attempts: int = 0
    job: Optional[Job] = None


def transition(state: PollState, job: Job, policy: PollPolicy) -> PollState:
    """Next state after observing `job`.

    `state.attempts` must already count the status fetch that produced
    `job` (zero for the creation response).
    """
    if state.phase.is_final:
        return state
    if job.status is JobStatus.SUCCEEDED:
        return replace(state, phase=PollPhase.SUCCEEDED, job=job)
    if job.status is JobStatus.FAILED:
        return replace(state, phase=PollPhase.FAILED, job=job)
    if state.attempts >= policy.max_attempts:
        return replace(state, phase=PollPhase.TIMED_OUT, job=job)
    return replace(state, phase=PollPhase.POLLING, job=job)


# --- Output shape classification ---

class OutputShape(Enum):
    URL = "url"
    URL_LIST = "url_list"
    NESTED = "nested"
    EMPTY = "empty"


@dataclass(frozen=True)
class ClassifiedOutput:
    shape: OutputShape
    urls: Tuple[str, ...] = ()
    field: Optional[str] = None


def _string_urls(values: Sequence[Any]) -> Tuple[str, ...]:
    return tuple(v for v in values if isinstance(v, str) and v)


def classify_output(output: Any, nested_field: str = "mesh") -> ClassifiedOutput:
    """Decode a job output value into one of the known shapes."""
    if isinstance(output, str):
        if output:
            return ClassifiedOutput(OutputShape.URL, (output,))
        return ClassifiedOutput(OutputShape.EMPTY)

    if isinstance(output, (list, tuple)):
        urls = _string_urls(output)
        if urls:
            return ClassifiedOutput(OutputShape.URL_LIST, urls)
        return ClassifiedOutput(OutputShape.EMPTY)

    if isinstance(output, dict):
        value = output.get(nested_field)
        if isinstance(value, str) and value:
            return ClassifiedOutput(OutputShape.NESTED, (value,), nested_field)
        if isinstance(value, (list, tuple)):
            urls = _string_urls(value)
            if urls:
                return ClassifiedOutput(OutputShape.NESTED, urls, nested_field)
        return ClassifiedOutput(OutputShape.EMPTY, field=nested_field)

    return ClassifiedOutput(OutputShape.EMPTY)


def _has_extension(url: str, extensions: Sequence[str]) -> bool:
    path = url.lower().split("?", 1)[0]
    return any(path.endswith(ext) for ext in extensions)


def select_output_url(
    output: Any,
    preferred: Sequence[str] = (),
    excluded: Sequence[str] = (),
    nested_field: str = "mesh",
) -> str:
    """Pick the artifact URL to download from a job output."""
    classified = classify_output(output, nested_field)

    if classified.shape is OutputShape.EMPTY:
        raise InvalidProviderResponse("No output URL received from prediction")

    if classified.shape is OutputShape.URL:
        return classified.urls[0]

    if classified.shape is OutputShape.URL_LIST:
        for url in classified.urls:
            if _has_extension(url, preferred):
                return url
        for url in classified.urls:
            if not _has_extension(url, excluded):
                return url
        return classified.urls[0]

    # NESTED
    for url in classified.urls:
        if _has_extension(url, preferred):
            return url
    return classified.urls[0]


# --- Poller ---

OutputSelector = Callable[[Any], str]


class JobPoller:
    """Runs one backend job to completion, strictly sequentially."""

    def __init__(
        self,
        client: ApiClient,
        policy: PollPolicy,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        base_url: str = "",
        label: str = "job",
    ):
        self.client = client
        self.policy = policy
        self.sleep = sleep
        self.base_url = base_url
        self.label = label

    async def run_job(
        self,
        create: Callable[[], Awaitable[Job]],
        select_output: OutputSelector = select_output_url,
    ) -> Artifact:
        """Create the job, wait for a terminal state and fetch its artifact."""
        job = await create()
        state = transition(PollState(attempts=0), job, self.policy)

        while state.phase is PollPhase.POLLING:
            await self.sleep(self.policy.interval_seconds)
            job = await self.fetch_status(job)
            state = transition(replace(state, attempts=state.attempts + 1), job, self.policy)
            logger.info(
                f"[{self.label}] Status: {job.status.value} "
                f"(attempt {state.attempts}/{self.policy.max_attempts})"
            )

        if state.phase is PollPhase.FAILED:
            raise JobFailed(job.error or "Generation failed", job_id=job.id)

        if state.phase is PollPhase.TIMED_OUT:
            elapsed = state.attempts * self.policy.interval_seconds
            raise JobTimeout(elapsed, state.attempts, job_id=job.id)

        url = select_output(job.output)
        logger.info(f"[{self.label}] Downloading output from: {url}")
        return await self.client.download(url)

    async def fetch_status(self, job: Job) -> Job:
        data = await self.client.get_json(job.poll_url)
        return Job.from_prediction(data, self.base_url)
