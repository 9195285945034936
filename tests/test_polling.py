"""Tests for the job poller state machine and output selection."""

import pytest

from conftest import make_client, prediction
from media_gen_mcp.errors import InvalidProviderResponse, JobFailed, JobTimeout
from media_gen_mcp.polling import (
    Job,
    JobPoller,
    JobStatus,
    OutputShape,
    PollPhase,
    PollPolicy,
    PollState,
    classify_output,
    select_output_url,
    transition,
)


BASE_URL = "https://api.replicate.com/v1"


def job(status, output=None, error=None):
    return Job(id="j1", status=status, poll_url=f"{BASE_URL}/predictions/j1", output=output, error=error)


class TestJobFromPrediction:
    """Test decoding Replicate prediction bodies."""

    def test_status_mapping(self):
        assert Job.from_prediction(prediction(status="starting"), BASE_URL).status is JobStatus.PENDING
        assert Job.from_prediction(prediction(status="processing"), BASE_URL).status is JobStatus.RUNNING
        assert Job.from_prediction(prediction(status="succeeded"), BASE_URL).status is JobStatus.SUCCEEDED
        assert Job.from_prediction(prediction(status="failed"), BASE_URL).status is JobStatus.FAILED
        assert Job.from_prediction(prediction(status="canceled"), BASE_URL).status is JobStatus.FAILED

    def test_unknown_status_is_pending(self):
        assert Job.from_prediction(prediction(status="queued"), BASE_URL).status is JobStatus.PENDING

    def test_poll_url_from_urls_get(self):
        data = prediction(pred_id="abc")
        assert Job.from_prediction(data, BASE_URL).poll_url == f"{BASE_URL}/predictions/abc"

    def test_poll_url_fallback(self):
        data = {"id": "xyz", "status": "starting"}
        assert Job.from_prediction(data, "https://host/v1").poll_url == "https://host/v1/predictions/xyz"

    def test_missing_id_raises(self):
        with pytest.raises(InvalidProviderResponse, match="No prediction ID"):
            Job.from_prediction({"status": "starting"}, BASE_URL)

    def test_malformed_urls_raise(self):
        data = {"id": "abc", "status": "starting", "urls": ["https://x"]}
        with pytest.raises(InvalidProviderResponse, match="Malformed prediction urls"):
            Job.from_prediction(data, BASE_URL)

    def test_failure_messages(self):
        assert Job.from_prediction(prediction(status="failed"), BASE_URL).error == "Generation failed"
        assert Job.from_prediction(prediction(status="canceled"), BASE_URL).error == "canceled"
        failed = Job.from_prediction(prediction(status="failed", error="NSFW content"), BASE_URL)
        assert failed.error == "NSFW content"


class TestTransition:
    """Test the pure poll state transition."""

    policy = PollPolicy(interval_seconds=1.0, max_attempts=3)

    def test_pending_moves_to_polling(self):
        state = transition(PollState(), job(JobStatus.PENDING), self.policy)
        assert state.phase is PollPhase.POLLING

    def test_succeeded(self):
        state = transition(PollState(phase=PollPhase.POLLING, attempts=1), job(JobStatus.SUCCEEDED), self.policy)
        assert state.phase is PollPhase.SUCCEEDED
        assert state.attempts == 1

    def test_failed(self):
        state = transition(PollState(phase=PollPhase.POLLING, attempts=2), job(JobStatus.FAILED), self.policy)
        assert state.phase is PollPhase.FAILED

    def test_attempt_cap_times_out(self):
        state = transition(PollState(phase=PollPhase.POLLING, attempts=3), job(JobStatus.RUNNING), self.policy)
        assert state.phase is PollPhase.TIMED_OUT

    def test_success_on_last_attempt_wins(self):
        state = transition(PollState(phase=PollPhase.POLLING, attempts=3), job(JobStatus.SUCCEEDED), self.policy)
        assert state.phase is PollPhase.SUCCEEDED

    def test_final_state_is_absorbing(self):
        done = PollState(phase=PollPhase.FAILED, attempts=1)
        assert transition(done, job(JobStatus.SUCCEEDED), self.policy) is done

    def test_terminal_statuses(self):
        assert JobStatus.SUCCEEDED.is_terminal
        assert JobStatus.FAILED.is_terminal
        assert not JobStatus.RUNNING.is_terminal


class TestClassifyOutput:
    """Test output shape classification."""

    def test_single_url(self):
        result = classify_output("https://x/a.png")
        assert result.shape is OutputShape.URL
        assert result.urls == ("https://x/a.png",)

    def test_url_list(self):
        result = classify_output(["https://x/a.gif", "https://x/a.obj"])
        assert result.shape is OutputShape.URL_LIST
        assert len(result.urls) == 2

    def test_nested(self):
        result = classify_output({"mesh": "https://x/m.obj"})
        assert result.shape is OutputShape.NESTED
        assert result.field == "mesh"

    def test_empty_shapes(self):
        assert classify_output(None).shape is OutputShape.EMPTY
        assert classify_output("").shape is OutputShape.EMPTY
        assert classify_output([]).shape is OutputShape.EMPTY
        assert classify_output({"other": "x"}).shape is OutputShape.EMPTY
        assert classify_output(42).shape is OutputShape.EMPTY


class TestSelectOutputUrl:
    """Test picking the artifact URL."""

    def test_prefers_obj_over_gif(self):
        output = ["https://x/render.gif", "https://x/mesh.obj"]
        assert select_output_url(output, preferred=(".obj",), excluded=(".gif",)) == "https://x/mesh.obj"

    def test_skips_excluded_without_preferred(self):
        output = ["https://x/render.gif", "https://x/mesh.ply"]
        assert select_output_url(output, preferred=(".obj",), excluded=(".gif",)) == "https://x/mesh.ply"

    def test_first_when_everything_excluded(self):
        output = ["https://x/a.gif", "https://x/b.gif"]
        assert select_output_url(output, excluded=(".gif",)) == "https://x/a.gif"

    def test_extension_ignores_query_string(self):
        output = ["https://x/a.gif?sig=1", "https://x/m.obj?sig=2"]
        assert select_output_url(output, preferred=(".obj",)) == "https://x/m.obj?sig=2"

    def test_nested_list(self):
        output = {"mesh": ["https://x/a.glb", "https://x/b.obj"]}
        assert select_output_url(output, preferred=(".obj",)) == "https://x/b.obj"

    def test_empty_raises(self):
        with pytest.raises(InvalidProviderResponse, match="No output URL"):
            select_output_url([])


class TestJobPoller:
    """Test the poll loop against a scripted client."""

    @pytest.mark.asyncio
    async def test_pending_running_succeeded(self, no_sleep):
        client = make_client(get=[
            prediction(status="processing"),
            prediction(status="succeeded", output="https://x/out.png"),
        ])
        poller = JobPoller(client, PollPolicy(1.0, 120), sleep=no_sleep, base_url=BASE_URL)

        async def create():
            return Job.from_prediction(prediction(status="starting"), BASE_URL)

        artifact = await poller.run_job(create)

        assert client.get_json.await_count == 2
        assert no_sleep.await_count == 2
        no_sleep.assert_awaited_with(1.0)
        client.download.assert_awaited_once_with("https://x/out.png")
        assert artifact.data

    @pytest.mark.asyncio
    async def test_already_succeeded_skips_polling(self, no_sleep):
        client = make_client()
        poller = JobPoller(client, PollPolicy(1.0, 120), sleep=no_sleep)

        async def create():
            return Job.from_prediction(prediction(status="succeeded", output=["https://x/a.png"]), BASE_URL)

        await poller.run_job(create)

        client.get_json.assert_not_awaited()
        no_sleep.assert_not_awaited()
        client.download.assert_awaited_once_with("https://x/a.png")

    @pytest.mark.asyncio
    async def test_failed_stops_without_download(self, no_sleep):
        client = make_client(get=[prediction(status="failed", error="CUDA out of memory")])
        poller = JobPoller(client, PollPolicy(1.0, 120), sleep=no_sleep)

        async def create():
            return Job.from_prediction(prediction(), BASE_URL)

        with pytest.raises(JobFailed, match="CUDA out of memory") as exc:
            await poller.run_job(create)

        assert exc.value.job_id == "pred-1"
        assert client.get_json.await_count == 1
        client.download.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_timeout_after_exactly_max_attempts(self, no_sleep):
        client = make_client(get=[prediction(status="processing")] * 3)
        poller = JobPoller(client, PollPolicy(5.0, 3), sleep=no_sleep)

        async def create():
            return Job.from_prediction(prediction(), BASE_URL)

        with pytest.raises(JobTimeout) as exc:
            await poller.run_job(create)

        assert exc.value.attempts == 3
        assert exc.value.elapsed_seconds == 15.0
        assert client.get_json.await_count == 3
        client.download.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_custom_output_selector(self, no_sleep):
        client = make_client(get=[
            prediction(status="succeeded", output=["https://x/r.gif", "https://x/m.obj"]),
        ])
        poller = JobPoller(client, PollPolicy(1.0, 10), sleep=no_sleep)

        async def create():
            return Job.from_prediction(prediction(), BASE_URL)

        await poller.run_job(
            create,
            select_output=lambda out: select_output_url(out, preferred=(".obj",), excluded=(".gif",)),
        )

        client.download.assert_awaited_once_with("https://x/m.obj")
