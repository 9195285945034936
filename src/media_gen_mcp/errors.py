"""Exception types raised by tools, providers and the job poller."""

from typing import List, Optional


class MediaGenError(Exception):
    """Base class for all errors surfaced to MCP callers."""


class MissingCredential(MediaGenError):
    """A credential required at startup is not configured."""


class NoCredentialsAvailable(MediaGenError):
    """No configured provider can serve the requested capability."""


class CapabilityUnsupported(MediaGenError):
    """The resolved provider does not offer the requested capability."""

    def __init__(self, provider: str, capability: str, message: Optional[str] = None):
        self.provider = provider
        self.capability = capability
        super().__init__(
            message or f"Provider '{provider}' does not support '{capability}'"
        )


class InvalidArgument(MediaGenError):
    """A tool argument is missing or malformed."""

    def __init__(self, field: str, message: Optional[str] = None):
        self.field = field
        super().__init__(message or f"Missing required argument: {field}")


class SourceNotFound(MediaGenError):
    """A source file referenced by a tool call does not exist."""

    def __init__(self, path: str):
        self.path = path
        super().__init__(f"Source file not found: {path}")


class UnknownTool(MediaGenError):
    """The requested tool is not exposed by this server."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Unknown tool: {name}")


class ProviderError(MediaGenError):
    """A backend failed to produce a result."""


class ProviderRequestError(ProviderError):
    """A backend answered with a non-2xx HTTP status."""

    def __init__(self, status: int, body: str, url: Optional[str] = None):
        self.status = status
        self.body = body
        self.url = url
        super().__init__(f"HTTP {status}: {body}")


class JobFailed(ProviderError):
    """A backend job reached its terminal failure state."""

    def __init__(self, message: str, job_id: Optional[str] = None):
        self.job_id = job_id
        super().__init__(message)


class JobTimeout(ProviderError):
    """A backend job did not finish within the poll attempt cap."""

    def __init__(self, elapsed_seconds: float, attempts: int, job_id: Optional[str] = None):
        self.elapsed_seconds = elapsed_seconds
        self.attempts = attempts
        self.job_id = job_id
        super().__init__(
            f"Job timed out after {elapsed_seconds:g} seconds ({attempts} status checks)"
        )


class InvalidProviderResponse(ProviderError):
    """A successful backend response carried no usable output."""


class AllProvidersFailed(MediaGenError):
    """Every provider in a fallback chain failed."""

    def __init__(self, capability: str, errors: List[str]):
        self.capability = capability
        self.errors = errors
        detail = "; ".join(errors) if errors else "no provider attempted"
        super().__init__(f"{capability} failed with all available providers: {detail}")
