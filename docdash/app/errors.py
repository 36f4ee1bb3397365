"""
Error taxonomy for the pipeline.

Rationale:
- Gateway and decoder errors are low level; each pipeline stage re-raises them
  wrapped in its own StageError so callers always know which stage failed.
- "No usable data" is a normal result, not an error, and has no class here.
"""

from typing import Optional


class DocDashError(Exception):
    """Base class for every error raised by the pipeline."""


class ConfigurationError(DocDashError):
    """Invalid or missing configuration. Fatal, no fallback."""


# ---------- ModelGateway ----------

class GatewayError(DocDashError):
    """The text-generation call could not produce content."""


class AuthenticationMissing(ConfigurationError, GatewayError):
    def __init__(self, message: str = "LLM API key not configured"):
        super().__init__(message)


class PromptTooLarge(GatewayError):
    def __init__(self, estimated_tokens: int, limit: int):
        self.estimated_tokens = estimated_tokens
        self.limit = limit
        super().__init__(f"Prompt too large: ~{estimated_tokens} tokens exceeds limit of {limit}")


class RemoteRejected(GatewayError):
    def __init__(self, status: int, message: str, token_limit: bool = False):
        self.status = status
        self.message = message
        # True when the rejection is about prompt/context length
        self.token_limit = token_limit
        super().__init__(f"AI API error: {status} - {message}")


class NetworkUnavailable(GatewayError):
    def __init__(self, message: str = "Network error: Could not reach AI service"):
        super().__init__(message)


class MalformedResponse(GatewayError):
    """A response arrived but had no usable message content."""


# ---------- ResponseDecoder ----------

class InvalidPayload(DocDashError):
    def __init__(self, message: str, excerpt: str = ""):
        self.excerpt = excerpt
        super().__init__(message)


# ---------- Pipeline stages ----------

class StageError(DocDashError):
    stage = "pipeline"

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        self.cause = cause
        super().__init__(message)


class ClassificationFailed(StageError):
    stage = "classification"


class ExtractionFailed(StageError):
    stage = "extraction"


class InsufficientData(ExtractionFailed):
    """The model answered with well-formed JSON but too few records."""

    def __init__(self, count: int, minimum: int):
        self.count = count
        self.minimum = minimum
        super().__init__(
            f"Insufficient data extracted for dashboard creation: "
            f"{count} record(s), need at least {minimum}"
        )


class ConfigSynthesisFailed(StageError):
    stage = "dashboard_config"


# ---------- Text extraction backend ----------

class DocumentExtractionError(DocDashError):
    """The uploaded file could not be turned into text."""


class UnsupportedFormat(DocumentExtractionError):
    pass


class NoReadableContent(DocumentExtractionError):
    pass
