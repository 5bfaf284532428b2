"""
Error taxonomy for the node trust bootstrap.

Every fatal error names the bootstrap step that failed so the operator
knows where to look before rerunning.
"""
from typing import List, Optional


class BootstrapError(Exception):
    """Base class for all bootstrap failures."""

    step = "bootstrap"

    def __init__(self, message: str, step: Optional[str] = None):
        super().__init__(message)
        if step:
            self.step = step

    def __str__(self):
        return f"[{self.step}] {super().__str__()}"


class GenerationError(BootstrapError):
    """Certificate authority or bundle generation failed."""

    step = "generate"


class TransientFailure(BootstrapError):
    """A single retrieval attempt failed and may be retried."""

    step = "retrieve"


class RetrievalExhausted(BootstrapError):
    """Every retrieval attempt failed."""

    step = "retrieve"

    def __init__(self, source_url: str, attempts: int, last_error: Optional[str] = None):
        message = f"Failed to download {source_url} after {attempts} attempts"
        if last_error:
            message += f" (last error: {last_error})"
        super().__init__(message)
        self.source_url = source_url
        self.attempts = attempts
        self.last_error = last_error


class InstallError(BootstrapError):
    """Writing the bundle or fixing its ownership/permissions failed."""

    step = "install"


class SessionError(BootstrapError):
    """The distribution session could not be started."""

    step = "serve"


class OperationCancelled(BootstrapError):
    """The operator interrupted the bootstrap before it could finish."""

    step = "cancel"


class ConfigError(BootstrapError, ValueError):
    """Configuration is missing required fields or holds invalid values."""

    step = "config"

    def __init__(self, fields: List[str], details: Optional[str] = None):
        message = "Missing or invalid configuration: " + ", ".join(fields)
        if details:
            message += f"\n{details}"
        super().__init__(message)
        self.fields = list(fields)
