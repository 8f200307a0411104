"""Exception hierarchy for the Ace query protocol and its fallback cache."""

from __future__ import annotations


class AceError(RuntimeError):
    """Base class for every failure raised by the Ace client, poller or cache."""


class AceTransportError(AceError):
    """Network failure, timeout or non-2xx HTTP status from MyGeotab."""


class AceApiError(AceError):
    """The response carried an explicit ``{"error": {...}}`` envelope.

    The remote message is forwarded verbatim as the exception message;
    ``error_names`` holds the JSON-RPC error names (e.g. ``InvalidUserException``).
    """

    def __init__(self, message: str, error_names: tuple[str, ...] = ()) -> None:
        super().__init__(message)
        self.error_names = error_names


class AceSchemaError(AceError):
    """A structurally successful response is missing a required field."""


class AceSessionError(AceError):
    """create-chat failed on every attempt."""

    def __init__(self, message: str, attempts: int) -> None:
        super().__init__(message)
        self.attempts = attempts


class AceQueryFailed(AceError):
    """Ace reported a terminal FAILED or ERROR status for the message group."""

    def __init__(self, status: str, detail: str | None = None) -> None:
        message = f"Ace query failed with status: {status}"
        if detail:
            message += f" ({detail})"
        super().__init__(message)
        self.status = status
        self.detail = detail


class AcePollTimeout(AceError):
    """The message group never reached a terminal status."""

    def __init__(self, attempts: int, elapsed_seconds: float) -> None:
        super().__init__(
            f"Ace: query did not complete after {attempts} attempts "
            f"(~{round(elapsed_seconds)}s)"
        )
        self.attempts = attempts
        self.elapsed_seconds = elapsed_seconds


class DemoFallbackMissing(AceError):
    """Demo mode is on and no fallback file exists for the key."""

    def __init__(self, key: str) -> None:
        super().__init__(f'[demo] No fallback file found for "{key}"')
        self.key = key


class CredentialsError(ValueError):
    """Required MyGeotab credentials are not configured."""
