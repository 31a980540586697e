"""Error taxonomy for the portal-interaction engine."""


class PortalError(Exception):
    """Base class for every error raised while talking to the portal."""


class ConfigurationError(PortalError):
    """No base URL or credentials are configured."""


class AuthenticationError(PortalError):
    """Login form missing, portal error text, or no positive login marker."""


class ProtocolStateError(PortalError):
    """
    A step could not find state it structurally requires.

    Usually means the portal markup drifted past what the extractor handles,
    so the message names the step and what was expected.
    """

    def __init__(self, step: str, expected: str) -> None:
        self.step = step
        self.expected = expected
        super().__init__(f"{step}: could not extract {expected}")


class NotFoundError(PortalError):
    """No open slot matches the requested time/court."""

    def __init__(self, message: str, available: dict[str, list[str]] | None = None) -> None:
        self.available = available or {}
        super().__init__(message)


class UncertainOutcomeError(PortalError):
    """The action may or may not have taken effect on the portal."""


class TransportError(PortalError):
    """Non-success HTTP status or a failed browser/network operation."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)


class TransportTimeoutError(TransportError):
    """A request or AJAX settle wait exceeded its bound."""
