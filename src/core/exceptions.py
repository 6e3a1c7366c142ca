"""Exception types shared across the engine."""


class JobMapError(Exception):
    """Base class for engine errors."""


class ConfigurationError(JobMapError):
    """A required credential or setting is missing in a production deployment."""

    def __init__(self, message: str, hint: str = "") -> None:
        super().__init__(message)
        self.hint = hint or message


class UpstreamError(JobMapError):
    """A non-2xx response or transport failure from an upstream service."""

    def __init__(self, service: str, status: int | None, text: str) -> None:
        self.service = service
        self.status = status
        self.text = text
        label = status if status is not None else "transport"
        super().__init__(f"{service} error {label}: {text}")


class NormalizationError(JobMapError):
    """A raw provider record could not be mapped to a Job."""


class ResponseShapeError(JobMapError):
    """An outgoing response failed schema validation."""
