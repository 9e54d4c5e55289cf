"""Exceptions related to netpol-gitops."""

__all__ = [
    "NetpolException",
    "InputException",
    "ConfigurationException",
    "CredentialsException",
    "CommandException",
    "GitException",
    "ProviderException",
    "TemplateValidationException",
    "ObjectNotFoundError",
    "ConflictError",
    "StatusUpdateException",
    "PathEscapeError",
]

_RATE_LIMIT_MARKERS = ("429", "rate limit", "too many requests")


class NetpolException(Exception):
    """Generic base exception used for this library."""


class InputException(NetpolException):
    """Raised when the input files or values are not formatted as expected."""


class ConfigurationException(InputException):
    """Raised when the configuration cannot be used, e.g. an unknown provider."""


class CredentialsException(ConfigurationException):
    """Raised when the Git credentials Secret is missing or incomplete."""


class CommandException(NetpolException):
    """Raised when there is a failure running a subcommand."""


class GitException(CommandException):
    """Raised when there is a failure running a git command."""


class ProviderException(NetpolException):
    """Raised when a Git provider API request fails."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code

    @property
    def is_not_found(self) -> bool:
        """Return true if the provider reported the object does not exist."""
        return self.status_code == 404

    @property
    def is_rate_limit(self) -> bool:
        """Return true if the provider rejected the request due to rate limits."""
        return self.status_code == 429 or is_rate_limit_error(self)


class TemplateValidationException(InputException):
    """Raised when a rendered template is rejected by a server-side dry-run."""

    def __init__(self, template: str, message: str) -> None:
        super().__init__(f"Template {template} validation failed: {message}")
        self.template = template


class ObjectNotFoundError(NetpolException):
    """Raised when an object is not found in the cluster."""


class ConflictError(NetpolException):
    """Raised when a conditional update lost a race with another writer."""


class StatusUpdateException(NetpolException):
    """Raised when a status update could not be applied after retries."""


class PathEscapeError(InputException):
    """Raised when a path resolves outside of the working copy root."""


def is_rate_limit_error(err: BaseException | None) -> bool:
    """Return true if the error text looks like a provider rate limit."""
    if err is None:
        return False
    text = str(err).lower()
    return any(marker in text for marker in _RATE_LIMIT_MARKERS)
