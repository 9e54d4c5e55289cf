"""Scrub credentials from strings and errors before they are logged or returned.

Literal token and username values are replaced when credentials are known,
and credential shaped fragments (URL userinfo, `token: <value>` pairs) are
redacted in every case.
"""

import re

from .credentials import Credentials
from .exceptions import NetpolException
from .manifest import DEFAULT_OPERATOR_USERNAME

__all__ = [
    "REDACTED",
    "SanitizedError",
    "sanitize",
    "sanitize_error",
]

REDACTED = "[REDACTED]"

_AUTH_HEADER_RE = re.compile(
    r"(?i)(token|bearer|private-token|authorization)[\s:=]+[a-zA-Z0-9_-]{20,}"
)
_URL_USERINFO_RE = re.compile(r"://[^:/@\s]+:[^@\s]+@")
_SECRET_PAIR_RE = re.compile(r"(token|password|secret|key)[\s:=]+[a-zA-Z0-9_-]{10,}")


def sanitize(value: str, credentials: Credentials | None = None) -> str:
    """Return the string with credential material replaced by a marker."""
    result = value
    if credentials is not None:
        if credentials.token:
            result = result.replace(credentials.token, REDACTED)
            result = _AUTH_HEADER_RE.sub(rf"\1 {REDACTED}", result)
        if credentials.username and credentials.username != DEFAULT_OPERATOR_USERNAME:
            result = result.replace(credentials.username, REDACTED)
    result = _URL_USERINFO_RE.sub(f"://{REDACTED}:{REDACTED}@", result)
    result = _SECRET_PAIR_RE.sub(rf"\1 {REDACTED}", result)
    return result


class SanitizedError(NetpolException):
    """An error whose message has been scrubbed of credentials.

    The original exception is not chained so that a traceback can not carry
    the unredacted text. Attributes useful for classification are copied.
    """

    def __init__(
        self,
        message: str,
        original_type: type[BaseException],
        status_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.original_type = original_type
        self.status_code = status_code

    def caused_by(self, exc_type: type[BaseException]) -> bool:
        """Return true if the original error was an instance of the type."""
        return issubclass(self.original_type, exc_type)


def sanitize_error(
    err: BaseException, credentials: Credentials | None = None
) -> SanitizedError:
    """Return a sanitized copy of the error, to be raised `from None`."""
    if isinstance(err, SanitizedError):
        return SanitizedError(
            sanitize(str(err), credentials), err.original_type, err.status_code
        )
    return SanitizedError(
        sanitize(str(err), credentials),
        type(err),
        getattr(err, "status_code", None),
    )
