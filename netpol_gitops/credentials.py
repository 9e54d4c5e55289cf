"""Resolve Git credentials from a Secret reference."""

from dataclasses import dataclass, field
import logging
from typing import TYPE_CHECKING

from .exceptions import CredentialsException, ObjectNotFoundError
from .manifest import (
    DEFAULT_OPERATOR_EMAIL,
    DEFAULT_OPERATOR_USERNAME,
    SecretReference,
)

if TYPE_CHECKING:
    from .cluster import Cluster

_LOGGER = logging.getLogger(__name__)

TOKEN_KEY = "token"
USERNAME_KEY = "username"
EMAIL_KEY = "email"


@dataclass(frozen=True)
class Credentials:
    """Credentials used for git and provider API calls."""

    token: str = field(repr=False)
    username: str = DEFAULT_OPERATOR_USERNAME
    email: str = DEFAULT_OPERATOR_EMAIL


async def resolve_credentials(cluster: "Cluster", ref: SecretReference | None) -> Credentials:
    """Read the token, username and email from the referenced Secret."""
    if ref is None:
        raise CredentialsException("gitRepository is missing credentialsSecretRef")
    try:
        data = await cluster.get_secret(ref.namespace, ref.name)
    except ObjectNotFoundError as err:
        raise CredentialsException(f"Credentials Secret {ref} not found") from err
    if not (token := data.get(TOKEN_KEY)):
        raise CredentialsException(f"Secret {ref} is missing the '{TOKEN_KEY}' key")
    _LOGGER.debug("Resolved git credentials from Secret %s", ref)
    return Credentials(
        token=token.strip(),
        username=data.get(USERNAME_KEY) or DEFAULT_OPERATOR_USERNAME,
        email=data.get(EMAIL_KEY) or DEFAULT_OPERATOR_EMAIL,
    )
