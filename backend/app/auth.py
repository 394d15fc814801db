"""Authentication dependency for the sync routes.

Clients authenticate with HTTP Basic credentials. The username must match
the owner in the request path; the provider configured in settings checks
the password and may attach an alert for the user.
"""

from dataclasses import dataclass
from typing import Annotated

from fastapi import Depends
from fastapi.security import HTTPBasic, HTTPBasicCredentials
from weavestore.auth import get_authenticator
from weavestore.errors import INVALID_USERNAME, USERID_PATH_MISMATCH, BadRequestError, UnauthorizedError

from .config import Settings, get_settings
from .logging_config import log_auth_event

# auto_error=False so missing credentials go through the Weave error mapping
security = HTTPBasic(auto_error=False, realm="Weave")

ALERT_HEADER = "X-Weave-Alert"


@dataclass(frozen=True)
class AuthContext:
    """The authenticated owner and any alert to pass back to the client."""

    owner: str
    alert: str = ""

    def response_headers(self) -> dict[str, str]:
        return {ALERT_HEADER: self.alert} if self.alert else {}


def get_current_owner(
    owner: str,
    credentials: Annotated[HTTPBasicCredentials | None, Depends(security)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> AuthContext:
    """Authenticate the request and check it targets the caller's own data."""
    owner = owner.lower()
    if not owner:
        raise BadRequestError(INVALID_USERNAME)
    if credentials is None:
        log_auth_event("basic", None, False, "missing credentials")
        raise UnauthorizedError("Authentication required")

    username = credentials.username.lower()
    if username != owner:
        log_auth_event("basic", username, False, f"path owner {owner}")
        raise UnauthorizedError(USERID_PATH_MISMATCH)

    authenticator = get_authenticator(settings.weave_config())
    result = authenticator.authenticate(username, credentials.password)
    if not result.ok:
        log_auth_event("basic", username, False)
        raise UnauthorizedError("Authentication failed")

    log_auth_event("basic", username, True)
    return AuthContext(owner=owner, alert=result.alert)


CurrentOwner = Annotated[AuthContext, Depends(get_current_owner)]
