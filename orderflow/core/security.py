"""
Credential Verification

Staff, terminal (kiosk) and display devices all authenticate with HS256
JWTs. Staff tokens are signed with the access secret; terminal and display
tokens share the device secret and are told apart by their ``role`` claim.
Every credential is bound to exactly one location, which scopes all
queries and the realtime room a socket may join.

Token issuance belongs to the login flows of the surrounding platform;
``create_token`` exists for those flows and for tests.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Optional

import jwt
from jwt.exceptions import PyJWTError
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from orderflow.core.config import get_settings
from orderflow.core.exceptions import Forbidden, Unauthorized

logger = logging.getLogger(__name__)

TERMINAL_ROLE = "Kiosk"
DISPLAY_ROLE = "Display"
OUTLET_ADMIN_ROLE = "outletAdmin"


class PrincipalKind(str, Enum):
    STAFF = "staff"
    TERMINAL = "terminal"
    DISPLAY = "display"


@dataclass(frozen=True)
class Principal:
    """The authenticated caller behind a request or socket."""
    subject_id: str
    kind: PrincipalKind
    role: str
    location_id: Optional[str]
    tenant_id: Optional[str]

    @property
    def identity(self) -> str:
        return f"{self.kind.value}:{self.subject_id}"

    def require_location(self) -> str:
        if not self.location_id:
            raise Forbidden("No outlet associated with this credential")
        return self.location_id


def create_token(
    subject_id: str,
    role: str,
    location_id: Optional[str],
    tenant_id: Optional[str],
    expires_minutes: Optional[int] = None,
) -> str:
    """Sign a credential with the secret that matches its role."""
    settings = get_settings()
    device = role in (TERMINAL_ROLE, DISPLAY_ROLE)
    secret = settings.device_token_secret if device else settings.access_token_secret
    expires = datetime.now(timezone.utc) + timedelta(
        minutes=expires_minutes or settings.access_token_expire_minutes
    )
    payload = {
        "sub": subject_id,
        "role": role,
        "location_id": location_id,
        "tenant_id": tenant_id,
        "exp": expires,
    }
    return jwt.encode(payload, secret, algorithm=settings.jwt_algorithm)


def _principal_from_claims(claims: dict, kind: PrincipalKind) -> Principal:
    subject_id = claims.get("sub")
    if not subject_id:
        raise Unauthorized("Invalid token: missing subject")
    return Principal(
        subject_id=str(subject_id),
        kind=kind,
        role=str(claims.get("role", "")),
        location_id=claims.get("location_id"),
        tenant_id=claims.get("tenant_id"),
    )


def decode_credential(token: Optional[str]) -> Principal:
    """
    Verify a bearer token and return its principal.

    The staff secret is tried first, then the device secret.

    Raises:
        Unauthorized: Missing, malformed, expired or unknown token
    """
    if not token:
        raise Unauthorized("Authentication token required")

    settings = get_settings()
    algorithms = [settings.jwt_algorithm]

    try:
        claims = jwt.decode(token, settings.access_token_secret, algorithms=algorithms)
        return _principal_from_claims(claims, PrincipalKind.STAFF)
    except PyJWTError:
        pass

    try:
        claims = jwt.decode(token, settings.device_token_secret, algorithms=algorithms)
    except PyJWTError as e:
        logger.debug(f"Token rejected: {e}")
        raise Unauthorized("Invalid or expired token")

    kind = PrincipalKind.DISPLAY if claims.get("role") == DISPLAY_ROLE else PrincipalKind.TERMINAL
    return _principal_from_claims(claims, kind)


# =============================================================================
# FASTAPI DEPENDENCIES
# =============================================================================

bearer_scheme = HTTPBearer(auto_error=False)


async def get_principal(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> Principal:
    token = credentials.credentials if credentials else None
    return decode_credential(token)


async def require_staff(principal: Principal = Depends(get_principal)) -> Principal:
    if principal.kind != PrincipalKind.STAFF:
        raise Unauthorized("Invalid or expired access token")
    principal.require_location()
    return principal


async def require_outlet_admin(principal: Principal = Depends(require_staff)) -> Principal:
    if principal.role != OUTLET_ADMIN_ROLE:
        raise Forbidden("Only outlet admins can manage outlet inventory")
    return principal


async def require_terminal(principal: Principal = Depends(get_principal)) -> Principal:
    if principal.kind != PrincipalKind.TERMINAL:
        raise Unauthorized("Invalid or expired kiosk token")
    if not principal.location_id or not principal.tenant_id:
        raise Unauthorized("Invalid kiosk session: missing outlet or tenant context")
    return principal


async def require_display(principal: Principal = Depends(get_principal)) -> Principal:
    if principal.kind != PrincipalKind.DISPLAY:
        raise Unauthorized("Invalid or expired display token")
    principal.require_location()
    return principal


async def require_location_member(principal: Principal = Depends(get_principal)) -> Principal:
    """Staff or terminal credential bound to a location."""
    if principal.kind == PrincipalKind.DISPLAY:
        raise Forbidden("Display devices cannot read inventory")
    principal.require_location()
    return principal
