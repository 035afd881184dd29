"""Caller identity and the role/capability gate.

Identity is asserted by the caller through two plain headers (``x-role`` and
``x-user-id``). Nothing here is cryptographic: the gate is a coarse capability
check for staff screens on an operator-controlled network, not a security
boundary. A token-issuing layer would replace ``resolve_identity`` and nothing
else.
"""
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Mapping, Optional

from .errors import AuthenticationError, AuthorizationError

logger = logging.getLogger(__name__)

ROLE_HEADER = "x-role"
USER_ID_HEADER = "x-user-id"


class Role(str, Enum):
    ADMIN = "ADMIN"
    PLANCHA = "PLANCHA"
    FREIDORA = "FREIDORA"
    EMPAQUETADO = "EMPAQUETADO"


STATION_ROLES = (Role.PLANCHA, Role.FREIDORA)
STAFF_ROLES = (Role.ADMIN, Role.PLANCHA, Role.FREIDORA, Role.EMPAQUETADO)


@dataclass(frozen=True)
class CallerIdentity:
    role: Role
    user_id: int

    @property
    def station(self) -> Optional[str]:
        """Kitchen station this caller is scoped to, None for non-station roles"""
        if self.role in STATION_ROLES:
            return self.role.value
        return None


def _header(headers: Mapping[str, str], name: str) -> str:
    return (headers.get(name) or "").strip()


def has_identity_headers(headers: Mapping[str, str]) -> bool:
    return bool(_header(headers, ROLE_HEADER)) and bool(_header(headers, USER_ID_HEADER))


def resolve_identity(headers: Mapping[str, str]) -> CallerIdentity:
    role_raw = _header(headers, ROLE_HEADER).upper()
    user_raw = _header(headers, USER_ID_HEADER)

    if not role_raw or not user_raw:
        raise AuthenticationError("Missing kitchen auth headers")

    try:
        role = Role(role_raw)
    except ValueError:
        logger.warning(f"Rejected unknown role header: {role_raw!r}")
        raise AuthenticationError("Invalid role")

    try:
        user_id = int(user_raw)
    except ValueError:
        raise AuthenticationError("Invalid user id")
    if user_id <= 0:
        raise AuthenticationError("Invalid user id")

    return CallerIdentity(role=role, user_id=user_id)


def resolve_optional_identity(headers: Mapping[str, str]) -> Optional[CallerIdentity]:
    """Kiosk callers send no identity; a request missing either header counts as one"""
    if not has_identity_headers(headers):
        return None
    return resolve_identity(headers)


def ensure_role(identity: CallerIdentity, allowed: Iterable[Role]) -> None:
    if identity.role not in tuple(allowed):
        logger.warning(f"Role {identity.role.value} (user {identity.user_id}) denied")
        raise AuthorizationError()
