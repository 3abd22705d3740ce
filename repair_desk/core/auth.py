"""Bearer-token authentication and role gates.

Tokens map one-to-one onto `profiles.access_token`.
"""

import logging
from collections.abc import Callable
from typing import Final

from fastapi import Depends, Header
from sqlalchemy import select
from sqlalchemy.orm import Session

from repair_desk.core.domain_exceptions import DomainException, forbidden
from repair_desk.core.error_codes import ErrorCode
from repair_desk.db.models import Customer, Profile
from repair_desk.db.session import get_db

logger = logging.getLogger(__name__)

STAFF_ROLES: Final[frozenset[str]] = frozenset(
    {"owner", "admin", "manager", "advisor", "mechanic", "parts", "dispatcher"}
)
ASSIGNER_ROLES: Final[frozenset[str]] = frozenset(
    {"owner", "admin", "manager", "advisor", "dispatcher"}
)
BILLING_ROLES: Final[frozenset[str]] = frozenset({"owner", "admin", "manager", "advisor"})
CONNECT_ROLES: Final[frozenset[str]] = frozenset({"owner", "admin", "manager"})
FLEET_ROLES: Final[frozenset[str]] = frozenset(
    {"owner", "admin", "manager", "fleet_manager", "dispatcher"}
)
PUNCH_ADMIN_ROLES: Final[frozenset[str]] = frozenset({"owner", "admin", "manager", "advisor"})


def _unauthenticated() -> DomainException:
    return DomainException(code=ErrorCode.UNAUTHENTICATED, message="Not authenticated")


def get_current_profile(
    authorization: str | None = Header(default=None),
    db: Session = Depends(get_db),
) -> Profile:
    if not authorization:
        raise _unauthenticated()

    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise _unauthenticated()

    profile = db.scalar(select(Profile).where(Profile.access_token == token.strip()))
    if profile is None:
        logger.info("Rejected unknown bearer token")
        raise _unauthenticated()
    return profile


def require_shop(profile: Profile) -> int:
    """Return the caller's shop id or reject callers without one."""
    if profile.shop_id is None:
        raise forbidden("No shop associated with this profile")
    return profile.shop_id


def require_roles(*roles: str) -> Callable[..., Profile]:
    allowed = frozenset(roles)

    def dependency(profile: Profile = Depends(get_current_profile)) -> Profile:
        if profile.role not in allowed:
            raise forbidden("Insufficient role")
        return profile

    return dependency


def require_staff(profile: Profile = Depends(get_current_profile)) -> Profile:
    if profile.role not in STAFF_ROLES:
        raise forbidden("Staff access required")
    require_shop(profile)
    return profile


def get_portal_customer(db: Session, profile: Profile) -> Customer:
    customer = db.scalar(select(Customer).where(Customer.user_id == profile.id))
    if customer is None:
        raise DomainException(code=ErrorCode.NOT_FOUND, message="Customer profile not found")
    return customer
