"""Auth boundary — identities asserted by the trusted gateway in front of the service."""

from __future__ import annotations

from dataclasses import dataclass

from poiesis.core.entitlements import USER_CLASSES
from poiesis.core.errors import Forbidden, Unauthorized


@dataclass(frozen=True)
class User:
    id: str
    user_class: str

    @property
    def is_admin(self) -> bool:
        return self.user_class == "admin"


def authenticate(user_id: str | None, user_class: str | None) -> User:
    if not user_id or not user_id.strip() or not user_class:
        raise Unauthorized()
    user_class = user_class.strip().lower()
    if user_class not in USER_CLASSES:
        raise Unauthorized(f"Unknown user type '{user_class}'")
    return User(id=user_id.strip(), user_class=user_class)


def require_admin(user: User) -> User:
    if not user.is_admin:
        raise Forbidden()
    return user
