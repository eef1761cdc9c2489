"""
Identity & role gate.

Authentication happens in front of this service; the only thing it hands us is
the caller's stable user id. The role claim is re-read from ``users`` on every
request and passed explicitly into the services as a ``Caller``.
"""
from dataclasses import dataclass

from flask import request

from .errors import Forbidden, Unauthenticated
from .models import db, User, ROLE_ADMIN

USER_ID_HEADER = 'X-User-Id'


@dataclass(frozen=True)
class Caller:
    user_id: int
    role: str

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN

    @classmethod
    def for_user(cls, user: User) -> "Caller":
        return cls(user_id=user.id, role=user.role)


def require_admin(caller: Caller) -> None:
    if caller is None or not caller.is_admin:
        raise Forbidden()


def resolve_caller() -> Caller:
    """Resolve the current request's caller or raise ``Unauthenticated``."""
    raw = request.headers.get(USER_ID_HEADER)
    if not raw:
        raise Unauthenticated()
    try:
        user_id = int(raw)
    except ValueError:
        raise Unauthenticated(f"Malformed {USER_ID_HEADER} header")

    user = db.session.get(User, user_id)
    if user is None:
        raise Unauthenticated("Unknown user")
    return Caller.for_user(user)
