import logging
from dataclasses import dataclass, field
from typing import FrozenSet, Optional

import jwt
from fastapi import Depends, Header, HTTPException, status
from sqlalchemy import exists
from sqlalchemy.orm import Session

from core.db import get_db
from models.store import Store
from models.user import User
from security import jwt as jwt_utils

logger = logging.getLogger(__name__)

ROLE_BUYER = "buyer"
ROLE_SELLER = "seller"
ROLE_ADMIN = "admin"


@dataclass(frozen=True)
class Actor:
    """Authenticated caller with its capability set, resolved once per request."""

    user_id: int
    roles: FrozenSet[str] = field(default_factory=lambda: frozenset({ROLE_BUYER}))

    @property
    def is_admin(self) -> bool:
        return ROLE_ADMIN in self.roles

    @property
    def is_seller(self) -> bool:
        return ROLE_SELLER in self.roles


def resolve_actor(db: Session, user: User) -> Actor:
    roles = {ROLE_BUYER}
    if db.query(exists().where(Store.owner_id == user.id)).scalar():
        roles.add(ROLE_SELLER)
    if user.is_superadmin:
        roles.add(ROLE_ADMIN)
    return Actor(user_id=user.id, roles=frozenset(roles))


def get_current_user(
    db: Session = Depends(get_db), authorization: Optional[str] = Header(default=None, alias="Authorization")
) -> User:
    if not authorization or not authorization.lower().startswith("bearer "):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
    token = authorization.split(" ", 1)[1]
    try:
        payload = jwt_utils.decode_access(token)
        user_id = int(payload.get("sub"))
    except (jwt.PyJWTError, TypeError, ValueError):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")
    user = db.query(User).filter(User.id == user_id).one_or_none()
    if not user:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User not found")
    return user


def get_current_actor(user: User = Depends(get_current_user), db: Session = Depends(get_db)) -> Actor:
    return resolve_actor(db, user)


def require_role(role: str):
    """Dependency that rejects callers lacking ``role``. Admins pass every check."""
    def _check_role(actor: Actor = Depends(get_current_actor)) -> Actor:
        if role not in actor.roles and not actor.is_admin:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Requires {role} role"
            )
        return actor
    return _check_role
