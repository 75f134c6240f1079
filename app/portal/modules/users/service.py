from __future__ import annotations

import secrets
from collections.abc import Mapping
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any

from sqlalchemy.orm import selectinload

from app.portal.audit import record_event
from app.portal.db import Page, paginate
from app.portal.models import Company, Role, User

if TYPE_CHECKING:
    from sqlalchemy.orm import Session


# Fields an edit may change. Password, activation and deletion state are managed elsewhere.
EDITABLE_FIELDS = ("first_name", "last_name", "email", "role_id", "company_id")


def _filtered(s: "Session", model, filters: Mapping[str, Any] | None):
    q = s.query(model)
    for key, value in (filters or {}).items():
        q = q.filter(getattr(model, key) == value)
    return q


def get_users(s: "Session", filters: Mapping[str, Any] | None, page: int, limit: int) -> Page:
    q = _filtered(s, User, filters).order_by(User.last_name.asc(), User.first_name.asc(), User.id.asc())
    return paginate(q, page, limit)


def get_companies(s: "Session", filters: Mapping[str, Any] | None, page: int, limit: int) -> Page:
    q = _filtered(s, Company, filters).order_by(Company.name.asc(), Company.id.asc())
    return paginate(q, page, limit)


def get_roles(s: "Session", filters: Mapping[str, Any] | None, page: int, limit: int) -> Page:
    q = _filtered(s, Role, filters).order_by(Role.name.asc(), Role.id.asc())
    return paginate(q, page, limit)


def find_user(s: "Session", user_id: int) -> User | None:
    return s.get(User, user_id)


def find_user_with_details(s: "Session", user_id: int) -> User | None:
    """Load a user with role, role permissions and company."""
    return (
        s.query(User)
        .options(selectinload(User.role).selectinload(Role.permissions), selectinload(User.company))
        .filter(User.id == user_id)
        .one_or_none()
    )


def get_roles_and_permissions(s: "Session", user_id: int) -> dict[str, list[str]]:
    user = find_user_with_details(s, user_id)
    if not user or not user.role or user.role.is_deleted:
        return {"roles": [], "permissions": []}
    return {
        "roles": [user.role.name],
        "permissions": sorted({p.key for p in user.role.permissions}),
    }


def create_user(s: "Session", data: Mapping[str, Any], actor: User | None) -> User:
    """Insert a user from already validated and sanitized data."""
    now = datetime.utcnow()
    user = User(
        first_name=data["first_name"],
        last_name=data["last_name"],
        email=data["email"],
        role_id=data["role_id"],
        company_id=data.get("company_id"),
        password_hash=data["password_hash"],
        is_active=bool(data.get("is_active", False)),
        is_deleted=False,
        created_at=now,
        updated_at=now,
    )
    s.add(user)
    s.flush()

    record_event(
        s,
        actor=actor,
        action="user.create",
        entity_type="User",
        entity_id=str(user.id),
        metadata={"email": user.email, "role_id": user.role_id, "company_id": user.company_id},
    )
    return user


def update_user(s: "Session", user: User, data: Mapping[str, Any], actor: User | None) -> User:
    """Apply field edits or the soft-delete flag; records only what changed."""
    changes: dict[str, dict[str, Any]] = {}
    for field in (*EDITABLE_FIELDS, "is_deleted"):
        if field not in data:
            continue
        new = data[field]
        old = getattr(user, field)
        if new != old:
            changes[field] = {"old": old, "new": new}
            setattr(user, field, new)

    user.updated_at = datetime.utcnow()
    s.flush()

    deleted_now = changes.get("is_deleted", {}).get("new") is True
    record_event(
        s,
        actor=actor,
        action="user.delete" if deleted_now else "user.update",
        entity_type="User",
        entity_id=str(user.id),
        metadata={"email": user.email, "changes": changes},
    )
    return user


def generate_activation_token(s: "Session", user: User, ttl_hours: int = 48) -> str:
    token = secrets.token_urlsafe(32)
    user.activation_token = token
    user.activation_expires_at = datetime.utcnow() + timedelta(hours=ttl_hours)
    s.flush()
    return token
