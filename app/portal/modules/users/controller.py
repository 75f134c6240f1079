"""
User administration handlers.

Handlers are framework-agnostic: each takes a `RequestContext` and returns an
outcome (`Render` or `Redirect`). Flash messages and remembered form input are
collected on the context; the Flask blueprint in `admin.py` applies them.
Permission checks happen in the blueprint before a handler is entered.
"""
from __future__ import annotations

import logging
import math
import secrets
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any, Union

from sqlalchemy.orm import Session
from werkzeug.security import generate_password_hash

from app.portal.config import error_message
from app.portal.models import User
from app.portal.modules.users.service import (
    create_user,
    find_user,
    find_user_with_details,
    generate_activation_token,
    get_companies,
    get_roles,
    get_roles_and_permissions,
    get_users,
    update_user,
)
from app.portal.security import escape_text, sanitize_email
from app.portal.validation import Validator, parse_int, parse_positive_id

logger = logging.getLogger(__name__)

# Upper bound on companies/roles offered in the form selectors.
SELECT_OPTIONS_LIMIT = 1000

Mailer = Callable[[str, str], tuple[bool, dict | None]]


# ---------- Outcomes ----------
@dataclass(frozen=True)
class Render:
    template: str
    values: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Redirect:
    endpoint: str
    values: dict[str, Any] = field(default_factory=dict)


Outcome = Union[Render, Redirect]


# ---------- Operation results ----------
@dataclass(frozen=True)
class Ok:
    value: Any = None


@dataclass(frozen=True)
class Invalid:
    errors: list[str]

    @property
    def message(self) -> str:
        return ", ".join(self.errors)


@dataclass(frozen=True)
class NotFound:
    id: int


@dataclass(frozen=True)
class Failed:
    error: BaseException


Result = Union[Ok, Invalid, NotFound, Failed]


@dataclass
class RequestContext:
    db: Session
    user: User | None
    method: str = "GET"
    data: Mapping[str, Any] = field(default_factory=dict)
    previous_form: dict[str, Any] | None = None
    request_id: str | None = None

    flashes: list[tuple[str, str]] = field(default_factory=list)
    form_data: dict[str, Any] | None = None

    @property
    def user_id(self) -> int | None:
        return self.user.id if self.user else None

    def flash(self, message: str, category: str = "info") -> None:
        self.flashes.append((message, category))

    def remember_form(self, data: Mapping[str, Any]) -> None:
        self.form_data = {k: v for k, v in data.items() if k != "csrf_token"}


def user_rules(except_id: int | None = None) -> dict[str, str]:
    unique = "unique:users,email" if except_id is None else f"unique:users,email,{except_id}"
    return {
        "first_name": "required|string|max:100",
        "last_name": "required|string|max:100",
        "email": f"required|email|max:320|{unique}",
        "role_id": "required|integer|exists:roles,id",
        "company_id": "nullable|integer|exists:companies,id",
    }


def sanitize_user_input(data: Mapping[str, Any]) -> dict[str, Any]:
    company_raw = data.get("company_id")
    return {
        "first_name": escape_text(data.get("first_name")),
        "last_name": escape_text(data.get("last_name")),
        "email": sanitize_email(data.get("email")),
        "role_id": parse_int(data.get("role_id")),
        "company_id": parse_int(company_raw) if company_raw not in (None, "") else None,
    }


def validation_input(data: Mapping[str, Any]) -> dict[str, Any]:
    """Input as the validator sees it: names in their stored (escaped) form, so `max` matches the column."""
    values = dict(data)
    for name in ("first_name", "last_name"):
        if isinstance(values.get(name), str):
            values[name] = escape_text(values[name])
    return values


def total_pages(total: int, limit: int) -> int:
    return math.ceil(total / limit) if limit > 0 else 0


def _parse_page(raw: Any) -> int:
    page = parse_int(raw)
    return max(1, page) if page is not None else 1


class UserController:
    def __init__(
        self,
        *,
        results_per_page: int,
        mailer: Mailer,
        show_error_details: bool = False,
        activation_ttl_hours: int = 48,
    ):
        self.results_per_page = max(1, results_per_page)
        self.mailer = mailer
        self.show_error_details = show_error_details
        self.activation_ttl_hours = activation_ttl_hours

    # ---------- helpers ----------
    def _fail(self, ctx: RequestContext, message: str, endpoint: str, **values: Any) -> Redirect:
        ctx.flash(message, "danger")
        return Redirect(endpoint, values)

    def _log_exception(self, ctx: RequestContext, where: str, exc: BaseException) -> None:
        logger.error("Exception in %s (request_id=%s): %s", where, ctx.request_id, exc, exc_info=exc)

    def _select_options(self, ctx: RequestContext) -> dict[str, Any]:
        not_deleted = {"is_deleted": False}
        return {
            "companies": get_companies(ctx.db, not_deleted, 1, SELECT_OPTIONS_LIMIT).records,
            "roles": get_roles(ctx.db, not_deleted, 1, SELECT_OPTIONS_LIMIT).records,
        }

    def _load_live_user(self, ctx: RequestContext, user_id: int) -> User | None:
        user = find_user_with_details(ctx.db, user_id)
        if not user or user.is_deleted:
            return None
        return user

    # ---------- list / detail ----------
    def index(self, ctx: RequestContext) -> Outcome:
        page = _parse_page(ctx.data.get("page"))
        limit = self.results_per_page
        try:
            result = get_users(ctx.db, {"is_deleted": False}, page, limit)
        except Exception as exc:
            self._log_exception(ctx, "UserController.index", exc)
            return self._fail(ctx, "An error occurred while fetching users.", "routes.dashboard")

        return Render(
            "users/index.html",
            {
                "users": result.records,
                "total_users": result.total,
                "total_pages": total_pages(result.total, limit),
                "page": page,
            },
        )

    def view(self, ctx: RequestContext) -> Outcome:
        user_id = parse_positive_id(ctx.data.get("id"))
        if user_id is None:
            return self._fail(ctx, "Invalid user ID", "users.index")
        try:
            user = self._load_live_user(ctx, user_id)
            if user is None:
                return self._fail(ctx, "User not found", "users.index")
            details = get_roles_and_permissions(ctx.db, user_id)
        except Exception as exc:
            self._log_exception(ctx, "UserController.view", exc)
            return self._fail(ctx, "An error occurred while fetching user details.", "users.index")

        return Render(
            "users/view.html",
            {"user": user, "roles": details["roles"], "permissions": details["permissions"]},
        )

    def profile(self, ctx: RequestContext) -> Outcome:
        if ctx.user_id is None:
            return self._fail(ctx, "You must be logged in to view your profile.", "auth.login_get")
        user_id = ctx.user_id
        try:
            user = self._load_live_user(ctx, user_id)
            if user is None:
                return self._fail(ctx, "Profile not found.", "routes.dashboard")
            details = get_roles_and_permissions(ctx.db, user_id)
        except Exception as exc:
            self._log_exception(ctx, "UserController.profile", exc)
            return self._fail(ctx, "An error occurred while fetching your profile.", "routes.dashboard")

        return Render(
            "users/profile.html",
            {"user": user, "roles": details["roles"], "permissions": details["permissions"]},
        )

    # ---------- create ----------
    def create_form(self, ctx: RequestContext) -> Outcome:
        try:
            options = self._select_options(ctx)
        except Exception as exc:
            self._log_exception(ctx, "UserController.create_form", exc)
            return self._fail(ctx, "An error occurred while loading the creation form.", "users.index")

        return Render("users/create.html", {**options, "form_data": ctx.previous_form or {}})

    def create(self, ctx: RequestContext) -> Outcome:
        if ctx.method != "POST":
            return self.create_form(ctx)

        result = self._create_user(ctx)
        if isinstance(result, Invalid):
            ctx.remember_form(ctx.data)
            return self._fail(ctx, result.message, "users.create")
        if isinstance(result, Failed):
            message = error_message(
                result.error,
                "UserController.create",
                "An error occurred while creating the user.",
                show_details=self.show_error_details,
            )
            return self._fail(ctx, message, "users.create")

        ctx.flash("User created successfully. An activation email has been sent.", "success")
        return Redirect("users.index")

    def _create_user(self, ctx: RequestContext) -> Result:
        try:
            validator = Validator(validation_input(ctx.data), user_rules(), ctx.db)
            if validator.fails():
                return Invalid(validator.errors())

            payload = sanitize_user_input(ctx.data)
            # Throwaway password: the account is set up through the activation link.
            payload["password_hash"] = generate_password_hash(secrets.token_hex(8))
            payload["is_active"] = False

            user = create_user(ctx.db, payload, ctx.user)
            token = generate_activation_token(ctx.db, user, self.activation_ttl_hours)
            ctx.db.commit()
        except Exception as exc:
            ctx.db.rollback()
            self._log_exception(ctx, "UserController.create", exc)
            return Failed(exc)

        self._send_activation(ctx, user.email, token)
        return Ok(user)

    def _send_activation(self, ctx: RequestContext, email: str, token: str) -> None:
        try:
            sent, debug = self.mailer(email, token)
        except Exception:
            logger.exception("Activation email to %s raised (request_id=%s)", email, ctx.request_id)
            return
        if not sent:
            logger.warning("Activation email to %s was not sent: %s", email, debug)

    # ---------- edit ----------
    def edit_form(self, ctx: RequestContext) -> Outcome:
        user_id = parse_positive_id(ctx.data.get("id"))
        if user_id is None:
            return self._fail(ctx, "Invalid user ID", "users.index")
        try:
            user = self._load_live_user(ctx, user_id)
            if user is None:
                return self._fail(ctx, "User not found", "users.index")
            options = self._select_options(ctx)
        except Exception as exc:
            self._log_exception(ctx, "UserController.edit_form", exc)
            return self._fail(ctx, "An error occurred while loading the edit form.", "users.index")

        # Only re-populate with input that was submitted for this same user.
        form_data = ctx.previous_form or {}
        if parse_positive_id(form_data.get("id")) != user_id:
            form_data = {}
        return Render("users/edit.html", {"user": user, **options, "form_data": form_data})

    def update(self, ctx: RequestContext) -> Outcome:
        if ctx.method != "POST":
            return self.edit_form(ctx)

        user_id = parse_positive_id(ctx.data.get("id"))
        if user_id is None:
            return self._fail(ctx, "Invalid user ID", "users.index")

        result = self._update_user(ctx, user_id)
        if isinstance(result, NotFound):
            return self._fail(ctx, "User not found", "users.index")
        if isinstance(result, Invalid):
            ctx.remember_form(ctx.data)
            return self._fail(ctx, result.message, "users.edit", id=user_id)
        if isinstance(result, Failed):
            message = error_message(
                result.error,
                "UserController.update",
                "An error occurred while updating the user.",
                show_details=self.show_error_details,
            )
            return self._fail(ctx, message, "users.edit", id=user_id)

        ctx.flash("User updated successfully.", "success")
        return Redirect("users.index")

    def _update_user(self, ctx: RequestContext, user_id: int) -> Result:
        try:
            user = find_user(ctx.db, user_id)
            if not user or user.is_deleted:
                return NotFound(user_id)

            validator = Validator(validation_input(ctx.data), user_rules(except_id=user_id), ctx.db)
            if validator.fails():
                return Invalid(validator.errors())

            update_user(ctx.db, user, sanitize_user_input(ctx.data), ctx.user)
            ctx.db.commit()
        except Exception as exc:
            ctx.db.rollback()
            self._log_exception(ctx, "UserController.update", exc)
            return Failed(exc)
        return Ok(user)

    # ---------- delete ----------
    def delete(self, ctx: RequestContext) -> Outcome:
        if ctx.method != "POST":
            return self._fail(ctx, "Invalid request method.", "users.index")

        user_id = parse_positive_id(ctx.data.get("id"))
        if user_id is None:
            return self._fail(ctx, "Invalid user ID", "users.index")

        try:
            user = find_user(ctx.db, user_id)
            if not user or user.is_deleted:
                return self._fail(ctx, "User not found", "users.index")
            if user_id == ctx.user_id:
                return self._fail(ctx, "Cannot delete your own account", "users.index")

            update_user(ctx.db, user, {"is_deleted": True}, ctx.user)
            ctx.db.commit()
        except Exception as exc:
            ctx.db.rollback()
            self._log_exception(ctx, "UserController.delete", exc)
            return self._fail(ctx, "An error occurred while deleting the user.", "users.index")

        ctx.flash("User deleted successfully.", "success")
        return Redirect("users.index")
