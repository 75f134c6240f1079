from __future__ import annotations

from functools import wraps

from flask import Blueprint, current_app, flash, g, redirect, render_template, request, session, url_for

from app.portal.db import db_session
from app.portal.modules.users.controller import Outcome, Redirect, RequestContext, UserController
from app.portal.rbac import require_permission

bp = Blueprint("users", __name__)


def _controller() -> UserController:
    return current_app.extensions["user_controller"]


def _context(*, restore_form: bool = False) -> RequestContext:
    data = request.args.to_dict()
    if request.method == "POST":
        data.update(request.form.to_dict())
    previous_form = session.pop("form_data", None) if restore_form and request.method == "GET" else None
    return RequestContext(
        db=db_session(),
        user=getattr(g, "current_user", None),
        method=request.method,
        data=data,
        previous_form=previous_form,
        request_id=getattr(g, "request_id", None),
    )


def _post_only(fn):
    """Non-POST requests are turned away before the permission check runs."""

    @wraps(fn)
    def wrapped(*args, **kwargs):
        if request.method != "POST":
            flash("Invalid request method.", "danger")
            return redirect(url_for("users.index"))
        return fn(*args, **kwargs)

    return wrapped


def _respond(ctx: RequestContext, outcome: Outcome):
    for message, category in ctx.flashes:
        flash(message, category)
    if ctx.form_data is not None:
        session["form_data"] = ctx.form_data
    if isinstance(outcome, Redirect):
        return redirect(url_for(outcome.endpoint, **outcome.values))
    return render_template(outcome.template, **outcome.values)


# ---------- List ----------
@bp.get("/users")
@require_permission("view_users")
def index():
    ctx = _context()
    return _respond(ctx, _controller().index(ctx))


# ---------- Detail ----------
@bp.get("/users/view")
@require_permission("view_users")
def view():
    ctx = _context()
    return _respond(ctx, _controller().view(ctx))


@bp.get("/profile")
def profile():
    ctx = _context()
    return _respond(ctx, _controller().profile(ctx))


# ---------- New ----------
@bp.route("/users/create", methods=["GET", "POST"])
@require_permission("create_users")
def create():
    ctx = _context(restore_form=True)
    return _respond(ctx, _controller().create(ctx))


# ---------- Edit ----------
@bp.route("/users/edit", methods=["GET", "POST"])
@require_permission("edit_users")
def edit():
    ctx = _context(restore_form=True)
    return _respond(ctx, _controller().update(ctx))


# ---------- Delete (soft) ----------
@bp.route("/users/delete", methods=["GET", "POST"])
@_post_only
@require_permission("delete_users")
def delete():
    ctx = _context()
    return _respond(ctx, _controller().delete(ctx))
