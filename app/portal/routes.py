from flask import Blueprint, redirect, render_template, url_for
from sqlalchemy import func

from app.portal.db import db_session
from app.portal.models import Company, Role, User
from app.portal.rbac import login_required

bp = Blueprint("routes", __name__)


@bp.get("/")
def index():
    return redirect(url_for("routes.dashboard"))


@bp.get("/dashboard")
@login_required
def dashboard():
    s = db_session()
    counts = {
        "users": s.query(func.count(User.id)).filter(User.is_deleted.is_(False)).scalar() or 0,
        "pending": s.query(func.count(User.id))
        .filter(User.is_deleted.is_(False), User.is_active.is_(False))
        .scalar()
        or 0,
        "companies": s.query(func.count(Company.id)).filter(Company.is_deleted.is_(False)).scalar() or 0,
        "roles": s.query(func.count(Role.id)).filter(Role.is_deleted.is_(False)).scalar() or 0,
    }
    return render_template("dashboard.html", counts=counts)


@bp.get("/health")
def health():
    """Health check endpoint. Returns JSON."""
    return {"ok": True}


@bp.get("/healthz")
def healthz():
    """
    Fast health check for container probes. No DB access, minimal overhead.
    """
    return "ok", 200
