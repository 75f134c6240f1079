import os
import sys
from pathlib import Path

from sqlalchemy.orm import Session
from werkzeug.security import generate_password_hash

# Ensure repo root is on sys.path when running as a script.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.portal.models import Company, Permission, Role, User  # noqa: E402
from scripts._db_utils import resolve_db_url, script_session  # noqa: E402

PERMISSIONS = (
    ("view_users", "Users: view"),
    ("create_users", "Users: create"),
    ("edit_users", "Users: edit"),
    ("delete_users", "Users: delete"),
)

# role key -> (display name, permission keys)
ROLES = {
    "admin": ("Administrator", [key for key, _ in PERMISSIONS]),
    "viewer": ("Viewer", ["view_users"]),
}


def seed(s: Session, *, admin_email: str, admin_password: str, company_name: str | None = None) -> User:
    """
    Seed permissions/roles/admin user in an idempotent way.
    Does NOT overwrite an existing admin user's password.
    """
    perms: dict[str, Permission] = {}
    for key, name in PERMISSIONS:
        p = s.query(Permission).filter(Permission.key == key).one_or_none()
        if not p:
            p = Permission(key=key, name=name)
            s.add(p)
        perms[key] = p

    roles: dict[str, Role] = {}
    for key, (name, perm_keys) in ROLES.items():
        role = s.query(Role).filter(Role.key == key).one_or_none()
        if not role:
            role = Role(key=key, name=name)
            s.add(role)
        for perm_key in perm_keys:
            if perms[perm_key] not in role.permissions:
                role.permissions.append(perms[perm_key])
        roles[key] = role

    company = None
    if company_name:
        company = s.query(Company).filter(Company.name == company_name).one_or_none()
        if not company:
            company = Company(name=company_name)
            s.add(company)

    s.flush()

    user = s.query(User).filter(User.email == admin_email).one_or_none()
    if not user:
        user = User(
            first_name="Portal",
            last_name="Administrator",
            email=admin_email,
            password_hash=generate_password_hash(admin_password),
            role_id=roles["admin"].id,
            company_id=company.id if company else None,
            is_active=True,
        )
        s.add(user)
    else:
        user.role_id = roles["admin"].id
    s.flush()
    return user


def seed_only(*, database_url: str | None = None) -> None:
    admin_email = (os.environ.get("ADMIN_EMAIL") or "admin@example.com").strip().lower()
    admin_password = os.environ.get("ADMIN_PASSWORD") or "change-me"
    company_name = (os.environ.get("DEFAULT_COMPANY") or "").strip() or None

    with script_session(resolve_db_url(database_url)) as s:
        seed(s, admin_email=admin_email, admin_password=admin_password, company_name=company_name)

    print("Initialized database (seed_only).")
    print(f"Admin email: {admin_email}")
    print("Admin password: (from ADMIN_PASSWORD)")


def main() -> None:
    seed_only(database_url=None)


if __name__ == "__main__":
    main()
