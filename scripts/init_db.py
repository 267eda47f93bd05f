import os
import sys
from pathlib import Path

from werkzeug.security import generate_password_hash

# Ensure repo root is on sys.path when running as a script.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.saleshub.models import Base, Permission, Role, User  # noqa: E402
from scripts._db_utils import resolve_db_url, script_session  # noqa: E402

ROLES = (
    ("owner", "Owner"),
    ("director", "Director"),
    ("manager", "Sales Manager"),
    ("salesperson", "Salesperson"),
)

PERMISSIONS = (
    ("crm.view", "CRM: view customers"),
    ("inventory.view", "Inventory: view"),
    ("inventory.edit", "Inventory: create/edit/upload"),
    ("deals.mark_sold", "Deals: mark as sold"),
    ("reports.view", "Reports: view"),
    ("admin.view", "Admin: users and audit log"),
)

ROLE_PERMISSIONS = {
    "owner": [k for k, _ in PERMISSIONS],
    "director": [k for k, _ in PERMISSIONS],
    "manager": ["crm.view", "inventory.view", "reports.view"],
    "salesperson": ["crm.view", "inventory.view", "reports.view"],
}


def seed_only(*, database_url: str | None = None, create_tables: bool = False) -> None:
    """
    Seed roles/permissions and the owner account in an idempotent way.
    Does NOT overwrite an existing owner's password.
    """
    owner_email = (os.environ.get("ADMIN_EMAIL") or "owner@saleshub.local").strip().lower()
    owner_password = os.environ.get("ADMIN_PASSWORD") or "change-me"

    with script_session(database_url) as s:
        if create_tables:
            Base.metadata.create_all(bind=s.get_bind())

        perms: dict[str, Permission] = {}
        for key, name in PERMISSIONS:
            p = s.query(Permission).filter(Permission.key == key).one_or_none()
            if not p:
                p = Permission(key=key, name=name)
                s.add(p)
            perms[key] = p

        roles: dict[str, Role] = {}
        for key, name in ROLES:
            r = s.query(Role).filter(Role.key == key).one_or_none()
            if not r:
                r = Role(key=key, name=name)
                s.add(r)
            for pkey in ROLE_PERMISSIONS[key]:
                if perms[pkey] not in r.permissions:
                    r.permissions.append(perms[pkey])
            roles[key] = r

        user = s.query(User).filter(User.email == owner_email).one_or_none()
        if not user:
            user = User(
                email=owner_email,
                password_hash=generate_password_hash(owner_password),
                is_active=True,
                first_name="Owner",
                rep_code="VIP10000",
            )
            s.add(user)
        if roles["owner"] not in user.roles:
            user.roles.append(roles["owner"])

    print("Initialized database (seed_only).")
    print(f"Owner email: {owner_email}")
    print("Owner password: (from ADMIN_PASSWORD)")


def main() -> None:
    # Local dev convenience: sqlite databases get their tables created here.
    db_url = resolve_db_url()
    seed_only(database_url=db_url, create_tables=db_url.startswith("sqlite"))


if __name__ == "__main__":
    main()
