import os
import sys
from pathlib import Path

from werkzeug.security import generate_password_hash

# Ensure repo root is on sys.path when running as a script.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.crm.constants import ROLE_PERMISSIONS, ROLES, all_permission_keys, permission_name
from app.crm.models import Permission, Role, Tenant, User
from scripts._db_utils import script_session


def seed_only(*, database_url: str | None = None) -> None:
    """
    Seed permissions, roles, the default tenant and the first admin user.
    Idempotent. Does NOT overwrite an existing admin user's password.
    """
    admin_email = (os.environ.get("ADMIN_EMAIL") or "admin@example.com").strip().lower()
    admin_password = os.environ.get("ADMIN_PASSWORD") or "change-me"
    tenant_id = (os.environ.get("DEFAULT_TENANT_ID") or "default").strip()
    tenant_name = (os.environ.get("DEFAULT_TENANT_NAME") or "Default Tenant").strip()

    db_url = (database_url or os.environ.get("DATABASE_URL") or "sqlite:///crm_app.db").strip()

    # Direct engine/session so release can seed without importing app.wsgi.
    with script_session(db_url) as s:
        perms: dict[str, Permission] = {}
        for key in all_permission_keys():
            p = s.query(Permission).filter(Permission.key == key).one_or_none()
            if not p:
                p = Permission(key=key, name=permission_name(key))
                s.add(p)
            perms[key] = p

        roles: dict[str, Role] = {}
        for key, name in ROLES.items():
            r = s.query(Role).filter(Role.key == key).one_or_none()
            if not r:
                r = Role(key=key, name=name)
                s.add(r)
            for perm_key in sorted(ROLE_PERMISSIONS.get(key, set())):
                if perms[perm_key] not in r.permissions:
                    r.permissions.append(perms[perm_key])
            roles[key] = r

        tenant = s.get(Tenant, tenant_id)
        if not tenant:
            tenant = Tenant(id=tenant_id, name=tenant_name, status="active")
            s.add(tenant)

        u = s.query(User).filter(User.email == admin_email).one_or_none()
        if not u:
            u = User(
                email=admin_email,
                password_hash=generate_password_hash(admin_password),
                tenant_id=tenant_id,
                is_active=True,
            )
            s.add(u)
        elif u.tenant_id is None:
            u.tenant_id = tenant_id
        if roles["admin"] not in u.roles:
            u.roles.append(roles["admin"])

    print("Initialized database (seed_only).")
    print(f"Tenant: {tenant_id}")
    print(f"Admin email: {admin_email}")
    print("Admin password: (from ADMIN_PASSWORD)")


def main() -> None:
    seed_only(database_url=None)


if __name__ == "__main__":
    main()
