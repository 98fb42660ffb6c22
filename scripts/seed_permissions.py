"""
Seed the default roles and their permission maps.
Run after the tables exist. Existing roles are updated, never duplicated.

    python scripts/seed_permissions.py
    python scripts/seed_permissions.py --admin-email admin@example.com
"""
import argparse
import os
import sys

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

# Load environment variables first
try:
    from dotenv import load_dotenv
    load_dotenv()
except Exception as e:
    print(f"WARNING: Could not load .env file: {e}")
    print("Continuing with default values...")

from pmhub.db import SessionLocal
from pmhub.models.models import Role, User


DEFAULT_ROLES = {
    "admin": {
        "description": "Full access",
        "permissions": {
            "document:*": True,
            "training:*": True,
        },
    },
    "manager": {
        "description": "Manages projects, teams and people",
        "permissions": {
            "document:create": True,
            "document:update": True,
            "document:delete": True,
            "training:create": True,
            "training:view": True,
            "training:update": True,
            "training:remind": True,
        },
    },
    "user": {
        "description": "Regular team member",
        "permissions": {
            "document:create": True,
            "training:view": True,
        },
    },
}


def seed_roles(db, replace: bool = False):
    created, updated = 0, 0
    for name, role_def in DEFAULT_ROLES.items():
        role = db.query(Role).filter(Role.name == name).first()
        if role is None:
            db.add(Role(name=name, description=role_def["description"], permissions=dict(role_def["permissions"])))
            created += 1
            continue
        perms = {} if replace else dict(role.permissions or {})
        perms.update(role_def["permissions"])
        role.permissions = perms
        role.description = role.description or role_def["description"]
        updated += 1
    db.commit()
    return created, updated


def grant_admin(db, email: str) -> bool:
    user = db.query(User).filter(User.email == email.lower()).first()
    if not user:
        print(f"ERROR: user {email} not found")
        return False
    role = db.query(Role).filter(Role.name == "admin").first()
    if role not in user.roles:
        user.roles.append(role)
        db.commit()
    print(f"{user.email} is now an admin")
    return True


def main():
    parser = argparse.ArgumentParser(description="Seed default roles and permissions")
    parser.add_argument("--replace", action="store_true", help="Replace existing permission maps instead of merging")
    parser.add_argument("--admin-email", help="Grant the admin role to this user")
    args = parser.parse_args()

    db = SessionLocal()
    try:
        created, updated = seed_roles(db, replace=args.replace)
        print(f"Roles created: {created}, updated: {updated}")
        if args.admin_email and not grant_admin(db, args.admin_email):
            sys.exit(1)
    finally:
        db.close()


if __name__ == "__main__":
    main()
