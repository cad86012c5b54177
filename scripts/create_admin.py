#!/usr/bin/env python3
"""
Create an admin profile, or promote an existing one.
Run from project root: python scripts/create_admin.py --email admin@example.com --password ...
"""
import sys
import os
import argparse

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from carmarket.db import Base, engine, SessionLocal
from carmarket.models.models import Profile
from carmarket.auth.security import get_password_hash
from carmarket.services.audit import log_admin_action


def run(email: str, password: str, full_name: str):
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        email = email.strip().lower()
        user = db.query(Profile).filter(Profile.email == email).first()
        if user:
            before = user.role
            user.role = "admin"
            user.is_active = True
            log_admin_action(db, None, "update_user_role", "profiles", user.id, {"role": {"before": before, "after": "admin"}})
            print(f"Promoted {email} to admin")
        else:
            if not password or len(password) < 8:
                raise SystemExit("A password of at least 8 characters is required for a new admin")
            user = Profile(email=email, password_hash=get_password_hash(password), full_name=full_name, role="admin")
            db.add(user)
            print(f"Created admin {email}")
        db.commit()
    finally:
        db.close()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Create or promote an admin profile")
    parser.add_argument("--email", required=True)
    parser.add_argument("--password", default="")
    parser.add_argument("--full-name", default="Administrator")
    args = parser.parse_args()
    run(args.email, args.password, args.full_name)
