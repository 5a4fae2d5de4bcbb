"""
Create (or promote) an approved ADMIN account and make sure the built-in roles exist.

Usage:
    python scripts/create_admin.py admin@example.com --password secret123 [--first-name Site --last-name Admin]
"""
import sys
import os
import argparse

# Add parent directory to path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from permit_hub.auth.security import ADMIN, get_password_hash
from permit_hub.config import settings
from permit_hub.db import Base, SessionLocal, engine
from permit_hub.models.models import User, utcnow
from permit_hub.services.roles import get_role, seed_default_roles


def create_admin(email: str, password: str, first_name: str, last_name: str) -> None:
    if settings.database_url.startswith("sqlite:///./"):
        os.makedirs("var", exist_ok=True)
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        seed_default_roles(db)
        role = get_role(db, ADMIN)
        email = email.strip().lower()
        user = db.query(User).filter(User.email == email).first()
        if user:
            print(f"Promoting existing user {email} to ADMIN")
        else:
            user = User(email=email, first_name=first_name, last_name=last_name)
            db.add(user)
            print(f"Creating ADMIN user {email}")
        user.password_hash = get_password_hash(password)
        user.role = role
        user.is_active = True
        user.is_approved = True
        user.approved_at = utcnow()
        user.requested_role = None
        db.commit()
        print("Done.")
    except Exception as e:
        db.rollback()
        print(f"Error creating admin: {e}")
        raise
    finally:
        db.close()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Create or promote an ADMIN account")
    parser.add_argument("email")
    parser.add_argument("--password", required=True)
    parser.add_argument("--first-name", default="System")
    parser.add_argument("--last-name", default="Admin")
    args = parser.parse_args()
    if len(args.password) < 6:
        parser.error("password must be at least 6 characters")
    create_admin(args.email, args.password, args.first_name, args.last_name)
