"""
Create an initial super-admin user without enabling dev login.

Usage:
    python -m scripts.create_first_admin <email> <password>
"""

import sys
from crudadmin.config import settings
from crudadmin.db import SessionLocal
from crudadmin.auth import hash_password, validate_password_policy, PasswordValidationError
from crudadmin.models import User
from sqlalchemy import select


def main(email: str, password: str) -> int:
    email = email.lower().strip()
    try:
        validate_password_policy(password)
    except PasswordValidationError as exc:
        print(f"Invalid password: {exc}")
        return 1
    db = SessionLocal()
    try:
        existing = db.execute(select(User).where(User.email == email)).scalar_one_or_none()
        if existing:
            print(f"User {email} already exists.")
            return 1
        user = User(
            email=email,
            hashed_password=hash_password(password),
            is_active=True,
            roles=[settings.SUPER_ADMIN_ROLE],
        )
        db.add(user)
        db.commit()
        print(f"Admin {email} created successfully.")
        return 0
    finally:
        db.close()


if __name__ == "__main__":
    if len(sys.argv) != 3:
        print("Usage: python -m scripts.create_first_admin <email> <password>")
        sys.exit(1)
    sys.exit(main(sys.argv[1], sys.argv[2]))
