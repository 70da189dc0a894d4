"""
Create a default admin user.
Usage: python scripts/create_admin.py --phone 08000000000 --password admin123
"""
import sys
from pathlib import Path

# Add project root to Python path
project_root = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(project_root))

from esusu.db.base import SessionLocal
from esusu.core.security import get_password_hash
from esusu.models.user import User, UserStatus


def create_admin(phone: str = "08000000000", password: str = "admin123", full_name: str = "Admin User", email: str = None):
    """Create an admin user, or promote the existing account with that phone number."""
    db = SessionLocal()
    try:
        existing_user = db.query(User).filter(User.phone == phone).first()
        if existing_user:
            if existing_user.is_admin:
                print(f"User with phone {phone} is already an admin!")
                return
            existing_user.is_admin = True
            existing_user.status = UserStatus.ACTIVE
            db.commit()
            print(f"✅ Existing user {existing_user.full_name} promoted to admin")
            return

        user = User(
            full_name=full_name,
            phone=phone,
            email=email,
            password_hash=get_password_hash(password),
            is_admin=True,
            status=UserStatus.ACTIVE
        )
        db.add(user)
        db.commit()
        print(f"✅ Admin user created successfully!")
        print(f"   Phone: {phone}")
        print(f"   Password: {password}")
        print(f"\n⚠️  Please change the password after first login!")

    except Exception as e:
        db.rollback()
        print(f"❌ Error creating admin user: {e}")
        raise
    finally:
        db.close()


if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description="Create a default admin user")
    parser.add_argument("--phone", default="08000000000", help="Admin phone number")
    parser.add_argument("--password", default="admin123", help="Admin password")
    parser.add_argument("--full-name", default="Admin User", help="Full name")
    parser.add_argument("--email", default=None, help="Optional email")

    args = parser.parse_args()

    create_admin(
        phone=args.phone,
        password=args.password,
        full_name=args.full_name,
        email=args.email
    )
