# create_admin.py
"""Create (or re-activate) an admin account: python create_admin.py [username] [password]"""
import os
import sys

from app import create_app
from extensions import db
from models.user import User

USERNAME = os.getenv("ADMIN_USERNAME", "admin")
PASSWORD = os.getenv("ADMIN_PASSWORD", "change-me-now")
EMAIL = os.getenv("ADMIN_EMAIL", "admin@example.com")


def ensure_admin(username, password, email=None):
    u = User.query.filter_by(username=username).first()
    if u:
        u.role = "admin"
        u.is_active = True
        db.session.commit()
        return u, False
    u = User(username=username, email=email, name="Administrator", role="admin", is_active=True)
    u.set_password(password)
    db.session.add(u)
    db.session.commit()
    return u, True


if __name__ == "__main__":
    username = sys.argv[1] if len(sys.argv) > 1 else USERNAME
    password = sys.argv[2] if len(sys.argv) > 2 else PASSWORD
    app = create_app()
    with app.app_context():
        db.create_all()
        user, created = ensure_admin(username, password, EMAIL)
        if created:
            print(f"Admin created: {user.username}")
        else:
            print(f"User already exists, ensured admin role: {user.username}")
