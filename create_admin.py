import os

from sqlmodel import Session, select

from db import create_db_and_tables, engine
from models import User
from routers.auth import hash_password

EMAIL = os.environ.get("ADMIN_EMAIL", "admin@edubridge.example.com")
PASSWORD = os.environ.get("ADMIN_PASSWORD", "change-me")

create_db_and_tables()

with Session(engine) as session:
    admin = session.exec(select(User).where(User.email == EMAIL)).first()

    if admin is None:
        print("🔐 Creating new admin user...")
        admin = User(
            name="EduBridge Admin",
            email=EMAIL,
            password_hash=hash_password(PASSWORD),
        )
    else:
        print("🔁 Promoting existing user to admin...")

    admin.is_admin = True
    admin.is_verified = True
    session.add(admin)
    session.commit()

    print("✅ Admin ready:", EMAIL)
