#!/usr/bin/env python3
"""
Create a management or caretaker account from the command line.

Self-registration only offers the roles in SELF_REGISTRATION_ROLES, so staff
accounts are usually created here. No OTP is involved.
"""
import argparse
import asyncio
import getpass
import sys
from pathlib import Path

# Add parent directory to the system path
sys.path.insert(0, str(Path(__file__).parent.parent))

from core.errors import AppError
from database.connection import Database
from database.models import RecordKind, UserRole
from services.auth_service import AuthService
from services.credential_store import CredentialStore, LocalCredentialStore, RemoteUserMirror
from services.otp_service import OtpStore
from services.record_service import RecordService
import config


def create_staff_user(role: str):
    """Prompt for account details and store the account."""
    config.db = Database(
        database_url=config.DATABASE_URL,
        pool_size=config.DB_POOL_SIZE,
        max_overflow=config.DB_MAX_OVERFLOW
    )
    config.db.create_tables()
    credentials = CredentialStore(LocalCredentialStore(config.USERS_DB_FILE), RemoteUserMirror(config.db))
    auth_service = AuthService(credentials, OtpStore())

    print(f"Creating {role} account...")
    print("=" * 50)

    email = input("Email: ").strip()
    name = input("Full name (optional): ").strip() or None
    hostel = input("Hostel (optional): ").strip() or None
    password = getpass.getpass("Password: ")

    profile = {"hostel": hostel} if hostel else {}
    try:
        user = asyncio.run(auth_service.create_account(
            email=email,
            password=password,
            name=name,
            role=role,
            email_verified=True,
            profile=profile,
        ))
    except AppError as e:
        print(f"\n✗ Error: {e.message}")
        sys.exit(1)

    print(f"\n✓ {role.capitalize()} account created successfully!")
    print(f"  Id: {user['id']}")
    print(f"  Email: {user['email']}")
    print(f"  Role: {user['role']}")

    if role == UserRole.CARETAKER.value:
        with config.db.get_session() as db:
            assigned = RecordService(RecordKind.ISSUE, db, credentials=credentials).auto_assign(
                user["id"], config.AUTO_ASSIGN_LIMIT
            )
        print(f"  Issues auto-assigned: {len(assigned)}")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Create a staff account")
    parser.add_argument(
        "--role",
        choices=[UserRole.MANAGEMENT.value, UserRole.CARETAKER.value],
        default=UserRole.MANAGEMENT.value,
    )
    args = parser.parse_args()
    create_staff_user(args.role)
