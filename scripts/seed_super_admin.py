#!/usr/bin/env python3
"""
Seed or rotate the operator account for the webhook console.

Reads SUPER_ADMIN_EMAIL and SUPER_ADMIN_PASSWORD from .env file. When the
account already exists its password is rotated only if
SUPER_ADMIN_ROTATE_PASSWORD=true.
Run from project root: python scripts/seed_super_admin.py
"""

import sys
import os

# Add project root to path
project_root = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, project_root)

# Load .env file
from dotenv import load_dotenv
load_dotenv(os.path.join(project_root, ".env"))

from src.db import supabase
from src.routers.super_admin import hash_password


def main():
    email = os.getenv("SUPER_ADMIN_EMAIL")
    password = os.getenv("SUPER_ADMIN_PASSWORD")
    rotate = os.getenv("SUPER_ADMIN_ROTATE_PASSWORD", "").lower() == "true"

    if not email or not password:
        print("Error: SUPER_ADMIN_EMAIL and SUPER_ADMIN_PASSWORD must be set in .env")
        sys.exit(1)

    existing = supabase.table("super_admins").select("id").eq("email", email).execute()
    if existing.data:
        if not rotate:
            print(f"Operator '{email}' already exists; set SUPER_ADMIN_ROTATE_PASSWORD=true to rotate.")
            sys.exit(0)
        supabase.table("super_admins").update(
            {"password_hash": hash_password(password)}
        ).eq("id", existing.data[0]["id"]).execute()
        print(f"Rotated password for operator '{email}'.")
        return

    result = supabase.table("super_admins").insert({
        "email": email,
        "password_hash": hash_password(password),
        "name": "Webhook Operator",
    }).execute()

    if not result.data:
        print("Error: Failed to create operator account")
        sys.exit(1)
    operator = result.data[0]
    print("Created operator:")
    print(f"  ID: {operator['id']}")
    print(f"  Email: {operator['email']}")


if __name__ == "__main__":
    main()
