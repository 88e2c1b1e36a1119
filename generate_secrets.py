#!/usr/bin/env python3
"""
Generate secure secrets for the GridGuessr scoring service
Run this script to generate the SECRET_KEY and an admin API token
"""

import secrets


def generate_secrets():
    """Generate secure random keys for the application"""
    print("Generating secure secrets for GridGuessr...")
    print("=" * 50)

    secret_key = secrets.token_urlsafe(32)
    admin_token = secrets.token_urlsafe(32)

    print(f"SECRET_KEY={secret_key}")
    print(f"ADMIN_API_TOKEN={admin_token}")

    print("=" * 50)
    print("Copy SECRET_KEY to your .env file.")
    print("Assign the admin token with: python manage.py user set-token <username> --token <token>")
    print("Keep these secrets secure and never commit them to version control!")


if __name__ == "__main__":
    generate_secrets()
