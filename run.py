#!/usr/bin/env python3
"""
Microfinance Lending Entry Point

Starts the FastAPI server, or bootstraps the first admin user and prints an
access token for it:

    python run.py
    python run.py create-admin admin@example.org "Head Office Admin"
"""

import sys
import argparse

from microfinance.config import get_config
from microfinance.logging_config import setup_logging


def create_admin(email: str, full_name: str) -> None:
    from microfinance.api.auth import LendingSystem, SYSTEM_ACTOR, create_access_token
    from microfinance.rbac import Role

    system = LendingSystem()
    try:
        user = system.user_manager.get_user_by_email(email)
        if user is None:
            user = system.user_manager.create_user(SYSTEM_ACTOR, email=email, full_name=full_name, role=Role.ADMIN)
            print(f"Created admin {user.email} ({user.id})")
        else:
            print(f"Admin {user.email} already exists ({user.id})")
        system.user_manager.record_login(user.id)
        print(create_access_token(user))
    finally:
        system.close()


def main() -> None:
    parser = argparse.ArgumentParser(description="Microfinance lending service")
    subparsers = parser.add_subparsers(dest="command")
    admin_parser = subparsers.add_parser("create-admin", help="Create an admin user and print a token")
    admin_parser.add_argument("email")
    admin_parser.add_argument("full_name")
    args = parser.parse_args()

    config = get_config()
    setup_logging(config.log_level, log_format=config.log_format, log_file=config.log_file)

    if args.command == "create-admin":
        create_admin(args.email, args.full_name)
        return

    from microfinance.api import run_server

    print("Starting Microfinance Lending API...")
    print(f"Database: {config.database_url}")
    print(f"API available at: http://localhost:{config.api_port}")
    print(f"Documentation at: http://localhost:{config.api_port}/docs")
    print()

    try:
        run_server(host=config.api_host, port=config.api_port)
    except KeyboardInterrupt:
        print("\nShutting down Microfinance Lending API...")
    except Exception as e:
        print(f"Error starting server: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
