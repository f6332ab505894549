"""CLI script to create (or promote) an admin account for the dashboard.
Usage: python scripts/create_admin.py [--email EMAIL] [--password PASSWORD] [--name NAME]
"""
import sys
import argparse
import getpass
import pathlib
# Ensure `backend/` is on sys.path so `careerbot` package imports work when running this script directly
ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))
from sqlmodel import Session
from careerbot.database import engine, create_db_and_tables
from careerbot import services
from careerbot.errors import ValidationError


def main(email: str, password: str, name: str) -> int:
    """Create the admin user, or grant admin rights to an existing account.

    Results are printed to stdout; the exit code is non-zero on invalid input.
    """
    create_db_and_tables()
    with Session(engine) as session:
        try:
            user, created = services.AuthService(session).ensure_admin(email, password, name)
        except ValidationError as e:
            print(f'Error: {e.message}')
            return 1
    if created:
        print(f'Admin user created: {user.email} (id {user.id})')
    else:
        print(f'Existing user {user.email} updated with admin privileges (password unchanged)')
    return 0


if __name__ == '__main__':
    parser = argparse.ArgumentParser()
    parser.add_argument('--email', default='admin@careerbot.com', help='Admin login email')
    parser.add_argument('--password', help='Admin password (prompted when omitted)')
    parser.add_argument('--name', default='Admin User', help='Display name')
    args = parser.parse_args()
    password = args.password or getpass.getpass('Admin password: ')
    sys.exit(main(args.email, password, args.name))
