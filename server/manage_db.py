"""
Database management script.
Run this after setting the DATABASE_URL environment variable (SQLite is used otherwise).

Usage:
    python manage_db.py                      # same as "provision"
    python manage_db.py provision [--no-seed]
    python manage_db.py status
    python manage_db.py make-admin <user_id> [--email EMAIL]

provision creates missing tables and columns, installs the votes_count
triggers, applies row level security on PostgreSQL and seeds default content.
make-admin grants the admin role, which can otherwise only be granted by
another admin.
"""
import argparse
import json
import sys

from dotenv import load_dotenv

load_dotenv()


def provision(app, seed: bool) -> int:
    from provisioning import provision_schema

    with app.app_context():
        report = provision_schema(seed=seed)
    print(json.dumps(report.to_dict(), indent=2))
    if report.ok:
        print("✓ Database provisioned successfully")
        return 0
    print("✗ Database provisioned with errors")
    return 1


def status(app) -> int:
    from provisioning import schema_status

    with app.app_context():
        result = schema_status()
    print(json.dumps(result, indent=2))
    return 0 if result['healthy'] else 1


def make_admin(app, user_id: str, email=None) -> int:
    from models import UserProfile, db

    with app.app_context():
        profile = db.session.get(UserProfile, user_id)
        if profile is None:
            profile = UserProfile(id=user_id, email=email, role='admin')
            db.session.add(profile)
        else:
            profile.role = 'admin'
            if email:
                profile.email = email
        db.session.commit()
    print(f"✓ User {user_id} is now an admin")
    return 0


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Manage the voting database")
    sub = parser.add_subparsers(dest='command')

    provision_parser = sub.add_parser('provision', help="create or repair the schema")
    provision_parser.add_argument('--no-seed', action='store_true', help="do not seed default content")
    sub.add_parser('status', help="report missing tables, columns and triggers")
    admin_parser = sub.add_parser('make-admin', help="grant the admin role to a user")
    admin_parser.add_argument('user_id')
    admin_parser.add_argument('--email')

    args = parser.parse_args(argv)

    from app import create_app
    app = create_app({"SKIP_SCHEMA_SETUP": True})

    if args.command == 'status':
        return status(app)
    if args.command == 'make-admin':
        return make_admin(app, args.user_id, args.email)
    return provision(app, seed=not getattr(args, 'no_seed', False))


if __name__ == "__main__":
    sys.exit(main())
