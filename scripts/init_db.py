#!/usr/bin/env python3
"""Create the salon booking tables and optionally an admin account."""
import argparse

from werkzeug.security import generate_password_hash

from salon_api import create_app
from salon_api.extensions import db
from salon_api.models import AuthAccount, User


def init_database(admin_email=None, admin_password=None):
    app = create_app()
    with app.app_context():
        db.create_all()
        app.logger.info("Database tables initialized")

        if admin_email and admin_password:
            if User.query.filter_by(email=admin_email.lower()).first():
                app.logger.info("Admin %s already exists", admin_email)
                return
            admin = User(name="Administrator", email=admin_email.lower(), role="admin")
            db.session.add(admin)
            db.session.flush()
            db.session.add(AuthAccount(user_id=admin.user_id, password_hash=generate_password_hash(admin_password)))
            db.session.commit()
            app.logger.info("Created admin account %s", admin_email)


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--admin-email")
    parser.add_argument("--admin-password")
    args = parser.parse_args()
    init_database(args.admin_email, args.admin_password)
