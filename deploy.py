import os
from app import create_app
from extensions import db
from flask_migrate import upgrade
from seed import seed_demo

MIGRATIONS_DIR = os.path.join(os.path.dirname(os.path.abspath(__file__)), 'migrations')


def apply_schema(app, migrations_dir=MIGRATIONS_DIR):
    """
    Runs Alembic migrations when the project has them. A fresh checkout has
    no migrations/ folder until 'flask db init' and 'flask db migrate' are
    run, so the tables are created straight from models.py instead.
    """
    with app.app_context():
        if os.path.isdir(migrations_dir):
            print("🔄 Applying Database Migrations...")
            # This is the Python equivalent of running 'flask db upgrade'
            upgrade(directory=migrations_dir)
            print("✅ Database schema is up to date.")
        else:
            print("⚠️ No migrations/ folder found. Run 'flask db init' to start tracking schema changes.")
            print("🧱 Creating tables from models...")
            db.create_all()
            print("✅ Tables ready.")


def deploy(app=None):
    """
    PRODUCTION DEPLOY SCRIPT
    1. Brings the DB schema up to date
    2. Seeds demo organizations (Only outside production, only if missing)
    """
    apply_schema(app or create_app())

    if os.getenv('ZIPLI_ENV') == 'production':
        print("ℹ️  Production environment. Skipping demo data.")
        return
    print("🌱 Checking demo organizations...")
    seed_demo()


if __name__ == "__main__":
    deploy()
