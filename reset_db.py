from app import create_app
from extensions import db
from sqlalchemy import text

app = create_app()

with app.app_context():
    print("--- STARTING CLEANUP ---")

    # 1. Drop the tables defined in models.py
    print("Dropping Users, Organizations, Donations and Requests...")
    db.drop_all()

    # 2. Manually drop the migration history table (which confuses Flask-Migrate)
    print("Dropping migration history...")
    try:
        db.session.execute(text("DROP TABLE IF EXISTS alembic_version;"))
        db.session.commit()
    except Exception as e:
        print(f"Minor note: {e}")

    print("--- SUCCESS: Database is now 100% empty tables ---")
