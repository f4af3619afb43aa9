from flask import Flask, jsonify
from flask_cors import CORS
import os
import logging
from dotenv import load_dotenv
import re
from datetime import timedelta

from extensions import db, migrate, jwt, mail, socketio
from realtime import ChangeFeed
from repository import DonationRepository
from storage import ObjectStorage
from tracking import TransactionTracker
from wizard import DraftStore

load_dotenv()


def _socket_emitter(event, payload, room):
    socketio.emit(event, payload, to=room)


def create_app(config_overrides=None):
    """
    The Application Factory.
    Creates and configures the app, but does not run it.
    """
    app = Flask(__name__)

    # --- CONFIGURATION ---
    app.config['SECRET_KEY'] = os.getenv('SECRET_KEY', 'default_secret_key')
    # Fix Postgres URL for SQLAlchemy
    database_url = os.getenv('DATABASE_URL', 'sqlite:///zipli.db')
    if database_url.startswith("postgres://"):
        database_url = database_url.replace("postgres://", "postgresql://", 1)
    app.config['SQLALCHEMY_DATABASE_URI'] = database_url

    app.config['SQLALCHEMY_TRACK_MODIFICATIONS'] = False
    app.config['JWT_SECRET_KEY'] = os.getenv('JWT_SECRET_KEY', 'fallback-secret-key')
    app.config['JWT_ACCESS_TOKEN_EXPIRES'] = timedelta(hours=1)

    # --- EMAIL CONFIGURATION ---
    app.config['MAIL_SERVER'] = os.getenv('MAIL_SERVER', 'smtp.gmail.com')
    app.config['MAIL_PORT'] = int(os.getenv('MAIL_PORT', 587))
    app.config['MAIL_USE_TLS'] = True
    app.config['MAIL_USERNAME'] = os.getenv('MAIL_USERNAME')
    app.config['MAIL_PASSWORD'] = os.getenv('MAIL_PASSWORD')
    app.config['MAIL_DEFAULT_SENDER'] = os.getenv('MAIL_USERNAME', 'no-reply@zipli.app')

    # --- THIRD PARTY SERVICES ---
    app.config['MESSAGEBIRD_API_KEY'] = os.getenv('MESSAGEBIRD_API_KEY')
    app.config['GOOGLE_CLOUD_API_KEY'] = os.getenv('GOOGLE_CLOUD_API_KEY')

    # --- STORAGE & CACHE ---
    app.config['STORAGE_ROOT'] = os.getenv('STORAGE_ROOT', os.path.join(app.instance_path, 'storage'))
    app.config['DONATION_CACHE_SECONDS'] = float(os.getenv('DONATION_CACHE_SECONDS', 60))

    if config_overrides:
        app.config.update(config_overrides)

    # --- INITIALIZE EXTENSIONS ---
    # We attach the tools to this specific app instance
    db.init_app(app)
    migrate.init_app(app, db)
    jwt.init_app(app)
    mail.init_app(app)
    socketio.init_app(app)

    # --- PER-APP STATE (cache, dedup map, drafts) ---
    tracker = TransactionTracker(debug_enabled=app.debug or app.testing or None)
    feed = ChangeFeed(emitter=_socket_emitter)
    storage = ObjectStorage(app.config['STORAGE_ROOT'])
    app.extensions['zipli.tracker'] = tracker
    app.extensions['zipli.feed'] = feed
    app.extensions['zipli.storage'] = storage
    app.extensions['zipli.donations'] = DonationRepository(
        storage=storage,
        feed=feed,
        tracker=tracker,
        cache_ttl=app.config['DONATION_CACHE_SECONDS'],
    )
    app.extensions['zipli.drafts'] = DraftStore()

    # --- CORS CONFIGURATION ---
    origins = [o for o in os.getenv('CORS_ORIGINS', '').split(',') if o]
    CORS(app, resources={
        r"/api/*": {
            "origins": origins + [
                "http://localhost:5173",
                "http://localhost:3000",
                re.compile(r"^https://.*\.netlify\.app$")
            ],
            "methods": ["GET", "POST", "PATCH", "PUT", "DELETE", "OPTIONS"],
            "allow_headers": ["Content-Type", "Authorization", "X-Requested-With"],
            "supports_credentials": True
        }
    })

    # --- REGISTER BLUEPRINTS ---
    # Import inside the function to avoid circular imports
    from routes.auth import auth_bp
    from routes.organizations import organizations_bp
    from routes.donations import donations_bp
    from routes.drafts import drafts_bp
    from routes.food_requests import requests_bp
    from routes.functions import functions_bp
    from routes.storage import storage_bp
    from routes.realtime import register_socket_handlers

    app.register_blueprint(auth_bp)
    app.register_blueprint(organizations_bp)
    app.register_blueprint(donations_bp)
    app.register_blueprint(drafts_bp)
    app.register_blueprint(requests_bp)
    app.register_blueprint(functions_bp)
    app.register_blueprint(storage_bp)
    register_socket_handlers(socketio)

    # --- ERROR BOUNDARY ---
    @app.errorhandler(500)
    def internal_error(e):
        db.session.rollback()
        return jsonify({'error': 'Something went wrong. Please reload the page.'}), 500

    return app


# --- ENTRY POINT ---
# This only runs if you type 'python app.py'
if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    app = create_app()
    socketio.run(app, debug=True)
