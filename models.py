from werkzeug.security import generate_password_hash, check_password_hash
from datetime import datetime, timezone, timedelta
from extensions import db
import uuid
import jwt
from flask import current_app


def _uuid():
    return str(uuid.uuid4())


def _now():
    return datetime.now(timezone.utc)


# ==========================================
#  1. USER MODEL (Auth Identity)
# ==========================================
class User(db.Model):
    __tablename__ = 'users'

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    email = db.Column(db.String(120), unique=True, nullable=False, index=True)
    password_hash = db.Column(db.String(256), nullable=False)

    # Free-form data captured at signup, used to pre-fill the organization
    user_metadata = db.Column(db.JSON, default=dict)

    # --- SECURITY ---
    email_confirmed_at = db.Column(db.DateTime, nullable=True)

    # --- TIMESTAMPS ---
    created_at = db.Column(db.DateTime, default=_now)
    updated_at = db.Column(db.DateTime, default=_now, onupdate=_now)

    organization = db.relationship('Organization', backref='user', uselist=False, lazy=True)

    def set_password(self, password):
        self.password_hash = generate_password_hash(password)

    def check_password(self, password):
        return check_password_hash(self.password_hash, password)

    @property
    def is_confirmed(self):
        return self.email_confirmed_at is not None

    def get_verification_token(self, expires_sec=86400, purpose='verify'):
        """Generates a JWT token for email verification or password reset."""
        return jwt.encode(
            {
                "user_id": self.id,
                "purpose": purpose,
                "exp": datetime.now(timezone.utc) + timedelta(seconds=expires_sec)
            },
            current_app.config['SECRET_KEY'],
            algorithm="HS256"
        )

    @staticmethod
    def verify_token(token, purpose='verify'):
        """Decodes the token and returns the User."""
        try:
            payload = jwt.decode(
                token,
                current_app.config['SECRET_KEY'],
                algorithms=["HS256"]
            )
        except jwt.PyJWTError:
            return None
        if payload.get('purpose', 'verify') != purpose:
            return None
        return db.session.get(User, payload['user_id'])

    def to_dict(self):
        return {
            'id': self.id,
            'email': self.email,
            'user_metadata': self.user_metadata or {},
            'email_confirmed_at': self.email_confirmed_at.isoformat() if self.email_confirmed_at else None,
            'created_at': self.created_at.isoformat() if self.created_at else None
        }


# ==========================================
#  2. ORGANIZATION MODEL (1:1 with User)
# ==========================================
class Organization(db.Model):
    __tablename__ = 'organizations'

    id = db.Column(db.String(36), db.ForeignKey('users.id'), primary_key=True)
    name = db.Column(db.String(150), nullable=False)
    contact_person = db.Column(db.String(150), default='')
    email = db.Column(db.String(120), nullable=False)
    contact_number = db.Column(db.String(30), default='')
    address = db.Column(db.String(255), default='')
    role = db.Column(db.String(20), nullable=False, default='donor')  # donor, receiver

    # Base64 data URL or a plain URL
    profile_image = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime, default=_now)
    updated_at = db.Column(db.DateTime, default=_now, onupdate=_now)

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'contact_person': self.contact_person,
            'email': self.email,
            'contact_number': self.contact_number,
            'address': self.address,
            'role': self.role,
            'profile_image': self.profile_image,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None
        }


# ==========================================
#  3. DONATION MODEL
# ==========================================
class Donation(db.Model):
    __tablename__ = 'donations'

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    organization_id = db.Column(db.String(36), db.ForeignKey('organizations.id'), nullable=False, index=True)

    title = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=False)
    quantity = db.Column(db.String(100), nullable=False)  # e.g. "2 kg"
    location = db.Column(db.String(255), nullable=False)
    distance = db.Column(db.String(50), default='')
    pickup_time = db.Column(db.String(100), nullable=False)  # e.g. "today until 18:00"
    image_url = db.Column(db.String(500), nullable=True)

    status = db.Column(db.String(20), default='active', index=True)  # active, completed
    rescuer_id = db.Column(db.String(36), db.ForeignKey('organizations.id'), nullable=True)

    # --- TIMESTAMPS ---
    created_at = db.Column(db.DateTime, default=_now)
    updated_at = db.Column(db.DateTime, default=_now, onupdate=_now)

    organization = db.relationship('Organization', foreign_keys=[organization_id], backref='donations')


# ==========================================
#  4. REQUEST MODEL (Receiver needs)
# ==========================================
class Request(db.Model):
    __tablename__ = 'requests'

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    user_id = db.Column(db.String(36), db.ForeignKey('users.id'), nullable=False, index=True)
    description = db.Column(db.Text, nullable=False)
    people_count = db.Column(db.Integer, nullable=False)
    pickup_date = db.Column(db.Date, nullable=False)
    pickup_time = db.Column(db.String(100), nullable=False)
    status = db.Column(db.String(20), default='active')  # active, completed, cancelled
    created_at = db.Column(db.DateTime, default=_now)

    def to_dict(self):
        return {
            'id': self.id,
            'user_id': self.user_id,
            'description': self.description,
            'people_count': self.people_count,
            'pickup_date': self.pickup_date.isoformat(),
            'pickup_time': self.pickup_time,
            'status': self.status,
            'created_at': self.created_at.isoformat() if self.created_at else None
        }


# ==========================================
#  5. REVOKED TOKENS (Sign-out)
# ==========================================
class TokenBlocklist(db.Model):
    __tablename__ = 'token_blocklist'

    id = db.Column(db.Integer, primary_key=True)
    jti = db.Column(db.String(36), nullable=False, unique=True, index=True)
    created_at = db.Column(db.DateTime, default=_now)
