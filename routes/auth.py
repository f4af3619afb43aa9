from flask import Blueprint, request, jsonify
from flask_jwt_extended import create_access_token, jwt_required, get_jwt_identity, get_jwt
from flask_mail import Message
from datetime import datetime, timezone
from models import db, User, Organization, TokenBlocklist
from extensions import jwt, mail
from utils import send_verification_email, json_body, text_field_error

auth_bp = Blueprint('auth', __name__)

ROLES = ('donor', 'receiver')


@jwt.token_in_blocklist_loader
def check_if_token_revoked(jwt_header, jwt_payload):
    return db.session.query(TokenBlocklist.id).filter_by(jti=jwt_payload['jti']).scalar() is not None


def ensure_organization(user):
    """
    Returns the user's organization, creating it from signup metadata if it
    is missing (accounts created before profiles existed).
    """
    organization = db.session.get(Organization, user.id)
    if organization:
        return organization

    meta = user.user_metadata or {}
    role = meta.get('role') if meta.get('role') in ROLES else 'donor'
    organization = Organization(
        id=user.id,
        name=meta.get('organization_name') or user.email.split('@')[0],
        contact_person=meta.get('contact_person', ''),
        email=user.email,
        contact_number=meta.get('contact_number', ''),
        address=meta.get('address', ''),
        role=role
    )
    db.session.add(organization)
    db.session.commit()
    return organization


# ==========================================
#  1. SIGN UP
# ==========================================
@auth_bp.route('/api/auth/signup', methods=['POST'])
def signup():
    data = json_body()

    error = text_field_error(data, ('email', 'password', 'organization_name', 'contact_number',
                                     'address', 'contact_person', 'role'))
    if error:
        return jsonify({'error': error}), 400

    required_fields = ['email', 'password', 'organization_name', 'contact_number', 'address']
    for field in required_fields:
        if not data.get(field):
            return jsonify({'error': f'Missing required field: {field}'}), 400

    role = (data.get('role') or 'donor').lower()
    if role not in ROLES:
        return jsonify({'error': f'Invalid role. Must be one of: {", ".join(ROLES)}'}), 400

    if len(data['password']) < 6:
        return jsonify({'error': 'Password should be at least 6 characters'}), 400

    email = data['email'].strip().lower()
    if User.query.filter_by(email=email).first():
        return jsonify({'error': 'User already registered'}), 400

    metadata = {
        'organization_name': data['organization_name'],
        'contact_number': data['contact_number'],
        'address': data['address'],
        'contact_person': data.get('contact_person', ''),
        'role': role
    }
    new_user = User(email=email, user_metadata=metadata)
    new_user.set_password(data['password'])

    try:
        db.session.add(new_user)
        db.session.flush()
        db.session.add(Organization(
            id=new_user.id,
            name=data['organization_name'],
            contact_person=data.get('contact_person', ''),
            email=email,
            contact_number=data['contact_number'],
            address=data['address'],
            role=role
        ))
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        return jsonify({'error': str(e)}), 500

    send_verification_email(new_user, data['organization_name'])

    return jsonify({
        'message': 'Registration successful! Check your email to verify account.',
        'user': new_user.to_dict()
    }), 201


@auth_bp.route('/api/auth/verify-email/<token>', methods=['GET'])
def verify_email(token):
    user = User.verify_token(token)

    if not user:
        return jsonify({'error': 'Invalid or expired token.'}), 400

    if user.is_confirmed:
        return jsonify({'message': 'Account already verified.'}), 200

    user.email_confirmed_at = datetime.now(timezone.utc)
    db.session.commit()

    return jsonify({'message': 'Email verified! You can now log in.'}), 200


# ==========================================
#  2. SIGN IN / OUT / SESSION
# ==========================================
@auth_bp.route('/api/auth/signin', methods=['POST'])
def signin():
    data = json_body()

    error = text_field_error(data, ('email', 'password'))
    if error:
        return jsonify({'error': error}), 400

    if not data.get('email') or not data.get('password'):
        return jsonify({'error': 'Missing email or password'}), 400

    user = User.query.filter_by(email=data['email'].strip().lower()).first()

    if not user or not user.check_password(data['password']):
        return jsonify({'error': 'Invalid login credentials'}), 401

    if not user.is_confirmed:
        return jsonify({'error': 'Email not confirmed'}), 403

    try:
        organization = ensure_organization(user)
    except Exception as e:
        db.session.rollback()
        return jsonify({'error': str(e)}), 500

    access_token = create_access_token(identity=str(user.id), additional_claims={'role': organization.role})

    return jsonify({
        'message': 'Login successful!',
        'access_token': access_token,
        'user': user.to_dict(),
        'organization': organization.to_dict()
    }), 200


@auth_bp.route('/api/auth/signout', methods=['POST'])
@jwt_required()
def signout():
    db.session.add(TokenBlocklist(jti=get_jwt()['jti']))
    db.session.commit()
    return jsonify({'message': 'Signed out'}), 200


@auth_bp.route('/api/auth/session', methods=['GET'])
@jwt_required()
def session():
    user = db.session.get(User, get_jwt_identity())
    if not user:
        return jsonify({'error': 'User not found'}), 404

    return jsonify({
        'user': user.to_dict(),
        'organization': ensure_organization(user).to_dict()
    }), 200


# ==========================================
#  3. PASSWORD RESET FLOW
# ==========================================
@auth_bp.route('/api/auth/forgot-password', methods=['POST'])
def forgot_password():
    data = json_body()
    email = data.get('email')

    if not email or not isinstance(email, str):
        return jsonify({"error": "Email is required"}), 400

    user = User.query.filter_by(email=email.strip().lower()).first()
    if not user:
        return jsonify({"message": "If your email exists, a reset link has been sent."}), 200

    # Link back to whichever frontend called us
    frontend_url = request.headers.get('Origin') or "http://localhost:5173"
    reset_token = user.get_verification_token(expires_sec=900, purpose='reset')
    reset_link = f"{frontend_url}/auth/update-password?token={reset_token}"

    try:
        msg = Message(
            subject="Zipli Password Reset Request",
            recipients=[user.email],
            body=f"Hello,\n\nClick here to reset your password:\n{reset_link}\n\nThis link expires in 15 minutes."
        )
        mail.send(msg)
        return jsonify({"message": "Password reset email sent!"}), 200

    except Exception as e:
        return jsonify({"error": str(e)}), 500


@auth_bp.route('/api/auth/update-password', methods=['POST'])
def update_password():
    data = json_body()

    error = text_field_error(data, ('token', 'password'))
    if error:
        return jsonify({'error': error}), 400
    token = data.get('token')
    password = data.get('password')

    if not token or not password:
        return jsonify({'error': 'Missing token or password'}), 400

    if len(password) < 6:
        return jsonify({'error': 'Password should be at least 6 characters'}), 400

    user = User.verify_token(token, purpose='reset')
    if not user:
        return jsonify({'error': 'Invalid or expired token.'}), 400

    user.set_password(password)
    db.session.commit()
    return jsonify({'message': 'Password updated successfully'}), 200
