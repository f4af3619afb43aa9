from flask import Blueprint, jsonify
from flask_jwt_extended import jwt_required, get_jwt_identity
from models import db, User
from routes.auth import ensure_organization, ROLES
from storage import StorageError, image_from_data_url, MAX_IMAGE_SIZE
from utils import json_body, text_field_error

organizations_bp = Blueprint('organizations', __name__)

EDITABLE_FIELDS = ('name', 'contact_person', 'email', 'contact_number', 'address', 'role', 'profile_image')


def _current_organization():
    user = db.session.get(User, get_jwt_identity())
    if not user:
        return None
    return ensure_organization(user)


@organizations_bp.route('/api/organizations/me', methods=['GET'])
@jwt_required()
def get_profile():
    """ Refreshes profile data on page reload. """
    organization = _current_organization()
    if not organization:
        return jsonify({'error': 'Organization profile not found'}), 404
    return jsonify(organization.to_dict()), 200


@organizations_bp.route('/api/organizations/me', methods=['PUT'])
@jwt_required()
def update_profile():
    organization = _current_organization()
    if not organization:
        return jsonify({'error': 'Organization profile not found'}), 404

    data = json_body()

    error = text_field_error(data, EDITABLE_FIELDS)
    if error:
        return jsonify({'error': error}), 400

    if 'name' in data and not (data['name'] or '').strip():
        return jsonify({'error': 'Organization name cannot be empty'}), 400

    if 'role' in data and data['role'] not in ROLES:
        return jsonify({'error': f'Invalid role. Must be one of: {", ".join(ROLES)}'}), 400

    image = data.get('profile_image')
    if image and image.startswith('data:'):
        # Profile images are stored inline as base64 data URLs
        try:
            decoded = image_from_data_url(image)
        except StorageError as e:
            return jsonify({'error': str(e)}), 400
        if len(decoded.content) > MAX_IMAGE_SIZE:
            return jsonify({'error': 'Image is larger than 5MB'}), 400

    for field in EDITABLE_FIELDS:
        if field in data:
            setattr(organization, field, data[field])

    try:
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        return jsonify({'error': str(e)}), 500

    return jsonify({'message': 'Profile updated successfully', 'organization': organization.to_dict()}), 200


@organizations_bp.route('/api/organizations/me/image', methods=['DELETE'])
@jwt_required()
def clear_profile_image():
    """ Drops a broken profile image so the avatar falls back to initials. """
    organization = _current_organization()
    if not organization:
        return jsonify({'error': 'Organization profile not found'}), 404

    organization.profile_image = None
    db.session.commit()
    return jsonify({'message': 'Profile image removed'}), 200
