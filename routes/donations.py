from flask import Blueprint, request, jsonify
from flask_jwt_extended import jwt_required
from filters import SORT_OPTIONS, sort_donations
from storage import StorageError, image_from_file, image_from_data_url
from tracking import DuplicateOperationError
from utils import get_extension, json_body, text_field_error

donations_bp = Blueprint('donations', __name__)

TEXT_FIELDS = ('title', 'description', 'quantity', 'location', 'distance', 'pickup_time', 'pickupTime')


def _payload():
    """
    JSON body, or form fields plus an optional 'image' file for multipart uploads.
    Raises ``StorageError`` for a malformed body or image.
    """
    if request.files or request.form:
        data = request.form.to_dict()
        upload = request.files.get('image')
        return data, image_from_file(upload) if upload else None

    data = request.get_json(silent=True) or {}
    if not isinstance(data, dict):
        raise StorageError('Expected a JSON object')
    error = text_field_error(data, TEXT_FIELDS + ('image',))
    if error:
        raise StorageError(error)
    image = data.pop('image', None)
    return data, image_from_data_url(image, filename=data.get('title', 'upload')) if image else None


def _serialize(result, status=200, key='donation'):
    if result.error:
        return jsonify({'error': result.error}), 400
    return jsonify({key: result.data.to_dict()}), status


# ==========================================
#  1. CREATE DONATION
# ==========================================
@donations_bp.route('/api/donations', methods=['POST'])
@jwt_required()
def create_donation():
    try:
        data, image = _payload()
    except StorageError as e:
        return jsonify({'error': str(e)}), 400

    title = (data.get('title') or '').strip()
    pickup_time = (data.get('pickup_time') or data.get('pickupTime') or '').strip()
    repository = get_extension('donations')

    # Guard against a double-tapped submit button
    try:
        result = get_extension('tracker').prevent_duplicates(
            f"create-donation:{title}:{pickup_time}",
            lambda: repository.create(data, image=image),
            {'title': title}
        )
    except DuplicateOperationError as e:
        return jsonify({'error': str(e)}), 409

    return _serialize(result, 201)


# ==========================================
#  2. MY DONATIONS
# ==========================================
@donations_bp.route('/api/donations', methods=['GET'])
@jwt_required()
def list_my_donations():
    result = get_extension('donations').list()
    if result.error:
        return jsonify({'error': result.error}), 400

    donations = [d.to_dict() for d in result.data]
    return jsonify({
        'donations': donations,
        'active': [d for d in donations if d['status'] == 'active'],
        'completed': [d for d in donations if d['status'] == 'completed']
    }), 200


# ==========================================
#  3. AVAILABLE DONATIONS (Feed)
# ==========================================
@donations_bp.route('/api/donations/available', methods=['GET'])
@jwt_required()
def list_available_donations():
    sort = request.args.get('sort', 'all')
    if sort not in SORT_OPTIONS:
        return jsonify({'error': f'Invalid sort. Must be one of: {", ".join(SORT_OPTIONS)}'}), 400

    result = get_extension('donations').list_available()
    if result.error:
        return jsonify({'error': result.error}), 400

    return jsonify({'donations': [d.to_dict() for d in sort_donations(result.data, sort)]}), 200


# ==========================================
#  4. SINGLE DONATION
# ==========================================
@donations_bp.route('/api/donations/<donation_id>', methods=['GET'])
@jwt_required()
def get_donation(donation_id):
    result = get_extension('donations').get(donation_id)
    if result.error:
        return jsonify({'error': result.error}), 404
    return jsonify({'donation': result.data.to_dict()}), 200


# ==========================================
#  5. STATUS / RESCUE
# ==========================================
@donations_bp.route('/api/donations/<donation_id>/status', methods=['PATCH'])
@jwt_required()
def update_status(donation_id):
    data = json_body()
    if not data.get('status'):
        return jsonify({'error': 'Missing status'}), 400

    result = get_extension('donations').update_status(donation_id, data['status'])
    if result.error:
        return jsonify({'error': result.error}), 404
    return jsonify({'donation': result.data.to_dict()}), 200


@donations_bp.route('/api/donations/<donation_id>/rescue', methods=['POST'])
@jwt_required()
def rescue_donation(donation_id):
    tracker = get_extension('tracker')
    repository = get_extension('donations')

    def _rescue(transaction_id):
        tracker.log('Confirming rescue', context={'donation_id': donation_id}, transaction_id=transaction_id)
        return repository.rescue(donation_id)

    result = tracker.track_operation('confirmDonationRescue', _rescue, {'donation_id': donation_id})
    if result.error:
        return jsonify({'error': result.error}), 409
    return jsonify({'message': 'Donation rescued!', 'donation': result.data.to_dict()}), 200


# ==========================================
#  6. DELETE DONATION
# ==========================================
@donations_bp.route('/api/donations/<donation_id>', methods=['DELETE'])
@jwt_required()
def delete_donation(donation_id):
    result = get_extension('donations').delete(donation_id)
    if result.error:
        return jsonify({'error': result.error}), 400
    if result.data == 0:
        return jsonify({'error': 'Donation not found'}), 404
    return jsonify({'message': 'Donation deleted successfully'}), 200
