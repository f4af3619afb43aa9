from flask import Blueprint, jsonify
from flask_jwt_extended import jwt_required, get_jwt_identity
from datetime import date
from models import db, Request
from realtime import ChangeEvent
from utils import get_extension, json_body, text_field_error

requests_bp = Blueprint('requests', __name__)

REQUEST_STATUSES = ('active', 'completed', 'cancelled')


def _publish(event_type, new=None, old=None):
    # Runs after commit; listener failures are logged, not returned to the client
    try:
        get_extension('feed').publish(ChangeEvent('requests', event_type, new, old))
    except Exception as e:
        get_extension('tracker').error(f"Failed to publish {event_type} for requests", e)


# ==========================================
#  1. CREATE REQUEST
# ==========================================
@requests_bp.route('/api/requests', methods=['POST'])
@jwt_required()
def create_request():
    current_user_id = get_jwt_identity()
    tracker = get_extension('tracker')
    data = json_body()

    error = text_field_error(data, ('description', 'pickup_date', 'pickup_time'))
    if error:
        return jsonify({'error': error}), 400

    required_fields = ['description', 'people_count', 'pickup_date', 'pickup_time']
    if not all(data.get(field) for field in required_fields):
        return jsonify({'error': 'Missing required fields'}), 400

    try:
        people_count = int(data['people_count'])
    except (TypeError, ValueError):
        return jsonify({'error': 'People count must be a number'}), 400
    if people_count <= 0:
        return jsonify({'error': 'People count must be positive'}), 400

    try:
        pickup_date = date.fromisoformat(data['pickup_date'])
    except (TypeError, ValueError):
        return jsonify({'error': 'Invalid date format. Use YYYY-MM-DD'}), 400

    tx_id = tracker.generate_transaction_id()
    tracker.log('Submitting new request', context={'user_id': current_user_id}, transaction_id=tx_id)

    new_request = Request(
        user_id=current_user_id,
        description=data['description'].strip(),
        people_count=people_count,
        pickup_date=pickup_date,
        pickup_time=data['pickup_time'].strip()
    )

    try:
        db.session.add(new_request)
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        tracker.error('Failed to submit request', e, {'user_id': current_user_id}, tx_id)
        return jsonify({'error': str(e)}), 500

    tracker.log('Request submitted successfully', context={'request_id': new_request.id}, transaction_id=tx_id)
    _publish('INSERT', new=new_request.to_dict())
    return jsonify({'request': new_request.to_dict()}), 201


# ==========================================
#  2. LIST REQUESTS
# ==========================================
@requests_bp.route('/api/requests', methods=['GET'])
@jwt_required()
def list_my_requests():
    rows = Request.query.filter_by(user_id=get_jwt_identity()) \
        .order_by(Request.created_at.desc()).all()
    return jsonify({'requests': [r.to_dict() for r in rows]}), 200


@requests_bp.route('/api/requests/active', methods=['GET'])
@jwt_required()
def list_active_requests():
    rows = Request.query.filter_by(status='active').order_by(Request.created_at.desc()).all()
    return jsonify({'requests': [r.to_dict() for r in rows]}), 200


# ==========================================
#  3. UPDATE STATUS (Owner only)
# ==========================================
@requests_bp.route('/api/requests/<request_id>/status', methods=['PATCH'])
@jwt_required()
def update_request_status(request_id):
    data = json_body()
    status = data.get('status')
    if status not in REQUEST_STATUSES:
        return jsonify({'error': f'Invalid status. Must be one of: {", ".join(REQUEST_STATUSES)}'}), 400

    row = Request.query.filter_by(id=request_id, user_id=get_jwt_identity()).first()
    if not row:
        return jsonify({'error': 'Request not found'}), 404

    if row.status != 'active':
        return jsonify({'error': f'Request is already {row.status}'}), 400

    old = row.to_dict()
    row.status = status
    try:
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        return jsonify({'error': str(e)}), 500

    _publish('UPDATE', new=row.to_dict(), old=old)
    return jsonify({'request': row.to_dict()}), 200


# ==========================================
#  4. DELETE REQUEST (Owner only)
# ==========================================
@requests_bp.route('/api/requests/<request_id>', methods=['DELETE'])
@jwt_required()
def delete_request(request_id):
    row = Request.query.filter_by(id=request_id, user_id=get_jwt_identity()).first()
    if not row:
        return jsonify({'error': 'Request not found'}), 404

    old = row.to_dict()
    db.session.delete(row)
    db.session.commit()

    _publish('DELETE', old=old)
    return jsonify({'message': 'Request deleted successfully'}), 200
