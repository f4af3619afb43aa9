from flask import Blueprint, request, jsonify
from flask_jwt_extended import jwt_required, get_jwt_identity
from storage import StorageError
from tracking import DuplicateOperationError
from utils import get_extension
from wizard import DonationWizard, WizardError

drafts_bp = Blueprint('drafts', __name__)


def _get_draft(draft_id):
    return get_extension('drafts').get(draft_id, get_jwt_identity())


def _fields():
    data = request.get_json(silent=True) or {}
    if not isinstance(data, dict):
        raise WizardError('Expected a JSON object')
    return data


@drafts_bp.route('/api/donation-drafts', methods=['POST'])
@jwt_required()
def start_draft():
    """ Opens a new donation wizard at the item entry step. """
    wizard = DonationWizard(
        repository=get_extension('donations'),
        tracker=get_extension('tracker'),
        owner_id=get_jwt_identity()
    )
    get_extension('drafts').add(wizard)
    return jsonify(wizard.to_dict()), 201


@drafts_bp.route('/api/donation-drafts/<draft_id>', methods=['GET'])
@jwt_required()
def get_draft(draft_id):
    wizard = _get_draft(draft_id)
    if not wizard:
        return jsonify({'error': 'Draft not found'}), 404
    return jsonify(wizard.to_dict()), 200


@drafts_bp.route('/api/donation-drafts/<draft_id>', methods=['PATCH'])
@jwt_required()
def advance_draft(draft_id):
    wizard = _get_draft(draft_id)
    if not wizard:
        return jsonify({'error': 'Draft not found'}), 404

    try:
        wizard.advance(**_fields())
    except WizardError as e:
        return jsonify({'error': str(e)}), 400
    return jsonify(wizard.to_dict()), 200


@drafts_bp.route('/api/donation-drafts/<draft_id>/back', methods=['POST'])
@jwt_required()
def draft_back(draft_id):
    wizard = _get_draft(draft_id)
    if not wizard:
        return jsonify({'error': 'Draft not found'}), 404

    try:
        wizard.back()
    except WizardError as e:
        return jsonify({'error': str(e)}), 400
    return jsonify(wizard.to_dict()), 200


@drafts_bp.route('/api/donation-drafts/<draft_id>/submit', methods=['POST'])
@jwt_required()
def submit_draft(draft_id):
    """
    Persists the donation and drops the draft. A submit that overlaps a
    running one gets 409.
    """
    wizard = _get_draft(draft_id)
    if not wizard:
        return jsonify({'error': 'Draft not found'}), 404

    try:
        data = _fields()
        if data and not wizard.donation:
            wizard.advance(**data)
        wizard.submit()
    except DuplicateOperationError as e:
        return jsonify({'error': str(e)}), 409
    except (WizardError, StorageError) as e:
        return jsonify({'error': str(e), 'draft': wizard.to_dict()}), 400

    get_extension('drafts').discard(draft_id)
    return jsonify(wizard.to_dict()), 201
