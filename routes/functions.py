"""
Stateless proxies to third-party services.

    /functions/v1/verify  SMS one-time codes (MessageBird Verify API)
    /functions/v1/ocr     Text detection on menu photos (Google Vision API)
"""
import base64
import re

import requests
from flask import Blueprint, request, jsonify, current_app
from flask_cors import cross_origin

functions_bp = Blueprint('functions', __name__, url_prefix='/functions/v1')

MESSAGEBIRD_VERIFY_URL = 'https://rest.messagebird.com/verify'
VISION_ANNOTATE_URL = 'https://vision.googleapis.com/v1/images:annotate'
HTTP_TIMEOUT = 15

VERIFY_ACTIONS = ('send', 'check', 'skip')
VERIFY_TEMPLATE = 'Your Zipli verification code is %token'

MENU_LINE = re.compile(
    r'^[\w\s]+((\d+(\.\d+)?)\s*(kg|g|pcs|pieces|items|portions|servings|ml|l))',
    re.IGNORECASE
)

cors = cross_origin(origins='*', methods=['POST', 'OPTIONS'], allow_headers=['Content-Type', 'Authorization'])


class ProviderError(Exception):
    pass


# ==========================================
#  1. SMS VERIFICATION
# ==========================================
def _messagebird(method, url, api_key, **kwargs):
    response = requests.request(
        method, url,
        headers={'Authorization': f'AccessKey {api_key}'},
        timeout=HTTP_TIMEOUT,
        **kwargs
    )
    body = response.json() if response.content else {}
    return response.status_code, body


def _provider_message(body, default):
    errors = body.get('errors') or []
    if errors and errors[0].get('description'):
        return errors[0]['description']
    return default


@functions_bp.route('/verify', methods=['POST', 'OPTIONS'])
@cors
def verify():
    data = request.get_json(silent=True) or {}
    to = data.get('to')
    action = data.get('action')

    if not to or not action:
        return jsonify({'success': False, 'error': 'Missing required parameters'}), 400

    if action not in VERIFY_ACTIONS:
        return jsonify({'success': False, 'error': 'Invalid action'}), 400

    if action == 'skip':
        return jsonify({'success': True, 'skipped': True}), 200

    api_key = current_app.config.get('MESSAGEBIRD_API_KEY')
    if not api_key:
        return jsonify({'success': False, 'error': 'Missing MessageBird configuration'}), 500

    try:
        if action == 'send':
            status, body = _messagebird('POST', MESSAGEBIRD_VERIFY_URL, api_key, data={
                'recipient': to,
                'template': VERIFY_TEMPLATE,
                'type': 'sms',
                'timeout': 600,  # 10 minutes
                'tokenLength': 6
            })
            if status >= 400:
                raise ProviderError(_provider_message(body, 'Failed to send verification code'))
            return jsonify({'success': True, 'id': body.get('id')}), 200

        # action == 'check'
        code = data.get('code')
        if not code:
            return jsonify({'success': False, 'error': 'Missing verification code'}), 400

        # The verification id comes back from 'send'; older clients only pass the number
        verify_id = data.get('id') or to
        status, body = _messagebird('GET', f"{MESSAGEBIRD_VERIFY_URL}/{verify_id}", api_key, params={'token': code})
        if status == 422:
            # Wrong or expired token
            return jsonify({'success': True, 'valid': False}), 200
        if status >= 400:
            raise ProviderError(_provider_message(body, 'Verification failed'))
        return jsonify({'success': True, 'valid': body.get('status') == 'verified'}), 200

    except (requests.RequestException, ProviderError, ValueError) as e:
        current_app.logger.error(f"Verify function error: {e}")
        return jsonify({'success': False, 'error': str(e) or 'Verification failed'}), 500


# ==========================================
#  2. MENU OCR
# ==========================================
def parse_menu_items(text):
    """
    Keeps lines shaped like "<name> <number><unit>" and splits them at the
    first number: "Rice 2kg" -> {'name': 'Rice', 'quantity': '2kg'}.
    """
    items = []
    for line in text.split('\n'):
        if not MENU_LINE.match(line):
            continue
        name, quantity = re.match(r'^(\D*)(.*)$', line).groups()
        items.append({'name': name.strip(), 'quantity': quantity.strip()})
    return items


def detect_text(content, api_key):
    response = requests.post(
        VISION_ANNOTATE_URL,
        params={'key': api_key},
        json={'requests': [{
            'image': {'content': base64.b64encode(content).decode('ascii')},
            'features': [{'type': 'TEXT_DETECTION'}]
        }]},
        timeout=HTTP_TIMEOUT
    )
    body = response.json()
    if response.status_code >= 400:
        raise ProviderError(body.get('error', {}).get('message', 'Failed to process image'))

    result = (body.get('responses') or [{}])[0]
    if result.get('error'):
        raise ProviderError(result['error'].get('message', 'Failed to process image'))

    annotations = result.get('textAnnotations') or []
    return annotations[0].get('description', '') if annotations else ''


@functions_bp.route('/ocr', methods=['POST', 'OPTIONS'])
@cors
def ocr():
    image = request.files.get('image')
    if not image:
        return jsonify({'success': False, 'error': 'No image provided'}), 400

    api_key = current_app.config.get('GOOGLE_CLOUD_API_KEY')
    if not api_key:
        return jsonify({'success': False, 'error': 'Missing Google Cloud configuration'}), 500

    try:
        text = detect_text(image.read(), api_key)
    except (requests.RequestException, ProviderError, ValueError) as e:
        current_app.logger.error(f"OCR function error: {e}")
        return jsonify({'success': False, 'error': str(e) or 'Failed to process image'}), 500

    if not text:
        return jsonify({'success': False, 'error': 'No text detected in image'}), 422

    return jsonify({'success': True, 'items': parse_menu_items(text)}), 200
