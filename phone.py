"""Client helpers for the /functions/v1/verify endpoint."""
import os

import requests

DEFAULT_FUNCTIONS_URL = 'http://localhost:5000'


def _call_verify(payload, base_url=None, api_key=None):
    base_url = base_url or os.getenv('ZIPLI_FUNCTIONS_URL', DEFAULT_FUNCTIONS_URL)
    api_key = api_key or os.getenv('ZIPLI_ANON_KEY', '')
    response = requests.post(
        f"{base_url.rstrip('/')}/functions/v1/verify",
        json=payload,
        headers={'Authorization': f'Bearer {api_key}'},
        timeout=15
    )
    data = response.json()
    if not data.get('success'):
        raise RuntimeError(data.get('error') or 'Verification request failed')
    return data


def skip_phone_verification(phone_number, **kwargs):
    try:
        _call_verify({'to': phone_number, 'action': 'skip'}, **kwargs)
        return True, None
    except (requests.RequestException, RuntimeError, ValueError) as e:
        return False, str(e) or 'Failed to skip verification'


def send_otp(phone_number, **kwargs):
    """Returns ``(verification_id, error)``."""
    try:
        data = _call_verify({'to': phone_number, 'action': 'send'}, **kwargs)
        return data.get('id'), None
    except (requests.RequestException, RuntimeError, ValueError) as e:
        return None, str(e) or 'Failed to send OTP'


def verify_otp(phone_number, code, verification_id=None, **kwargs):
    """Returns ``(valid, error)``."""
    payload = {'to': phone_number, 'action': 'check', 'code': code}
    if verification_id:
        payload['id'] = verification_id
    try:
        data = _call_verify(payload, **kwargs)
        return bool(data.get('valid')), None
    except (requests.RequestException, RuntimeError, ValueError) as e:
        return False, str(e) or 'Failed to verify OTP'
