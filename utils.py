import re

from flask import url_for, current_app, request
from flask_mail import Message
from flask_jwt_extended import verify_jwt_in_request, get_jwt_identity
from extensions import mail

_QUANTITY = re.compile(r'^\s*(-?\d+(?:[.,]\d+)?)')


def parse_quantity(quantity):
    """
    Leading magnitude of a free-text quantity ("2 kg" -> 2.0).
    Returns None when the text does not start with a number.
    """
    match = _QUANTITY.match(quantity or '')
    if not match:
        return None
    return float(match.group(1).replace(',', '.'))


def current_identity():
    """The authenticated user id for this request, or None."""
    verify_jwt_in_request(optional=True)
    return get_jwt_identity()


def get_extension(name):
    return current_app.extensions[f'zipli.{name}']


def send_verification_email(user, organization_name):
    token = user.get_verification_token()

    # Points at the backend verify endpoint; the frontend forwards the token here
    link = url_for('auth.verify_email', token=token, _external=True)

    msg = Message('Verify Your Account - Zipli',
                  recipients=[user.email])

    msg.body = f'''Hello {organization_name},

Welcome to Zipli!

To activate your account, please verify your email by clicking the link below:

{link}

If you did not register, please ignore this email.
'''
    try:
        mail.send(msg)
    except Exception as e:
        current_app.logger.warning(f"Failed to send email: {e}")


def text_field_error(data, fields):
    """Error message for the first field holding a non-string value, or None."""
    for field in fields:
        value = data.get(field)
        if value is not None and not isinstance(value, str):
            return f"{field} must be text"
    return None


def json_body():
    """The request's JSON object; anything else (missing, malformed, a list) reads as empty."""
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}
