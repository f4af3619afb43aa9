import io
import pytest
import requests
from unittest.mock import patch, MagicMock
from routes.functions import parse_menu_items


def provider_response(status=200, body=None):
    response = MagicMock()
    response.status_code = status
    response.content = b'{}' if body is not None else b''
    response.json.return_value = body or {}
    return response

# ==========================================
#  1. SMS VERIFICATION
# ==========================================

def test_verify_missing_parameters(client):
    response = client.post('/functions/v1/verify', json={"action": "send"})
    assert response.status_code == 400
    assert response.get_json() == {"success": False, "error": "Missing required parameters"}


def test_verify_invalid_action(client):
    response = client.post('/functions/v1/verify', json={"to": "+358401234567", "action": "call"})
    assert response.status_code == 400
    assert response.get_json()['error'] == "Invalid action"


def test_verify_skip(client):
    with patch('routes.functions.requests.request') as mock_request:
        response = client.post('/functions/v1/verify', json={"to": "+358401234567", "action": "skip"})
    assert response.get_json() == {"success": True, "skipped": True}
    assert not mock_request.called


def test_verify_send(client):
    with patch('routes.functions.requests.request',
               return_value=provider_response(201, {"id": "vrf-1", "status": "sent"})) as mock_request:
        response = client.post('/functions/v1/verify', json={"to": "+358401234567", "action": "send"})

    assert response.status_code == 200
    assert response.get_json() == {"success": True, "id": "vrf-1"}

    method, url = mock_request.call_args.args
    kwargs = mock_request.call_args.kwargs
    assert method == "POST"
    assert url == "https://rest.messagebird.com/verify"
    assert kwargs['headers']['Authorization'] == "AccessKey test-messagebird"
    assert kwargs['data']['recipient'] == "+358401234567"
    assert kwargs['data']['tokenLength'] == 6


def test_verify_check_valid(client):
    with patch('routes.functions.requests.request',
               return_value=provider_response(200, {"id": "vrf-1", "status": "verified"})) as mock_request:
        response = client.post('/functions/v1/verify', json={
            "to": "+358401234567", "action": "check", "code": "123456", "id": "vrf-1"
        })

    assert response.get_json() == {"success": True, "valid": True}
    assert mock_request.call_args.args[1].endswith("/verify/vrf-1")
    assert mock_request.call_args.kwargs['params'] == {"token": "123456"}


def test_verify_check_wrong_code(client):
    with patch('routes.functions.requests.request',
               return_value=provider_response(422, {"errors": [{"description": "Invalid token"}]})):
        response = client.post('/functions/v1/verify', json={
            "to": "+358401234567", "action": "check", "code": "000000"
        })
    assert response.status_code == 200
    assert response.get_json() == {"success": True, "valid": False}


def test_verify_provider_error(client):
    with patch('routes.functions.requests.request',
               return_value=provider_response(401, {"errors": [{"description": "Request not allowed"}]})):
        response = client.post('/functions/v1/verify', json={"to": "+358401234567", "action": "send"})
    assert response.status_code == 500
    assert response.get_json() == {"success": False, "error": "Request not allowed"}


def test_verify_network_error(client):
    with patch('routes.functions.requests.request', side_effect=requests.ConnectionError("timed out")):
        response = client.post('/functions/v1/verify', json={"to": "+358401234567", "action": "send"})
    assert response.status_code == 500
    assert response.get_json()['success'] is False


def test_verify_missing_configuration(app, client):
    app.config['MESSAGEBIRD_API_KEY'] = None
    response = client.post('/functions/v1/verify', json={"to": "+358401234567", "action": "send"})
    assert response.status_code == 500


def test_verify_preflight(client):
    response = client.options('/functions/v1/verify', headers={
        "Origin": "http://example.com",
        "Access-Control-Request-Method": "POST"
    })
    assert response.status_code == 200
    # Older Flask-Cors answers "*", newer releases echo the caller's origin
    assert response.headers['Access-Control-Allow-Origin'] in ("*", "http://example.com")
    assert "POST" in response.headers['Access-Control-Allow-Methods']


def test_verify_rejects_get(client):
    assert client.get('/functions/v1/verify').status_code == 405

# ==========================================
#  2. MENU OCR
# ==========================================

def test_parse_menu_items():
    text = "Lunch menu\nRice 2kg\nChicken soup 10 portions\nThank you!\nApples 3.5 kg"
    assert parse_menu_items(text) == [
        {"name": "Rice", "quantity": "2kg"},
        {"name": "Chicken soup", "quantity": "10 portions"},
        {"name": "Apples", "quantity": "3.5 kg"},
    ]


def test_ocr_extracts_items(client):
    vision = provider_response(200, {"responses": [{"textAnnotations": [{"description": "Rice 2kg\nMenu"}]}]})
    with patch('routes.functions.requests.post', return_value=vision) as mock_post:
        response = client.post('/functions/v1/ocr', data={"image": (io.BytesIO(b"jpeg"), "menu.jpg")},
                               content_type='multipart/form-data')

    assert response.status_code == 200
    assert response.get_json() == {"success": True, "items": [{"name": "Rice", "quantity": "2kg"}]}
    assert mock_post.call_args.kwargs['params'] == {"key": "test-vision"}
    feature = mock_post.call_args.kwargs['json']['requests'][0]['features'][0]
    assert feature == {"type": "TEXT_DETECTION"}


def test_ocr_no_image(client):
    response = client.post('/functions/v1/ocr', data={}, content_type='multipart/form-data')
    assert response.status_code == 400
    assert response.get_json()['error'] == "No image provided"


def test_ocr_no_text(client):
    with patch('routes.functions.requests.post', return_value=provider_response(200, {"responses": [{}]})):
        response = client.post('/functions/v1/ocr', data={"image": (io.BytesIO(b"jpeg"), "menu.jpg")},
                               content_type='multipart/form-data')
    assert response.status_code == 422
    assert response.get_json()['error'] == "No text detected in image"


@pytest.mark.parametrize("vision", [
    provider_response(403, {"error": {"message": "API key not valid"}}),
    provider_response(200, {"responses": [{"error": {"message": "Bad image data"}}]}),
])
def test_ocr_provider_error(client, vision):
    with patch('routes.functions.requests.post', return_value=vision):
        response = client.post('/functions/v1/ocr', data={"image": (io.BytesIO(b"jpeg"), "menu.jpg")},
                               content_type='multipart/form-data')
    assert response.status_code == 500
    assert response.get_json()['success'] is False
