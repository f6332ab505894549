from datetime import datetime, timedelta, timezone

import jwt

from careerbot.config import settings
from conftest import unique_email


def test_signup_login_and_protected_route(client):
    email = unique_email()
    r = client.post('/api/auth/signup', json={'email': email, 'password': 'pass123'})
    assert r.status_code == 201
    body = r.json()
    assert body['success'] is True
    assert body['data']['user']['email'] == email
    assert 'createdAt' in body['data']['user']

    r2 = client.post('/api/auth/login', json={'email': email.upper(), 'password': 'pass123'})
    assert r2.status_code == 200
    token = r2.json()['data']['token']
    payload = jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
    assert payload['email'] == email
    assert payload['userId'] == body['data']['user']['id']

    r3 = client.get('/api/chat/messages', headers={'Authorization': f'Bearer {token}'})
    assert r3.status_code == 200


def test_signup_rejects_duplicates_and_bad_input(client):
    email = unique_email()
    assert client.post('/api/auth/signup', json={'email': email, 'password': 'pass123'}).status_code == 201
    dup = client.post('/api/auth/signup', json={'email': email, 'password': 'pass123'})
    assert dup.status_code == 400
    assert dup.json()['success'] is False
    assert client.post('/api/auth/signup', json={'email': 'not-an-email', 'password': 'pass123'}).status_code == 400
    assert client.post('/api/auth/signup', json={'email': unique_email(), 'password': '123'}).status_code == 400
    assert client.post('/api/auth/signup', json={'email': unique_email()}).status_code == 400


def test_login_wrong_password(client):
    email = unique_email()
    client.post('/api/auth/signup', json={'email': email, 'password': 'pass123'})
    r = client.post('/api/auth/login', json={'email': email, 'password': 'wrong-pass'})
    assert r.status_code == 401
    assert r.json() == {'success': False, 'message': 'Invalid email or password'}


def test_missing_and_invalid_token_rejected(client):
    r = client.get('/api/quiz/attempts')
    assert r.status_code == 401
    assert r.json()['success'] is False
    r2 = client.get('/api/quiz/attempts', headers={'Authorization': 'Bearer invalid.token.here'})
    assert r2.status_code == 401


def test_expired_token_rejected(client, signup):
    _, user = signup()
    expired = jwt.encode(
        {'userId': user['id'], 'email': user['email'], 'exp': int((datetime.now(timezone.utc) - timedelta(hours=1)).timestamp())},
        settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM,
    )
    r = client.get('/api/chat/messages', headers={'Authorization': f'Bearer {expired}'})
    assert r.status_code == 401
    assert r.json()['message'] == 'Token expired'


def test_token_for_unknown_user_rejected(client):
    token = jwt.encode({'userId': 987654, 'email': 'ghost@example.com'}, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)
    r = client.get('/api/chat/messages', headers={'Authorization': f'Bearer {token}'})
    assert r.status_code == 401
    assert r.json()['message'] == 'User not found'


def test_regular_user_cannot_use_admin_routes(client, signup):
    headers, _ = signup()
    r = client.get('/api/admin/dashboard/stats', headers=headers)
    assert r.status_code == 403
    assert r.json()['success'] is False


def test_deactivated_user_cannot_login(client, admin_headers):
    email = unique_email()
    uid = client.post('/api/auth/signup', json={'email': email, 'password': 'pass123'}).json()['data']['user']['id']
    r = client.put(f'/api/admin/users/{uid}', json={'isActive': False}, headers=admin_headers)
    assert r.status_code == 200
    login = client.post('/api/auth/login', json={'email': email, 'password': 'pass123'})
    assert login.status_code == 403


def test_deactivated_user_token_stops_working(client, signup, admin_headers):
    headers, user = signup('inactive')
    assert client.get('/api/chat/messages', headers=headers).status_code == 200
    client.put(f"/api/admin/users/{user['id']}", json={'isActive': False}, headers=admin_headers)
    r = client.get('/api/chat/messages', headers=headers)
    assert r.status_code == 403
    assert r.json() == {'success': False, 'message': 'Account is deactivated'}
    client.put(f"/api/admin/users/{user['id']}", json={'isActive': True}, headers=admin_headers)
    assert client.get('/api/chat/messages', headers=headers).status_code == 200


def test_request_id_header_and_unknown_endpoint(client):
    r = client.get('/api/health')
    assert r.status_code == 200
    assert r.json()['status'] == 'OK'
    assert 'X-Request-ID' in r.headers
    echoed = client.get('/api/health', headers={'X-Request-ID': 'abc123'})
    assert echoed.headers['X-Request-ID'] == 'abc123'
    missing = client.get('/api/nope')
    assert missing.status_code == 404
    assert missing.json() == {'success': False, 'message': 'Endpoint not found'}
