import time
from types import SimpleNamespace

import httpx
import jwt
import pytest
from cryptography.hazmat.primitives.asymmetric import rsa
from fastapi.testclient import TestClient
from wingsed.auth import ClerkClient, ClerkUser, get_clerk_client
from wingsed.main import app

client = TestClient(app)

PRIVATE_KEY = rsa.generate_private_key(public_exponent=65537, key_size=2048)
OTHER_KEY = rsa.generate_private_key(public_exponent=65537, key_size=2048)

CLERK_USER = {
    'id': 'user_rs256',
    'first_name': 'Meera',
    'last_name': 'Iyer',
    'email_addresses': [
        {'id': 'idn_1', 'email_address': 'meera@example.com'},
        {'id': 'idn_2', 'email_address': 'meera.work@example.com'},
    ],
}


def _token(key=PRIVATE_KEY, **claims):
    payload = {'sub': 'user_rs256', 'exp': int(time.time()) + 300}
    payload.update(claims)
    return jwt.encode({k: v for k, v in payload.items() if v is not None}, key, algorithm='RS256')


@pytest.fixture
def clerk(monkeypatch):
    """A real ClerkClient whose JWKS lookup and REST calls stay in-process."""
    calls = []

    def fake_signing_key(self, token):
        return SimpleNamespace(key=PRIVATE_KEY.public_key())

    def fake_get(url, headers=None, timeout=None):
        calls.append((url, headers))
        request = httpx.Request('GET', url)
        if url.endswith('/users/user_rs256'):
            return httpx.Response(200, json=CLERK_USER, request=request)
        return httpx.Response(404, json={'errors': []}, request=request)

    monkeypatch.setattr(jwt.PyJWKClient, 'get_signing_key_from_jwt', fake_signing_key)
    monkeypatch.setattr(httpx, 'get', fake_get)
    real = ClerkClient('sk_test_abc', 'https://clerk.test/v1/', 'https://clerk.test/v1/jwks')
    real.calls = calls
    monkeypatch.setitem(app.dependency_overrides, get_clerk_client, lambda: real)
    return real


def test_verify_token_and_get_user(clerk):
    claims = clerk.verify_token(_token())
    assert claims['sub'] == 'user_rs256'
    user = clerk.get_user(claims['sub'])
    assert user == ClerkUser(id='user_rs256', email='meera@example.com', first_name='Meera', last_name='Iyer')
    url, headers = clerk.calls[0]
    assert url == 'https://clerk.test/v1/users/user_rs256'
    assert headers['Authorization'] == 'Bearer sk_test_abc'


def test_valid_token_signs_user_in(clerk):
    r = client.get('/api/users/me', headers={'Authorization': f'Bearer {_token()}'})
    assert r.status_code == 200
    body = r.json()
    assert body['clerkId'] == 'user_rs256'
    assert body['email'] == 'meera@example.com'
    assert body['name'] == 'Meera Iyer'


def test_expired_token_is_rejected(clerk):
    token = _token(exp=int(time.time()) - 60)
    r = client.get('/api/users/me', headers={'Authorization': f'Bearer {token}'})
    assert r.status_code == 401
    assert r.json()['message'] == 'Token expired'


def test_token_without_subject_is_rejected(clerk):
    with pytest.raises(jwt.MissingRequiredClaimError):
        clerk.verify_token(_token(sub=None))
    r = client.get('/api/users/me', headers={'Authorization': f'Bearer {_token(sub=None)}'})
    assert r.status_code == 401
    assert r.json()['message'] == 'Invalid token'


def test_token_signed_by_another_key_is_rejected(clerk):
    r = client.get('/api/users/me', headers={'Authorization': f'Bearer {_token(key=OTHER_KEY)}'})
    assert r.status_code == 401
    assert r.json()['message'] == 'Invalid token'


def test_unknown_clerk_user_is_rejected(clerk):
    token = _token(sub='user_gone')
    with pytest.raises(httpx.HTTPStatusError):
        clerk.get_user('user_gone')
    r = client.get('/api/users/me', headers={'Authorization': f'Bearer {token}'})
    assert r.status_code == 401
    assert r.json()['message'] == 'Invalid token'
