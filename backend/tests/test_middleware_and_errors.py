from fastapi.testclient import TestClient
from wingsed.main import app, rate_limiter
from wingsed.utils.rate_limit import InMemoryRateLimiter

client = TestClient(app)


def test_health_sets_security_and_request_id_headers():
    r = client.get('/health')
    assert r.status_code == 200
    assert r.json() == {'status': 'ok'}
    assert r.headers['X-Content-Type-Options'] == 'nosniff'
    assert r.headers['X-Frame-Options'] == 'SAMEORIGIN'
    assert 'max-age' in r.headers['Strict-Transport-Security']
    assert r.headers['Cross-Origin-Opener-Policy'] == 'same-origin'
    assert len(r.headers['X-Request-ID']) == 32


def test_incoming_request_id_is_echoed():
    r = client.get('/health', headers={'X-Request-ID': 'trace-123'})
    assert r.headers['X-Request-ID'] == 'trace-123'


def test_cors_allows_configured_origin_only():
    ok = client.options('/api/universities', headers={
        'Origin': 'http://localhost:3000', 'Access-Control-Request-Method': 'GET',
    })
    assert ok.headers['access-control-allow-origin'] == 'http://localhost:3000'
    blocked = client.get('/api/universities/count', headers={'Origin': 'https://evil.example'})
    assert 'access-control-allow-origin' not in blocked.headers


def test_rate_limit_returns_429_with_retry_after(monkeypatch):
    monkeypatch.setattr(rate_limiter, 'limit', 2)
    assert client.get('/api/universities/count').status_code == 200
    assert client.get('/api/universities/count').status_code == 200
    r = client.get('/api/universities/count')
    assert r.status_code == 429
    assert int(r.headers['Retry-After']) >= 1
    body = r.json()
    assert body['statusCode'] == 429
    assert body['error'] == 'Too Many Requests'


def test_webhooks_are_not_rate_limited(monkeypatch):
    monkeypatch.setattr(rate_limiter, 'limit', 1)
    client.get('/health')
    r = client.post('/api/webhooks/clerk', content='{}', headers={'Content-Type': 'application/json'})
    assert r.status_code == 400


def test_limiter_window_expires():
    now = [100.0]
    limiter = InMemoryRateLimiter(limit=1, window_seconds=10, clock=lambda: now[0])
    assert limiter.allow('1.2.3.4') == (True, 0)
    allowed, retry_after = limiter.allow('1.2.3.4')
    assert not allowed
    assert retry_after == 10
    assert limiter.allow('5.6.7.8')[0]
    now[0] = 110.5
    assert limiter.allow('1.2.3.4')[0]


def test_limiter_forgets_idle_clients():
    now = [0.0]
    limiter = InMemoryRateLimiter(limit=5, window_seconds=10, clock=lambda: now[0])
    for i in range(1000):
        limiter.allow(f'10.0.{i // 256}.{i % 256}')
    assert len(limiter._hits) == 1000
    now[0] = 11.0
    assert limiter.allow('192.168.0.1')[0]
    assert list(limiter._hits) == ['192.168.0.1']


def test_unhandled_errors_are_hidden(monkeypatch):
    def boom(self):
        raise RuntimeError('database exploded: secret dsn')
    monkeypatch.setattr('wingsed.services.UniversityService.get_count', boom)
    quiet = TestClient(app, raise_server_exceptions=False)
    r = quiet.get('/api/universities/count', headers={'X-Request-ID': 'crash-1'})
    assert r.status_code == 500
    body = r.json()
    assert body['message'] == 'Internal server error'
    assert 'secret' not in r.text
    assert r.headers['X-Content-Type-Options'] == 'nosniff'
    assert r.headers['X-Request-ID'] == 'crash-1'


def test_unhandled_errors_keep_cors_headers(monkeypatch):
    def boom(self):
        raise RuntimeError('boom')
    monkeypatch.setattr('wingsed.services.UniversityService.get_count', boom)
    r = client.get('/api/universities/count', headers={'Origin': 'http://localhost:3000'})
    assert r.status_code == 500
    assert r.json()['statusCode'] == 500
    assert r.headers['access-control-allow-origin'] == 'http://localhost:3000'
    assert len(r.headers['X-Request-ID']) == 32


def test_unknown_route_uses_error_envelope():
    r = client.get('/api/nothing-here')
    assert r.status_code == 404
    body = r.json()
    assert body['statusCode'] == 404
    assert body['path'] == '/api/nothing-here'
    assert 'timestamp' in body
