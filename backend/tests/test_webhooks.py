import json
import uuid
from datetime import datetime, timezone

from fastapi.testclient import TestClient
from sqlmodel import select
from svix.webhooks import Webhook
from wingsed.main import app
from wingsed.config import settings
from wingsed import models

client = TestClient(app)


def _signed(event: dict, secret: str = None):
    body = json.dumps(event)
    msg_id = f"msg_{uuid.uuid4().hex}"
    now = datetime.now(timezone.utc)
    signature = Webhook(secret or settings.CLERK_WEBHOOK_SECRET).sign(msg_id, now, body)
    headers = {
        'svix-id': msg_id,
        'svix-timestamp': str(int(now.timestamp())),
        'svix-signature': signature,
        'Content-Type': 'application/json',
    }
    return body, headers


def _user_event(event_type, clerk_id='user_wh', email='wh@example.com'):
    data = {'id': clerk_id}
    if email:
        data['email_addresses'] = [
            {'id': 'idn_first', 'email_address': email},
            {'id': 'idn_second', 'email_address': 'secondary@example.com'},
        ]
        data['primary_email_address_id'] = 'idn_second'
    return {'type': event_type, 'data': data}


def test_user_created_and_deleted(db):
    body, headers = _signed(_user_event('user.created'))
    r = client.post('/api/webhooks/clerk', content=body, headers=headers)
    assert r.status_code == 200
    assert r.json() == {'received': True}
    user = db.exec(select(models.User).where(models.User.clerk_id == 'user_wh')).first()
    assert user.email == 'wh@example.com'

    # replaying the event is harmless
    body, headers = _signed(_user_event('user.created'))
    assert client.post('/api/webhooks/clerk', content=body, headers=headers).status_code == 200

    body, headers = _signed(_user_event('user.deleted', email=None))
    assert client.post('/api/webhooks/clerk', content=body, headers=headers).status_code == 200
    db.expire_all()
    assert db.exec(select(models.User)).all() == []


def test_user_deleted_cascades_to_owned_rows(student, db, make_university):
    uid = make_university()
    client.post('/api/profile', json={'country': 'Canada', 'targetField': 'AI', 'testTaken': 'NONE'}, headers=student)
    client.post(f'/api/saved-universities/{uid}', headers=student)
    client.post('/api/applications', json={'universityId': uid}, headers=student)

    body, headers = _signed(_user_event('user.deleted', clerk_id='student_1', email=None))
    assert client.post('/api/webhooks/clerk', content=body, headers=headers).status_code == 200
    db.expire_all()
    assert db.exec(select(models.StudentProfile)).all() == []
    assert db.exec(select(models.SavedUniversity)).all() == []
    assert db.exec(select(models.Application)).all() == []
    assert db.exec(select(models.University)).first() is not None


def test_user_created_without_email_is_skipped(db):
    body, headers = _signed(_user_event('user.created', clerk_id='no_email', email=None))
    assert client.post('/api/webhooks/clerk', content=body, headers=headers).status_code == 200
    assert db.exec(select(models.User)).all() == []


def test_other_events_are_acknowledged():
    for event_type in ['user.updated', 'session.created']:
        body, headers = _signed(_user_event(event_type))
        r = client.post('/api/webhooks/clerk', content=body, headers=headers)
        assert r.json() == {'received': True}


def test_bad_signature_is_rejected():
    other_secret = 'whsec_' + 'c29tZS1vdGhlci1zZWNyZXQ='
    body, headers = _signed(_user_event('user.created'), secret=other_secret)
    r = client.post('/api/webhooks/clerk', content=body, headers=headers)
    assert r.status_code == 400
    assert r.json()['message'] == 'Invalid webhook signature'


def test_missing_signature_headers_are_rejected():
    r = client.post('/api/webhooks/clerk', content=json.dumps(_user_event('user.created')),
                    headers={'Content-Type': 'application/json'})
    assert r.status_code == 400


def test_unconfigured_secret_rejects_everything(monkeypatch):
    body, headers = _signed(_user_event('user.created'))
    monkeypatch.setattr(settings, 'CLERK_WEBHOOK_SECRET', '')
    r = client.post('/api/webhooks/clerk', content=body, headers=headers)
    assert r.status_code == 400
    assert r.json()['message'] == 'Webhook verification failed'


def test_signed_non_object_payload_is_rejected(db):
    body, headers = _signed(['user.created'])
    r = client.post('/api/webhooks/clerk', content=body, headers=headers)
    assert r.status_code == 400
    assert r.json()['message'] == 'Invalid webhook payload'
    assert db.exec(select(models.User)).all() == []
