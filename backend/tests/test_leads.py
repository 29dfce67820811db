from datetime import datetime, timedelta, timezone
from urllib.parse import parse_qs, urlparse

from fastapi.testclient import TestClient
from wingsed.main import app
from wingsed import models, schemas
from wingsed.services import LeadService

client = TestClient(app)


def _message(**fields):
    return LeadService.build_message(schemas.CreateWhatsAppLeadIn(**fields))


def test_build_message_with_all_fields():
    text = _message(name='Asha', country='Canada', budget_min=1500000, budget_max=3000000,
                    target_field='Data Science')
    assert text == (
        "Hi I am Asha. I want to study in Canada. "
        "within a budget of ₹1,500,000 - ₹3,000,000. I'm interested in Data Science."
    )


def test_build_message_omits_missing_segments():
    assert _message() == "Hi."
    assert _message(budget_max=2000000) == "Hi. within a budget of up to ₹2,000,000."
    # a lower bound on its own is not mentioned
    assert _message(country='Ireland', budget_min=500000) == "Hi. I want to study in Ireland."


def test_redirect_url_encodes_message():
    url = LeadService.redirect_url("Hi I am Asha. I'm interested in AI.", number='911234567890')
    parsed = urlparse(url)
    assert parsed.netloc == 'wa.me'
    assert parsed.path == '/911234567890'
    assert parse_qs(parsed.query)['text'] == ["Hi I am Asha. I'm interested in AI."]
    assert ' ' not in url


def test_create_lead_returns_redirect_and_stamps_profile(student):
    client.post('/api/profile', json={'country': 'Canada', 'targetField': 'AI', 'testTaken': 'NONE'}, headers=student)
    r = client.post('/api/leads/whatsapp-redirect', json={'name': 'Asha', 'country': 'Canada'}, headers=student)
    assert r.status_code == 201
    body = r.json()
    assert body['leadId']
    assert body['redirectUrl'].startswith('https://wa.me/918658805653?text=')

    leads = client.get('/api/leads/my-leads', headers=student).json()['leads']
    assert len(leads) == 1
    assert leads[0]['email'] == 'student@example.com'
    assert leads[0]['messageText'] == 'Hi I am Asha. I want to study in Canada.'
    assert leads[0]['feedback'] is None

    profile = client.get('/api/profile', headers=student).json()['profile']
    assert profile['whatsappRedirectAt'] is not None


def test_create_lead_without_profile_or_local_user(login):
    headers = login('walk_in', 'walkin@example.com')
    r = client.post('/api/leads/whatsapp-redirect', json={}, headers=headers)
    assert r.status_code == 201
    assert r.json()['redirectUrl'].endswith('?text=Hi.')


def test_create_lead_rejects_bad_budget(student):
    r = client.post('/api/leads/whatsapp-redirect', json={'budgetMin': -1}, headers=student)
    assert r.status_code == 400


def test_feedback_is_scoped_to_lead_owner(student, login):
    lead_id = client.post('/api/leads/whatsapp-redirect', json={}, headers=student).json()['leadId']
    other = login('someone_else')
    assert client.patch(f'/api/leads/{lead_id}/feedback', json={'feedback': 'connected'}, headers=other).status_code == 404

    r = client.patch(f'/api/leads/{lead_id}/feedback', json={'feedback': 'connected'}, headers=student)
    assert r.status_code == 200
    lead = r.json()['lead']
    assert lead['feedback'] == 'connected'
    assert lead['feedbackAt'] is not None
    assert client.patch(f'/api/leads/{lead_id}/feedback', json={'feedback': 'ghosted'}, headers=student).status_code == 400


def test_pending_feedback_lists_old_leads_without_feedback(db):
    now = datetime.now(timezone.utc)
    db.add(models.WhatsAppLead(clerk_id='a', email='a@x.com', message_text='Hi.', redirected_at=now - timedelta(hours=30)))
    db.add(models.WhatsAppLead(clerk_id='b', email='b@x.com', message_text='Hi.', redirected_at=now - timedelta(hours=2)))
    db.add(models.WhatsAppLead(clerk_id='c', email='c@x.com', message_text='Hi.', redirected_at=now - timedelta(hours=48),
                               feedback=models.LeadFeedback.CONNECTED))
    db.commit()
    pending = LeadService(db).pending_feedback()
    assert [lead.clerk_id for lead in pending] == ['a']
