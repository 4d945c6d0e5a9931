from datetime import timedelta

import jwt

from neo_edu.core.auth import create_token
from neo_edu.jobs.expiry_job import expire_stale_attempts
from neo_edu.models.orm import ExamSubmission


def test_create_token_claims(settings):
    token = create_token("u1", ["student"], settings, ttl_minutes=5)
    payload = jwt.decode(token, "test-secret", algorithms=["HS256"])
    assert payload["sub"] == "u1"
    assert payload["roles"] == ["student"]
    assert payload["exp"] - payload["iat"] == 300


def test_expired_token(client, settings, cache, sample_exam):
    token = jwt.encode({"sub": "u1", "roles": ["student"], "exp": 1}, "test-secret", algorithm="HS256")
    cache.set_session(token, "u1")
    r = client.post(f"/api/exams/{sample_exam.id}/start", headers={"Authorization": f"Bearer {token}"})
    assert r.status_code == 401
    assert r.json()["error"]["message"] == "Token expired"


def test_dev_login_issues_usable_token(client, sample_exam):
    r = client.post("/api/auth/dev-login", json={"user_id": "stu-9", "roles": ["student"]})
    assert r.status_code == 200
    headers = {"Authorization": f"Bearer {r.json()['access_token']}"}
    assert client.post(f"/api/exams/{sample_exam.id}/start", headers=headers).status_code == 200


def test_dev_login_hidden_in_production(client, settings):
    settings.ENVIRONMENT = "production"
    assert client.post("/api/auth/dev-login", json={"user_id": "x"}).status_code == 404


def test_expiry_job_closes_abandoned_attempts(session_factory, engine, sample_exam, clock):
    h = engine.start(sample_exam.id, "u1")
    later = clock.now + timedelta(hours=1)

    assert expire_stale_attempts(now=later, session_factory=session_factory) == 1
    assert expire_stale_attempts(now=later, session_factory=session_factory) == 0

    s = session_factory()
    sub = s.get(ExamSubmission, h.submission_id)
    assert sub.auto_submitted is True
    assert sub.score == 0
    assert sub.passed is False
    s.close()


def test_dev_login_is_rate_limited(client, settings, fake_redis):
    settings.LOGIN_RATE_LIMIT = 2
    for _ in range(2):
        assert client.post("/api/auth/dev-login", json={"user_id": "stu-9"}).status_code == 200
    r = client.post("/api/auth/dev-login", json={"user_id": "stu-9"})
    assert r.status_code == 429
    assert r.json()["error"]["type"] == "rate_limited"
    assert fake_redis.ttls["rate_limit:login:testclient"] == 60


def test_metrics_endpoint(client):
    client.get("/health")
    r = client.get("/metrics")
    assert r.status_code == 200
    assert "http_request" in r.text


def test_sentry_is_initialised_when_dsn_is_set(monkeypatch):
    from neo_edu import main
    from neo_edu.core.config import Settings

    calls = []
    monkeypatch.setattr(main.sentry_sdk, "init", lambda **kwargs: calls.append(kwargs))
    main.create_app(Settings(ENVIRONMENT="testing", PROMETHEUS_ENABLED=False))
    assert calls == []

    main.create_app(Settings(ENVIRONMENT="testing", PROMETHEUS_ENABLED=False,
                             SENTRY_DSN="https://key@o0.ingest.sentry.io/1"))
    assert calls[0]["dsn"] == "https://key@o0.ingest.sentry.io/1"
    assert calls[0]["environment"] == "testing"
