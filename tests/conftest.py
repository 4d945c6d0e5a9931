import fnmatch
import os
import random
from datetime import datetime, timedelta, timezone

os.environ.setdefault("ENVIRONMENT", "testing")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from neo_edu.core.auth import create_token
from neo_edu.core.cache import RedisCache, get_cache
from neo_edu.core.config import Settings, get_settings
from neo_edu.core.database import get_db
from neo_edu.jobs.queue import get_queue
from neo_edu.main import app
from neo_edu.models.orm import Base, Exam, ExamQuestion
from neo_edu.services.exam_engine import EngineConfig, ExamEngine


class FakeRedis:
    """In-memory stand-in for the handful of Redis commands the service uses."""

    def __init__(self):
        self.store = {}
        self.ttls = {}
        self.fail = False

    def _check(self):
        if self.fail:
            import redis
            raise redis.ConnectionError("redis down")

    def get(self, key):
        self._check()
        return self.store.get(key)

    def set(self, key, value, ex=None):
        self._check()
        self.store[key] = value
        self.ttls[key] = ex
        return True

    def delete(self, *keys):
        self._check()
        return sum(1 for k in keys if self.store.pop(k, None) is not None)

    def scan_iter(self, match="*", count=None):
        self._check()
        return [k for k in list(self.store) if fnmatch.fnmatch(k, match)]

    def incr(self, key):
        self._check()
        self.store[key] = int(self.store.get(key, 0)) + 1
        return self.store[key]

    def expire(self, key, seconds):
        self.ttls[key] = seconds
        return True


class FakeJob:
    def __init__(self, job_id):
        self._id = job_id

    def get_id(self):
        return self._id


class FakeQueue:
    def __init__(self):
        self.enqueued = []

    def enqueue(self, func, *args, **kwargs):
        self.enqueued.append((func, args, kwargs))
        return FakeJob(f"job-{len(self.enqueued)}")


class Clock:
    def __init__(self, start=None):
        self.now = start or datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


@pytest.fixture
def settings():
    return Settings(
        ENVIRONMENT="testing",
        SECRET_KEY="test-secret",
        DATABASE_URL="sqlite://",
        EXAM_GRACE_SECONDS=30,
    )


@pytest.fixture
def session_factory():
    engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool, future=True)
    Base.metadata.create_all(engine)
    yield sessionmaker(bind=engine, autocommit=False, autoflush=False, future=True)
    engine.dispose()


@pytest.fixture
def db(session_factory):
    s = session_factory()
    yield s
    s.close()


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def cache(fake_redis):
    return RedisCache(fake_redis)


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def engine(db, clock):
    return ExamEngine(db, EngineConfig(grace_seconds=30), clock=clock, rng=random.Random(7))


@pytest.fixture
def queue():
    return FakeQueue()


@pytest.fixture
def client(session_factory, cache, settings, queue):
    def override_db():
        s = session_factory()
        try:
            yield s
        finally:
            s.close()

    app.dependency_overrides[get_db] = override_db
    app.dependency_overrides[get_cache] = lambda: cache
    app.dependency_overrides[get_settings] = lambda: settings
    app.dependency_overrides[get_queue] = lambda: queue
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def login(cache, settings):
    def _login(user_id="student-1", roles=("student",)):
        token = create_token(user_id, list(roles), settings)
        cache.set_session(token, user_id)
        return {"Authorization": f"Bearer {token}"}
    return _login


@pytest.fixture
def make_exam(db):
    def _make(questions=None, **fields):
        defaults = dict(
            title="Algebra midterm", duration_minutes=30, passing_score=50,
            max_attempts=1, shuffle_questions=False, is_published=True,
        )
        defaults.update(fields)
        exam = Exam(**defaults)
        for i, q in enumerate(questions or []):
            exam.questions.append(ExamQuestion(order=i, **q))
        db.add(exam)
        db.commit()
        db.refresh(exam)
        return exam
    return _make


@pytest.fixture
def sample_exam(make_exam):
    """One multiple-choice (1 point, key B) and one true-false (2 points, key ĐSĐĐ)."""
    return make_exam([
        dict(question_text="2 + 2 = ?", question_type="multiple-choice",
             options=["3", "4", "5", "22"], correct_answer="B", points=1),
        dict(question_text="Which statements hold?", question_type="true-false",
             correct_answer="ĐSĐĐ", points=2),
    ])
