import json


def test_get_or_set_fetches_once(cache, fake_redis):
    calls = []

    def fetch():
        calls.append(1)
        return {"exams": [1, 2]}

    assert cache.get_or_set("k", fetch, ttl=60) == {"exams": [1, 2]}
    assert cache.get_or_set("k", fetch, ttl=60) == {"exams": [1, 2]}
    assert len(calls) == 1
    assert fake_redis.ttls["k"] == 60


def test_get_or_set_falls_back_when_redis_is_down(cache, fake_redis):
    fake_redis.fail = True
    assert cache.get_or_set("k", lambda: "fresh") == "fresh"


def test_default_ttl(cache, fake_redis):
    cache.set("a", [1])
    assert fake_redis.ttls["a"] == 300
    assert cache.get("a") == [1]
    assert cache.get("missing", default="x") == "x"


def test_delete_pattern(cache):
    for key in ("exams:public:all:1:20", "exams:public:c1:1:20", "exam:1"):
        cache.set(key, {})
    assert cache.delete_pattern("exams:public:*") == 2
    assert cache.get("exam:1") == {}


def test_invalidate_swallows_redis_errors(cache, fake_redis):
    fake_redis.fail = True
    cache.invalidate("exam:1")
    assert cache.delete_pattern("exams:public:*") == 0


def test_sessions(cache, fake_redis):
    cache.set_session("tok", "u1", {"roles": ["student"]})
    assert json.loads(fake_redis.store["session:tok"]) == {"userId": "u1", "roles": ["student"]}
    assert fake_redis.ttls["session:tok"] == 7 * 24 * 3600
    assert cache.get_session("tok")["userId"] == "u1"
    cache.delete_session("tok")
    assert cache.get_session("tok") is None


def test_rate_limit(cache, fake_redis):
    assert cache.check_rate_limit("login:1.2.3.4", limit=2, window=60) == (True, 1)
    assert cache.check_rate_limit("login:1.2.3.4", limit=2, window=60) == (True, 0)
    assert cache.check_rate_limit("login:1.2.3.4", limit=2, window=60) == (False, 0)
    assert fake_redis.ttls["rate_limit:login:1.2.3.4"] == 60
