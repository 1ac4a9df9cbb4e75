import asyncio

import fakeredis
import pytest

from tutormarket.database.redis import invalidate_for_change, keep_cache_fresh, redis_client
from tutormarket.realtime import ChangeEvent


@pytest.fixture
def fake_redis(monkeypatch, redis_server):
    fake = fakeredis.FakeRedis(server=redis_server, decode_responses=True)
    monkeypatch.setattr(redis_client, "client", fake)
    return fake


def test_json_round_trip(fake_redis):
    redis_client.set_json("subjects_all", ["Mathematics", "Physics"])
    assert redis_client.get_json("subjects_all") == ["Mathematics", "Physics"]
    assert redis_client.get_json("missing") is None
    assert 0 < fake_redis.ttl("subjects_all") <= 600


def test_changes_drop_stale_entries(fake_redis):
    for key in ("tutor_t1", "tutor_t2", "profile_u1", "subjects_all", "admin_dashboard_data"):
        redis_client.set_json(key, {"cached": True})

    invalidate_for_change(ChangeEvent("reviews", "INSERT", "r1"))
    assert sorted(fake_redis.keys()) == ["profile_u1", "subjects_all"]

    invalidate_for_change(ChangeEvent("learning_goals", "UPDATE", "g1"))
    assert sorted(fake_redis.keys()) == ["profile_u1", "subjects_all"]


def test_unavailable_cache_is_a_miss(monkeypatch):
    server = fakeredis.FakeServer()
    server.connected = False
    monkeypatch.setattr(redis_client, "client", fakeredis.FakeRedis(server=server, decode_responses=True))
    redis_client.set_json("subjects_all", ["Mathematics"])
    assert redis_client.get_json("subjects_all") is None
    invalidate_for_change(ChangeEvent("subjects", "INSERT", "s1"))


def test_cache_follows_the_change_feed(feed, fake_redis):
    redis_client.set_json("subjects_all", ["Mathematics"])
    redis_client.set_json("profile_u1", {"cached": True})

    async def scenario():
        task = asyncio.create_task(keep_cache_fresh())
        # Publish until the listener is subscribed, then wait for the entry to go
        for _ in range(100):
            if feed.publish(ChangeEvent("subjects", "INSERT", "s1")):
                break
            await asyncio.sleep(0.01)
        for _ in range(100):
            if not fake_redis.exists("subjects_all"):
                break
            await asyncio.sleep(0.01)
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)

    asyncio.run(scenario())
    assert not fake_redis.exists("subjects_all")
    assert fake_redis.exists("profile_u1")


def test_cache_listener_stops_quietly_without_a_feed():
    # Nothing is configured, so the listener logs and returns instead of raising
    asyncio.run(keep_cache_fresh())


def test_health(client):
    assert client.get("/health").json()["status"] == "ok"
