import json

import pytest

from infrastructure.external.cache.redis_client import RedisClient
from infrastructure.idempotency.redis_store import RedisIdempotencyStore


class FakeRedis:
    """Records commands; Lua scripts are answered from ``eval_result``."""

    def __init__(self):
        self.data = {}
        self.commands = []
        self.eval_result = 1

    async def set(self, key, value, ex=None, nx=False, xx=False, keepttl=False):
        self.commands.append(("SET", key, ex, nx))
        if nx and key in self.data:
            return None
        self.data[key] = value
        return True

    async def get(self, key):
        self.commands.append(("GET", key))
        return self.data.get(key)

    async def delete(self, *keys):
        self.commands.append(("DEL", *keys))
        return sum(1 for k in keys if self.data.pop(k, None) is not None)

    async def eval(self, script, numkeys, *keys_and_args):
        self.commands.append(("EVAL", script, numkeys, *keys_and_args))
        return self.eval_result


@pytest.fixture
def raw():
    return FakeRedis()


@pytest.fixture
def store(raw):
    return RedisIdempotencyStore(RedisClient(raw, namespace="bs"), prefix="idem", lease_seconds=30)


@pytest.mark.asyncio
async def test_pending_claim_expires_after_the_lease(store, raw):
    claim = await store.claim("booking:cancel:u1:b1", 6 * 60 * 60)

    assert claim.claimed and claim.token
    _, key, ex, nx = raw.commands[0]
    assert key == "bs:idem:booking:cancel:u1:b1"
    assert ex == 30 and nx is True
    stored = json.loads(raw.data[key])
    assert stored == {"status": "pending", "token": claim.token, "ttl": 6 * 60 * 60}


@pytest.mark.asyncio
async def test_release_is_a_single_compare_and_delete(store, raw):
    claim = await store.claim("k1", 60)
    raw.commands.clear()

    await store.release("k1", claim.token)

    assert len(raw.commands) == 1
    op, script, numkeys, key, token = raw.commands[0]
    assert op == "EVAL" and "DEL" in script and "token" in script
    assert (numkeys, key, token) == (1, "bs:idem:k1", claim.token)


@pytest.mark.asyncio
async def test_complete_reports_a_lost_claim(store, raw):
    claim = await store.claim("k2", 60)
    raw.eval_result = 0

    assert await store.complete("k2", {"booking_id": "b1"}, claim.token) is False

    op, script, _, key, token, payload = raw.commands[-1]
    assert "EX" in script
    assert token == claim.token
    assert json.loads(payload) == {"status": "completed", "result": {"booking_id": "b1"}}


@pytest.mark.asyncio
async def test_completed_record_is_replayed(store, raw):
    raw.data["bs:idem:k3"] = json.dumps({"status": "completed", "result": {"ok": True}})

    claim = await store.claim("k3", 60)

    assert not claim.claimed and claim.completed
    assert claim.result == {"ok": True}
