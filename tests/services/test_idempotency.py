import pytest

from application.services.idempotency import IdempotencyGuard, hash_payload, make_idempotency_key
from domain.common.exceptions import IdempotencyInProgressException
from infrastructure.idempotency.sql_store import SQLAlchemyIdempotencyStore


def test_payload_hash_is_order_independent():
    assert hash_payload({"a": 1, "b": 2}) == hash_payload({"b": 2, "a": 1})
    assert hash_payload({"a": 1}) != hash_payload({"a": 2})


def test_key_layout():
    assert make_idempotency_key("booking:cancel", "u1", "bkg_1") == "booking:cancel:u1:bkg_1"
    key = make_idempotency_key("booking:create", "u1", "svc_1", {"x": 1})
    assert key.startswith("booking:create:u1:svc_1:") and len(key.rsplit(":", 1)[1]) == 64


@pytest.mark.asyncio
async def test_run_replays_stored_result(guard):
    calls = []

    async def op():
        calls.append(1)
        return {"booking_id": "bkg_1"}

    first = await guard.run("k1", 60, op)
    second = await guard.run("k1", 60, op)
    assert first == second == {"booking_id": "bkg_1"}
    assert len(calls) == 1


@pytest.mark.asyncio
async def test_failed_operation_releases_key(guard):
    async def boom():
        raise RuntimeError("processor down")

    with pytest.raises(RuntimeError):
        await guard.run("k2", 60, boom)

    async def ok():
        return {"ok": True}

    assert await guard.run("k2", 60, ok) == {"ok": True}


@pytest.mark.asyncio
async def test_pending_claim_reports_in_progress(guard, idempotency_store):
    claim = await idempotency_store.claim("k3", 60)
    assert claim.claimed

    async def op():
        return {}

    with pytest.raises(IdempotencyInProgressException):
        await guard.run("k3", 60, op)


@pytest.mark.asyncio
async def test_expired_key_is_taken_over(idempotency_store):
    assert (await idempotency_store.claim("k4", -1)).claimed
    await idempotency_store.complete("k4", {"v": 1})
    # ttl already elapsed, so the next claim owns the key again
    assert (await idempotency_store.claim("k4", 60)).claimed


@pytest.mark.asyncio
async def test_run_once_ignores_duplicates(guard):
    seen = []

    async def op():
        seen.append(1)

    assert await guard.run_once("webhook:payments:evt_1", 60, op) is True
    assert await guard.run_once("webhook:payments:evt_1", 60, op) is False
    assert seen == [1]


@pytest.mark.asyncio
async def test_store_reports_completed_result_for_existing_key(idempotency_store):
    first = await idempotency_store.claim("k5", 60)
    assert await idempotency_store.complete("k5", {"booking_id": "bkg_5"}, first.token)

    again = await idempotency_store.claim("k5", 60)

    assert not again.claimed
    assert again.completed
    assert again.result == {"booking_id": "bkg_5"}


@pytest.mark.asyncio
async def test_stale_pending_claim_is_taken_over(session_factory):
    store = SQLAlchemyIdempotencyStore(session_factory, lease_seconds=0)
    first = await store.claim("k6", 3600)

    second = await store.claim("k6", 3600)

    assert second.claimed
    assert second.token != first.token


@pytest.mark.asyncio
async def test_owner_that_lost_its_claim_cannot_finish(session_factory):
    leased = SQLAlchemyIdempotencyStore(session_factory, lease_seconds=0)
    stale = await leased.claim("k7", 3600)
    current = await leased.claim("k7", 3600)

    assert await leased.complete("k7", {"v": "stale"}, stale.token) is False
    await leased.release("k7", stale.token)

    # the new owner's pending claim survives the stale release
    store = SQLAlchemyIdempotencyStore(session_factory)
    pending = await store.claim("k7", 3600)
    assert not pending.claimed and not pending.completed

    assert await store.complete("k7", {"v": "current"}, current.token) is True
    assert (await store.claim("k7", 3600)).result == {"v": "current"}


@pytest.mark.asyncio
async def test_run_once_in_progress_is_not_treated_as_duplicate(guard, idempotency_store):
    await idempotency_store.claim("webhook:payments:evt_2", 60)
    seen = []

    async def op():
        seen.append(1)

    with pytest.raises(IdempotencyInProgressException):
        await guard.run_once("webhook:payments:evt_2", 60, op)
    assert seen == []


@pytest.mark.asyncio
async def test_run_once_recovers_after_crashed_owner(session_factory):
    store = SQLAlchemyIdempotencyStore(session_factory, lease_seconds=0)
    await store.claim("webhook:payments:evt_3", 3600)
    seen = []

    async def op():
        seen.append(1)

    assert await IdempotencyGuard(store).run_once("webhook:payments:evt_3", 3600, op) is True
    assert seen == [1]
