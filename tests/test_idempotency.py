from datetime import timedelta

import pytest

from cardflow.core.exceptions import ConflictError
from cardflow.core.security import hash_idempotency_key
from cardflow.services.idempotency import find_cached, purge_expired, remember, run_idempotent


async def test_second_call_replays_without_executing(container):
    calls = []

    async def execute():
        calls.append(1)
        return {"value": len(calls)}

    first = await run_idempotent(container.repos, "actor-1", "key-1", "make-purchase", execute, status_code=201)
    second = await run_idempotent(container.repos, "actor-1", "key-1", "make-purchase", execute, status_code=201)

    assert len(calls) == 1
    assert not first.replayed
    assert second.replayed
    assert second.response == first.response == {"value": 1}
    assert second.status_code == 201


async def test_keys_are_scoped_per_actor(container):
    async def execute():
        return {"ok": True}

    await run_idempotent(container.repos, "actor-1", "shared", "make-purchase", execute)
    other = await run_idempotent(container.repos, "actor-2", "shared", "make-purchase", execute)
    assert not other.replayed


async def test_same_key_for_other_operation_is_rejected(container):
    async def execute():
        return {"ok": True}

    await run_idempotent(container.repos, "actor-1", "key-1", "make-purchase", execute)
    with pytest.raises(ConflictError) as exc:
        await run_idempotent(container.repos, "actor-1", "key-1", "make-payment", execute)
    assert exc.value.code == "IDEMPOTENCY_MISMATCH"


async def test_failures_are_not_cached(container):
    attempts = []

    async def execute():
        attempts.append(1)
        if len(attempts) == 1:
            raise ConflictError("boom")
        return {"ok": True}

    with pytest.raises(ConflictError):
        await run_idempotent(container.repos, "actor-1", "key-1", "make-purchase", execute)
    result = await run_idempotent(container.repos, "actor-1", "key-1", "make-purchase", execute)
    assert result.response == {"ok": True}
    assert not result.replayed


async def test_expired_record_is_deleted_and_reexecuted(container):
    await remember(container.repos, "actor-1", "key-1", "make-purchase", {"old": True}, ttl=timedelta(seconds=-1))
    assert await find_cached(container.repos, "actor-1", "key-1", "make-purchase") is None
    assert await container.repos.idempotency.get("actor-1", hash_idempotency_key("key-1")) is None


async def test_purge_expired(container):
    await remember(container.repos, "a", "old", "make-purchase", {}, ttl=timedelta(seconds=-1))
    await remember(container.repos, "a", "fresh", "make-purchase", {})
    assert await purge_expired(container.repos) == 1
    assert await find_cached(container.repos, "a", "fresh", "make-purchase") is not None


def test_key_hash_is_sha256_hex():
    digest = hash_idempotency_key("abc")
    assert len(digest) == 64
    assert digest == "ba7816bf8f01cfea414140de5dae2223b00361a396177a9cb410ff61f20015ad"
