from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from types import SimpleNamespace
from typing import Any

import pytest
from pymongo.errors import AutoReconnect, DuplicateKeyError

from fencewatch.exceptions import StoreError
from fencewatch.models import GpsFix, VehicleOwnership, Violation
from fencewatch.store.mongo import MongoViolationStore

_T0 = datetime(2025, 3, 1, tzinfo=UTC)


@dataclass
class FakeCollection:
    """Records calls; returns canned results or raises ``error``."""

    calls: list[tuple[str, tuple[Any, ...], dict[str, Any]]] = field(default_factory=list)
    result: Any = None
    error: Exception | None = None

    async def _call(self, name: str, /, *args: Any, **kwargs: Any) -> Any:
        self.calls.append((name, args, kwargs))
        if self.error is not None:
            raise self.error
        return self.result

    async def find_one(self, *args: Any, **kwargs: Any) -> Any:
        return await self._call("find_one", *args, **kwargs)

    async def insert_one(self, *args: Any, **kwargs: Any) -> Any:
        return await self._call("insert_one", *args, **kwargs)

    async def update_one(self, *args: Any, **kwargs: Any) -> Any:
        return await self._call("update_one", *args, **kwargs)

    async def delete_many(self, *args: Any, **kwargs: Any) -> Any:
        return await self._call("delete_many", *args, **kwargs)

    async def count_documents(self, *args: Any, **kwargs: Any) -> Any:
        return await self._call("count_documents", *args, **kwargs)

    async def create_index(self, *args: Any, **kwargs: Any) -> Any:
        return await self._call("create_index", *args, **kwargs)


@dataclass
class FakeClient:
    closed: bool = False

    async def close(self) -> None:
        self.closed = True


def _store() -> tuple[MongoViolationStore, FakeCollection, FakeCollection, FakeClient]:
    violations, owners, client = FakeCollection(), FakeCollection(), FakeClient()
    database = {"violations": violations, "userVehicles": owners}
    return MongoViolationStore(client, database), violations, owners, client  # type: ignore[arg-type]


def _violation() -> Violation:
    fix = GpsFix(vehicle_id="V1", latitude=50.0, longitude=50.0, event_timestamp=_T0)
    return Violation.from_fix(fix, VehicleOwnership(vid="V1", email="a@x.com"), recorded_at=_T0)


@pytest.mark.asyncio
async def test_find_owner_queries_vid() -> None:
    store, _, owners, _ = _store()
    owners.result = {"_id": "x", "vid": "V1", "email": "a@x.com"}

    owner = await store.find_owner("V1")

    assert owner == VehicleOwnership(vid="V1", email="a@x.com")
    assert owners.calls[0][1] == ({"vid": "V1"},)


@pytest.mark.asyncio
async def test_mark_sent_filters_on_unsent_state() -> None:
    store, violations, _, _ = _store()
    violations.result = SimpleNamespace(matched_count=0, modified_count=0)

    result = await store.mark_sent("vid-1", _T0)

    assert not result.transitioned
    name, args, _ = violations.calls[0]
    assert name == "update_one"
    assert args[0] == {"violationId": "vid-1", "warningSent": False}
    assert args[1] == {"$set": {"warningSent": True, "warningSentAt": _T0}, "$unset": {"claimedUntil": ""}}


@pytest.mark.asyncio
async def test_delete_sent_filters_on_sent_state_and_cutoff() -> None:
    store, violations, _, _ = _store()
    violations.result = SimpleNamespace(deleted_count=4)

    assert await store.delete_sent(_T0) == 4
    assert violations.calls[0][1] == ({"warningSent": True, "warningSentAt": {"$lte": _T0}},)


@pytest.mark.asyncio
async def test_create_if_none_open_upserts_on_open_filter() -> None:
    store, violations, _, _ = _store()
    violations.result = SimpleNamespace(upserted_id="oid")
    violation = _violation()

    assert await store.create_if_none_open(violation)
    _, args, kwargs = violations.calls[0]
    assert args[0] == {"vehicleId": "V1", "warningSent": False}
    assert args[1]["$setOnInsert"]["violationId"] == violation.violation_id
    assert kwargs == {"upsert": True}


@pytest.mark.asyncio
async def test_create_if_none_open_treats_duplicate_key_as_suppressed() -> None:
    store, violations, _, _ = _store()
    violations.error = DuplicateKeyError("E11000 duplicate key", code=11000)

    assert not await store.create_if_none_open(_violation())


@pytest.mark.asyncio
async def test_driver_errors_become_store_errors() -> None:
    store, violations, _, _ = _store()
    violations.error = AutoReconnect("primary stepped down")

    with pytest.raises(StoreError) as excinfo:
        await store.create(_violation())
    assert excinfo.value.operation == "create"


@pytest.mark.asyncio
async def test_close_closes_client() -> None:
    store, _, _, client = _store()
    await store.close()
    assert client.closed


@pytest.mark.asyncio
async def test_find_owner_ignores_ownership_without_email() -> None:
    store, _, owners, _ = _store()
    owners.result = {"_id": "x", "vid": "V1", "email": None}

    assert await store.find_owner("V1") is None


@pytest.mark.asyncio
async def test_claim_only_takes_unsent_records_without_a_live_claim() -> None:
    store, violations, _, _ = _store()
    violations.result = SimpleNamespace(matched_count=1, modified_count=1)

    assert await store.claim("vid-1", _T0, timedelta(minutes=5))
    _, args, _ = violations.calls[0]
    assert args[0] == {"violationId": "vid-1", "warningSent": False, "claimedUntil": {"$not": {"$gt": _T0}}}
    assert args[1] == {"$set": {"claimedUntil": _T0 + timedelta(minutes=5)}}


@pytest.mark.asyncio
async def test_claim_held_elsewhere_is_refused() -> None:
    store, violations, _, _ = _store()
    violations.result = SimpleNamespace(matched_count=0, modified_count=0)

    assert not await store.claim("vid-1", _T0, timedelta(minutes=5))


@pytest.mark.asyncio
async def test_release_unsets_the_claim_on_unsent_records() -> None:
    store, violations, _, _ = _store()

    await store.release("vid-1")

    _, args, _ = violations.calls[0]
    assert args == ({"violationId": "vid-1", "warningSent": False}, {"$unset": {"claimedUntil": ""}})


@pytest.mark.asyncio
async def test_ensure_indexes_leaves_ownership_collection_alone() -> None:
    store, violations, owners, _ = _store()

    await store.ensure_indexes(dedupe_open_violations=True)

    assert owners.calls == []
    assert [name for name, _, _ in violations.calls] == ["create_index"] * 3
