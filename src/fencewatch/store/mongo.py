"""MongoDB-backed violation store (pymongo async API)."""

from __future__ import annotations

import logging
from collections.abc import Awaitable
from datetime import UTC, datetime, timedelta
from typing import Any, TypeVar

from pymongo import ASCENDING, AsyncMongoClient
from pymongo.asynchronous.database import AsyncDatabase
from pydantic import ValidationError
from pymongo.errors import DuplicateKeyError, PyMongoError

from fencewatch._redact import redact_connection_string
from fencewatch.exceptions import StoreError
from fencewatch.models.violation import UnreadableViolation, VehicleOwnership, Violation, read_violation
from fencewatch.store.base import OWNERS_COLLECTION, VIOLATIONS_COLLECTION, MarkSentResult

_logger = logging.getLogger(__name__)

T = TypeVar("T")

_OPEN_VIOLATION_INDEX = "one_open_violation_per_vehicle"


def _sent_filter(older_than: datetime | None) -> dict[str, Any]:
    query: dict[str, Any] = {"warningSent": True}
    if older_than is not None:
        query["warningSentAt"] = {"$lte": older_than}
    return query


async def _guard(operation: str, awaitable: Awaitable[T]) -> T:
    try:
        return await awaitable
    except PyMongoError as exc:
        raise StoreError(f"{operation} failed: {exc}", operation=operation) from exc


class MongoViolationStore:
    """Implementation of :class:`ViolationStore` over two MongoDB collections."""

    def __init__(self, client: AsyncMongoClient, database: AsyncDatabase) -> None:
        self._client = client
        self._db = database
        self._violations = database[VIOLATIONS_COLLECTION]
        self._owners = database[OWNERS_COLLECTION]

    @classmethod
    async def connect(
        cls,
        url: str,
        database: str,
        *,
        timeout: float = 30.0,
        dedupe_open_violations: bool = False,
    ) -> MongoViolationStore:
        """Open a pooled client, verify it with a ping and prepare indexes."""
        _logger.debug("Connecting to MongoDB %s", redact_connection_string(url))
        client: AsyncMongoClient = AsyncMongoClient(
            url,
            tz_aware=True,
            tzinfo=UTC,
            socketTimeoutMS=int(timeout * 1000),
            serverSelectionTimeoutMS=10_000,
            maxPoolSize=50,
            minPoolSize=5,
            retryWrites=True,
            retryReads=True,
        )
        try:
            await client.admin.command("ping")
            store = cls(client, client[database])
            await store.ensure_indexes(dedupe_open_violations=dedupe_open_violations)
        except PyMongoError as exc:
            await client.close()
            raise StoreError(f"MongoDB connection failed: {exc}", operation="connect") from exc
        _logger.info("Connected to MongoDB database=%s", database)
        return store

    async def ensure_indexes(self, *, dedupe_open_violations: bool = False) -> None:
        # userVehicles belongs to the registration process; its indexes are left to it.
        await self._violations.create_index([("violationId", ASCENDING)], unique=True)
        await self._violations.create_index([("warningSent", ASCENDING), ("created", ASCENDING)])
        if dedupe_open_violations:
            await self._violations.create_index(
                [("vehicleId", ASCENDING)],
                name=_OPEN_VIOLATION_INDEX,
                unique=True,
                partialFilterExpression={"warningSent": False},
            )

    async def find_owner(self, vehicle_id: str) -> VehicleOwnership | None:
        doc = await _guard("find_owner", self._owners.find_one({"vid": vehicle_id}))
        if doc is None:
            return None
        try:
            return VehicleOwnership.model_validate(doc)
        except ValidationError as exc:
            _logger.warning("Ignoring unusable ownership record for vehicle %s: %s", vehicle_id, exc)
            return None

    async def create(self, violation: Violation) -> Violation:
        await _guard("create", self._violations.insert_one(violation.to_document()))
        return violation

    async def create_if_none_open(self, violation: Violation) -> bool:
        doc = violation.to_document()
        on_insert = {key: value for key, value in doc.items() if key not in ("vehicleId", "warningSent")}
        try:
            result = await self._violations.update_one(
                {"vehicleId": violation.vehicle_id, "warningSent": False},
                {"$setOnInsert": on_insert},
                upsert=True,
            )
        except DuplicateKeyError:
            # Lost an upsert race against another consumer; its row is the open one.
            return False
        except PyMongoError as exc:
            raise StoreError(f"create_if_none_open failed: {exc}", operation="create_if_none_open") from exc
        return result.upserted_id is not None

    async def find_unsent(self, limit: int | None = None) -> list[Violation | UnreadableViolation]:
        cursor = self._violations.find({"warningSent": False}).sort("created", ASCENDING)
        if limit is not None and limit > 0:
            cursor = cursor.limit(limit)
        docs = await _guard("find_unsent", cursor.to_list())
        return [read_violation(doc) for doc in docs]

    async def claim(self, violation_id: str, now: datetime, lease: timedelta) -> bool:
        result = await _guard(
            "claim",
            self._violations.update_one(
                {"violationId": violation_id, "warningSent": False, "claimedUntil": {"$not": {"$gt": now}}},
                {"$set": {"claimedUntil": now + lease}},
            ),
        )
        return result.modified_count > 0

    async def release(self, violation_id: str) -> None:
        await _guard(
            "release",
            self._violations.update_one(
                {"violationId": violation_id, "warningSent": False},
                {"$unset": {"claimedUntil": ""}},
            ),
        )

    async def mark_sent(self, violation_id: str, notified_at: datetime) -> MarkSentResult:
        result = await _guard(
            "mark_sent",
            self._violations.update_one(
                {"violationId": violation_id, "warningSent": False},
                {"$set": {"warningSent": True, "warningSentAt": notified_at}, "$unset": {"claimedUntil": ""}},
            ),
        )
        return MarkSentResult(matched=result.matched_count, modified=result.modified_count)

    async def delete_sent(self, older_than: datetime | None = None) -> int:
        result = await _guard("delete_sent", self._violations.delete_many(_sent_filter(older_than)))
        return result.deleted_count

    async def count_sent(self, older_than: datetime | None = None) -> int:
        return await _guard("count_sent", self._violations.count_documents(_sent_filter(older_than)))

    async def count_all(self) -> int:
        return await _guard("count_all", self._violations.count_documents({}))

    async def close(self) -> None:
        await self._client.close()
        _logger.debug("MongoDB client closed")
