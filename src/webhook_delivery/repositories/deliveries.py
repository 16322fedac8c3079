"""PostgreSQL delivery store (outbox table ``webhook_deliveries``)."""
from __future__ import annotations

import json
from datetime import datetime, timedelta
from typing import Any, List

from asyncpg import Pool, Record, UniqueViolationError  # type: ignore[import-untyped]

from webhook_delivery.core.exceptions import DeliveryNotFoundError, InvalidStatusTransitionError
from webhook_delivery.domain.enums import DeliveryStatus
from webhook_delivery.domain.webhooks import WebhookDelivery
from webhook_delivery.repositories.base import BaseRepository

_JSON_COLUMNS = ("headers", "payload", "retry")

_INSERT_COLUMNS = (
    "id",
    "idempotency_key",
    "webhook_id",
    "url",
    "method",
    "headers",
    "payload",
    "status",
    "attempts",
    "max_attempts",
    "retry",
    "last_attempt_at",
    "next_retry_at",
    "response_status",
    "response_body",
    "error",
    "created_at",
    "delivered_at",
)

# Mirrors the partial unique index in migrations/001_webhook_deliveries.sql
_ACTIVE_KEY_PREDICATE = "status NOT IN ('failed', 'dead_letter')"


class PostgresDeliveryRepository(BaseRepository):
    def __init__(self, pool: Pool):
        super().__init__(pool)

    @staticmethod
    def _to_model(record: Record) -> WebhookDelivery:
        return WebhookDelivery.model_validate(
            PostgresDeliveryRepository._normalize(dict(record))
        )

    @staticmethod
    def _normalize(payload: dict[str, Any]) -> dict[str, Any]:
        for column in _JSON_COLUMNS:
            value = payload.get(column)
            if isinstance(value, str):
                payload[column] = json.loads(value)
        return payload

    @staticmethod
    def _values(delivery: WebhookDelivery) -> list[Any]:
        data = delivery.model_dump(mode="python")
        values: list[Any] = []
        for column in _INSERT_COLUMNS:
            value = data[column]
            if column in _JSON_COLUMNS:
                value = json.dumps(value, default=str)
            elif column in ("status", "method"):
                value = getattr(delivery, column).value
            values.append(value)
        return values

    async def get(self, delivery_id: str) -> WebhookDelivery | None:
        record = await self._fetchrow(
            "SELECT * FROM webhook_deliveries WHERE id = $1",
            delivery_id,
        )
        return self._to_model(record) if record is not None else None

    async def get_by_idempotency_key(self, key: str) -> WebhookDelivery | None:
        record = await self._fetchrow(
            f"""
            SELECT *
            FROM webhook_deliveries
            WHERE idempotency_key = $1
            ORDER BY ({_ACTIVE_KEY_PREDICATE}) DESC, created_at DESC
            LIMIT 1
            """,
            key,
        )
        return self._to_model(record) if record is not None else None

    async def insert_if_absent(self, delivery: WebhookDelivery) -> tuple[WebhookDelivery, bool]:
        placeholders = ", ".join(
            f"${i}::jsonb" if column in _JSON_COLUMNS else f"${i}"
            for i, column in enumerate(_INSERT_COLUMNS, start=1)
        )
        insert_sql = f"""
            INSERT INTO webhook_deliveries ({", ".join(_INSERT_COLUMNS)})
            VALUES ({placeholders})
            ON CONFLICT (idempotency_key) WHERE {_ACTIVE_KEY_PREDICATE} DO NOTHING
            RETURNING *
        """
        values = self._values(delivery)
        # A conflicting row may leave the active set between the two statements.
        for _ in range(2):
            record = await self._fetchrow(insert_sql, *values)
            if record is not None:
                return self._to_model(record), True
            record = await self._fetchrow(
                f"""
                SELECT *
                FROM webhook_deliveries
                WHERE idempotency_key = $1 AND {_ACTIVE_KEY_PREDICATE}
                """,
                delivery.idempotency_key,
            )
            if record is not None:
                return self._to_model(record), False
        raise RuntimeError(f"Could not insert delivery for key {delivery.idempotency_key!r}")

    async def save(self, delivery: WebhookDelivery) -> None:
        """Persist attempt results and release the lease."""
        try:
            result = await self._save(delivery)
        except UniqueViolationError as exc:
            raise InvalidStatusTransitionError(
                f"Another active delivery holds idempotency key {delivery.idempotency_key!r}"
            ) from exc
        if int(result.split()[-1]) == 0:
            raise DeliveryNotFoundError(f"Webhook delivery not found: {delivery.id}")

    async def _save(self, delivery: WebhookDelivery) -> str:
        return await self._execute(
            """
            UPDATE webhook_deliveries
            SET status = $2,
                attempts = $3,
                last_attempt_at = $4,
                next_retry_at = $5,
                response_status = $6,
                response_body = $7,
                error = $8,
                delivered_at = $9,
                locked_until = NULL,
                updated_at = now()
            WHERE id = $1
            """,
            delivery.id,
            delivery.status.value,
            delivery.attempts,
            delivery.last_attempt_at,
            delivery.next_retry_at,
            delivery.response_status,
            delivery.response_body,
            delivery.error,
            delivery.delivered_at,
        )

    async def list(
        self,
        *,
        status: DeliveryStatus | None = None,
        webhook_id: str | None = None,
        limit: int | None = None,
    ) -> List[WebhookDelivery]:
        where: list[str] = []
        values: list[Any] = []
        if status is not None:
            values.append(status.value)
            where.append(f"status = ${len(values)}")
        if webhook_id is not None:
            values.append(webhook_id)
            where.append(f"webhook_id = ${len(values)}")
        where_sql = f"WHERE {' AND '.join(where)}" if where else ""
        limit_sql = ""
        if limit is not None:
            values.append(limit)
            limit_sql = f"LIMIT ${len(values)}"
        records = await self._fetch(
            f"""
            SELECT *
            FROM webhook_deliveries
            {where_sql}
            ORDER BY created_at DESC
            {limit_sql}
            """,
            *values,
        )
        return [self._to_model(r) for r in records]

    async def claim(
        self,
        delivery_id: str,
        now: datetime,
        *,
        lease_seconds: float,
        due_only: bool = True,
    ) -> WebhookDelivery | None:
        """Lease one pending or retrying delivery that nobody else holds.

        With ``due_only=False`` a retrying delivery is leased before its
        ``next_retry_at`` (operator actions).
        """
        due_sql = "AND (next_retry_at IS NULL OR next_retry_at <= $2)" if due_only else ""
        record = await self._fetchrow(
            f"""
            UPDATE webhook_deliveries
            SET locked_until = $3,
                updated_at = now()
            WHERE id = $1
              AND status IN ('pending', 'retrying')
              {due_sql}
              AND (locked_until IS NULL OR locked_until <= $2)
            RETURNING *
            """,
            delivery_id,
            now,
            now + timedelta(seconds=lease_seconds),
        )
        return self._to_model(record) if record is not None else None

    async def claim_due(
        self, now: datetime, *, limit: int, lease_seconds: float
    ) -> List[WebhookDelivery]:
        """
        Atomically lease due deliveries for processing.

        Uses row-level locking (FOR UPDATE SKIP LOCKED) so concurrent
        dispatchers never attempt the same delivery. A lease that is not
        released by ``save`` expires after ``lease_seconds``.
        """
        async with self._pool.acquire() as conn:
            async with conn.transaction():
                records = await conn.fetch(
                    """
                    WITH cte AS (
                        SELECT id
                        FROM webhook_deliveries
                        WHERE status IN ('pending', 'retrying')
                          AND (next_retry_at IS NULL OR next_retry_at <= $1)
                          AND (locked_until IS NULL OR locked_until <= $1)
                        ORDER BY COALESCE(next_retry_at, created_at) ASC
                        LIMIT $2
                        FOR UPDATE SKIP LOCKED
                    )
                    UPDATE webhook_deliveries d
                    SET locked_until = $3,
                        updated_at = now()
                    FROM cte
                    WHERE d.id = cte.id
                    RETURNING d.*
                    """,
                    now,
                    limit,
                    now + timedelta(seconds=lease_seconds),
                )
        return [self._to_model(r) for r in records]
