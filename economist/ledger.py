from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any, List, Mapping, Optional

import asyncpg

from .config import MARKET_TZ
from .errors import CurrencyNotFound, DuplicateCurrency

logger = logging.getLogger("economist.ledger")


# -------------------------
# Entities
# -------------------------

def compute_value(reserves: int, circulation: int) -> float:
    """Gold ingots backing one unit of currency; 0 when either side is not positive."""
    if reserves <= 0 or circulation <= 0:
        return 0.0
    return float(reserves) / float(circulation)


def compute_growth(delta_value: float) -> int:
    if delta_value > 0:
        return 1
    if delta_value < 0:
        return -1
    return 0


@dataclass(frozen=True)
class CurrencyData:
    currency_id: int
    currency_code: str
    currency_name: str
    state: str
    circulation: int
    reserves: int
    owner: str
    value: float

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "CurrencyData":
        return cls(
            currency_id=int(row["currency_id"]),
            currency_code=str(row["currency_code"]),
            currency_name=str(row["currency_name"]),
            state=str(row["state"]),
            circulation=int(row["circulation"]),
            reserves=int(row["reserves"]),
            owner=str(row["owner"]),
            value=float(row["value"] or 0.0),
        )


@dataclass(frozen=True)
class TransactionData:
    transaction_id: int
    transaction_date: datetime
    currency_id: int
    currency_code: str
    delta_reserves: Optional[int]
    delta_circulation: Optional[int]
    initiator: str


@dataclass(frozen=True)
class RecordData:
    record_id: int
    record_date: date
    currency_id: int
    opening_value: float
    closing_value: float
    delta_value: float
    growth: int  # -1 decline, 0 steady, 1 growth

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "RecordData":
        return cls(
            record_id=int(row["record_id"]),
            record_date=row["record_date"],
            currency_id=int(row["currency_id"]),
            opening_value=float(row["opening_value"]),
            closing_value=float(row["closing_value"]),
            delta_value=float(row["delta_value"]),
            growth=int(row["growth"]),
        )


class CurrencySort(enum.Enum):
    NAME = "name"
    CURRENCY_CODE = "code"
    STATE = "state"
    RESERVES = "reserves"
    CIRCULATION = "circulation"
    VALUE = "value"

    @property
    def order_by(self) -> str:
        return _ORDER_BY[self]


_ORDER_BY = {
    CurrencySort.NAME: "currency_name ASC",
    CurrencySort.CURRENCY_CODE: "currency_code ASC",
    CurrencySort.STATE: "state ASC",
    CurrencySort.RESERVES: "reserves DESC",
    CurrencySort.CIRCULATION: "circulation DESC",
    CurrencySort.VALUE: "value DESC",
}


class MetaField(enum.Enum):
    NAME = "currency_name"
    STATE = "state"
    CODE = "currency_code"


# -------------------------
# Schema
# -------------------------

SCHEMA_STATEMENTS = (
    """
    CREATE TABLE IF NOT EXISTS currencies (
        currency_id BIGSERIAL PRIMARY KEY,
        currency_code TEXT NOT NULL UNIQUE,
        currency_name TEXT NOT NULL,
        state TEXT NOT NULL,
        circulation BIGINT NOT NULL,
        reserves BIGINT NOT NULL,
        owner TEXT NOT NULL,
        value DOUBLE PRECISION GENERATED ALWAYS AS (
            CASE WHEN reserves <= 0 THEN 0
                 WHEN circulation <= 0 THEN 0
                 ELSE CAST(reserves AS DOUBLE PRECISION) / CAST(circulation AS DOUBLE PRECISION)
            END
        ) STORED
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS transactions (
        transaction_id BIGSERIAL PRIMARY KEY,
        transaction_date TIMESTAMP WITHOUT TIME ZONE NOT NULL,
        currency_id BIGINT NOT NULL REFERENCES currencies(currency_id) ON DELETE CASCADE,
        delta_circulation BIGINT,
        delta_reserves BIGINT,
        initiator TEXT NOT NULL
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS records (
        record_id BIGSERIAL PRIMARY KEY,
        record_date DATE NOT NULL,
        currency_id BIGINT NOT NULL REFERENCES currencies(currency_id) ON DELETE CASCADE,
        opening_value DOUBLE PRECISION NOT NULL,
        closing_value DOUBLE PRECISION NOT NULL,
        delta_value DOUBLE PRECISION NOT NULL,
        growth SMALLINT NOT NULL,
        CONSTRAINT records_one_per_day UNIQUE (currency_id, record_date)
    );
    """,
)


async def create_pool(database_url: str) -> "asyncpg.Pool":
    return await asyncpg.create_pool(database_url, min_size=1, max_size=5, command_timeout=30)


class LedgerRepository:
    """Currency, transaction and record storage on a shared asyncpg pool."""

    def __init__(self, pool: "asyncpg.Pool"):
        self.pool = pool

    async def _exec(self, sql: str, *args) -> str:
        async with self.pool.acquire() as conn:
            return await conn.execute(sql, *args)

    async def _fetch(self, sql: str, *args) -> List[asyncpg.Record]:
        async with self.pool.acquire() as conn:
            return await conn.fetch(sql, *args)

    async def _fetchrow(self, sql: str, *args) -> Optional[asyncpg.Record]:
        async with self.pool.acquire() as conn:
            return await conn.fetchrow(sql, *args)

    # -------------------------
    # Migrations
    # -------------------------

    async def ensure_schema(self) -> None:
        version = await self._fetchrow("SELECT version() AS version;")
        if version:
            logger.info("postgres_version version=%s", version["version"])
        for statement in SCHEMA_STATEMENTS:
            await self._exec(statement)

        # Databases created before records were limited to one per day lack the constraint.
        exists = await self._fetchrow(
            """
            SELECT 1
            FROM pg_constraint c
            JOIN pg_class t ON t.oid = c.conrelid
            WHERE t.relname = 'records' AND c.contype = 'u' AND c.conname = 'records_one_per_day'
            LIMIT 1;
            """
        )
        if not exists:
            try:
                await self._exec(
                    "ALTER TABLE records ADD CONSTRAINT records_one_per_day UNIQUE (currency_id, record_date);"
                )
                logger.info("schema_constraint_added name=records_one_per_day")
            except asyncpg.PostgresError as e:
                logger.warning("schema_constraint_skipped name=records_one_per_day error=%s", e)

    async def recreate_database(self) -> None:
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                await conn.execute("DROP TABLE IF EXISTS records, transactions, currencies CASCADE;")
                for statement in SCHEMA_STATEMENTS:
                    await conn.execute(statement)
        logger.warning("database_recreated")

    # -------------------------
    # Currencies
    # -------------------------

    async def get_currency(self, currency_code: str) -> CurrencyData:
        row = await self._fetchrow("SELECT * FROM currencies WHERE currency_code = $1;", currency_code)
        if row is None:
            raise CurrencyNotFound(currency_code)
        return CurrencyData.from_row(row)

    async def list_currencies(self, limit: int, sort: CurrencySort = CurrencySort.NAME) -> List[CurrencyData]:
        rows = await self._fetch(
            f"SELECT * FROM currencies ORDER BY {sort.order_by}, currency_id ASC LIMIT $1;",
            int(limit),
        )
        return [CurrencyData.from_row(r) for r in rows]

    async def add_currency(
        self,
        currency_code: str,
        currency_name: str,
        state: str,
        circulation: int,
        reserves: int,
        owner: str,
    ) -> CurrencyData:
        try:
            row = await self._fetchrow(
                """
                INSERT INTO currencies (currency_code, currency_name, state, circulation, reserves, owner)
                VALUES ($1, $2, $3, $4, $5, $6)
                RETURNING *;
                """,
                currency_code,
                currency_name,
                state,
                int(circulation),
                int(reserves),
                owner,
            )
        except asyncpg.UniqueViolationError as e:
            raise DuplicateCurrency(currency_code) from e
        logger.info("currency_created code=%s owner=%s", currency_code, owner)
        return CurrencyData.from_row(row)

    async def remove_currency(self, currency_code: str) -> None:
        status = await self._exec("DELETE FROM currencies WHERE currency_code = $1;", currency_code)
        if status.endswith(" 0"):
            raise CurrencyNotFound(currency_code)
        logger.info("currency_deleted code=%s", currency_code)

    async def modify_currency_meta(self, currency_code: str, meta: MetaField, value: str) -> CurrencyData:
        try:
            row = await self._fetchrow(
                f"UPDATE currencies SET {meta.value} = $2 WHERE currency_code = $1 RETURNING *;",
                currency_code,
                value,
            )
        except asyncpg.UniqueViolationError as e:
            raise DuplicateCurrency(value) from e
        if row is None:
            raise CurrencyNotFound(currency_code)
        logger.info("currency_modified code=%s field=%s", currency_code, meta.name.lower())
        return CurrencyData.from_row(row)

    async def reserve_modify(self, currency_code: str, amount: int, initiator: str) -> TransactionData:
        return await self._apply_delta(currency_code, "reserves", int(amount), initiator)

    async def circulation_modify(self, currency_code: str, amount: int, initiator: str) -> TransactionData:
        return await self._apply_delta(currency_code, "circulation", int(amount), initiator)

    async def _apply_delta(self, currency_code: str, column: str, amount: int, initiator: str) -> TransactionData:
        transaction_date = datetime.now(timezone.utc).replace(tzinfo=None)
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                currency_id = await conn.fetchval(
                    f"UPDATE currencies SET {column} = {column} + $2 WHERE currency_code = $1 RETURNING currency_id;",
                    currency_code,
                    amount,
                )
                if currency_id is None:
                    raise CurrencyNotFound(currency_code)
                transaction_id = await conn.fetchval(
                    f"""
                    INSERT INTO transactions (transaction_date, currency_id, delta_{column}, initiator)
                    VALUES ($1, $2, $3, $4)
                    RETURNING transaction_id;
                    """,
                    transaction_date,
                    currency_id,
                    amount,
                    initiator,
                )
        logger.info(
            "transaction_applied id=%s code=%s %s=%+d initiator=%s",
            transaction_id, currency_code, column, amount, initiator,
        )
        return TransactionData(
            transaction_id=int(transaction_id),
            transaction_date=transaction_date,
            currency_id=int(currency_id),
            currency_code=currency_code,
            delta_reserves=amount if column == "reserves" else None,
            delta_circulation=amount if column == "circulation" else None,
            initiator=initiator,
        )

    # -------------------------
    # Records
    # -------------------------

    async def insert_record(
        self,
        currency_id: int,
        opening_value: float,
        closing_value: float,
        record_date: Optional[date] = None,
    ) -> Optional[RecordData]:
        """Store one day's valuation for a currency.

        Returns None when that currency already has a record for the date.
        """
        if record_date is None:
            record_date = datetime.now(MARKET_TZ).date()
        delta_value = closing_value - opening_value
        row = await self._fetchrow(
            """
            INSERT INTO records (record_date, currency_id, opening_value, closing_value, delta_value, growth)
            SELECT $1, $2, $3, $4, $5, $6
            WHERE NOT EXISTS (
                SELECT 1 FROM records WHERE currency_id = $2 AND record_date = $1
            )
            RETURNING *;
            """,
            record_date,
            int(currency_id),
            float(opening_value),
            float(closing_value),
            delta_value,
            compute_growth(delta_value),
        )
        return RecordData.from_row(row) if row else None

    async def get_recent_records(self, currency_id: int, limit: int) -> List[RecordData]:
        rows = await self._fetch(
            """
            SELECT * FROM records
            WHERE currency_id = $1
            ORDER BY record_date DESC, record_id DESC
            LIMIT $2;
            """,
            int(currency_id),
            int(limit),
        )
        return [RecordData.from_row(r) for r in rows]

    async def get_records_by_code(self, currency_code: str, limit: int) -> List[RecordData]:
        currency = await self.get_currency(currency_code)
        return await self.get_recent_records(currency.currency_id, limit)
