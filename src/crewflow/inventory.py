"""
Inventory ledger.

Stock quantities are the one value several flows mutate concurrently, so
every change is a single atomic adjustment that floors at zero. Each
deduction is recorded under a reservation key together with the amount
actually removed; releasing the reservation restores exactly that amount.
Deducting or releasing the same key twice changes nothing.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable
from uuid import UUID

import aiosqlite

from crewflow.observability import ATTR_ORDER_ID, Tracer, create_tracer

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StockAdjustment:
    """Result of an adjustment: the delta actually applied and the new quantity."""

    product_id: UUID
    applied: int
    quantity: int


@runtime_checkable
class StockStore(Protocol):
    async def get_stock(self, product_id: UUID) -> int: ...

    async def set_stock(self, product_id: UUID, quantity: int) -> None: ...

    async def adjust(self, product_id: UUID, delta: int) -> StockAdjustment: ...

    async def reserve(self, key: str, product_id: UUID, quantity: int) -> int:
        """Deduct up to ``quantity`` under ``key``; 0 if ``key`` is already reserved."""
        ...

    async def release(self, key: str) -> int:
        """Restore what ``key`` reserved and forget it; 0 if nothing is reserved."""
        ...

    async def reserved(self, key: str) -> int | None: ...


class InMemoryStockStore:
    """Lock-guarded in-process stock store."""

    def __init__(self, initial: dict[UUID, int] | None = None) -> None:
        self._stock: dict[UUID, int] = dict(initial or {})
        self._reservations: dict[str, tuple[UUID, int]] = {}
        self._lock = asyncio.Lock()

    async def get_stock(self, product_id: UUID) -> int:
        async with self._lock:
            return self._stock.get(product_id, 0)

    async def set_stock(self, product_id: UUID, quantity: int) -> None:
        if quantity < 0:
            raise ValueError("stock cannot be negative")
        async with self._lock:
            self._stock[product_id] = quantity

    def _adjust_locked(self, product_id: UUID, delta: int) -> StockAdjustment:
        current = self._stock.get(product_id, 0)
        new = max(current + delta, 0)
        self._stock[product_id] = new
        return StockAdjustment(product_id, new - current, new)

    async def adjust(self, product_id: UUID, delta: int) -> StockAdjustment:
        async with self._lock:
            return self._adjust_locked(product_id, delta)

    async def reserve(self, key: str, product_id: UUID, quantity: int) -> int:
        async with self._lock:
            if key in self._reservations:
                return 0
            adjustment = self._adjust_locked(product_id, -quantity)
            self._reservations[key] = (product_id, -adjustment.applied)
            return -adjustment.applied

    async def release(self, key: str) -> int:
        async with self._lock:
            reservation = self._reservations.pop(key, None)
            if reservation is None:
                return 0
            product_id, amount = reservation
            self._adjust_locked(product_id, amount)
            return amount

    async def reserved(self, key: str) -> int | None:
        async with self._lock:
            reservation = self._reservations.get(key)
            return reservation[1] if reservation else None


STOCK_SCHEMA = """
CREATE TABLE IF NOT EXISTS product_stock (
    product_id TEXT PRIMARY KEY,
    stock INTEGER NOT NULL DEFAULT 0 CHECK (stock >= 0),
    last_delta INTEGER NOT NULL DEFAULT 0
);
CREATE TABLE IF NOT EXISTS stock_reservations (
    reservation_key TEXT PRIMARY KEY,
    product_id TEXT NOT NULL,
    quantity INTEGER NOT NULL
);
"""


class SQLiteStockStore:
    """
    aiosqlite stock store.

    Adjustments are one ``UPDATE ... RETURNING`` statement; the applied
    delta is computed from the pre-update value in the same statement.
    Reservations run inside ``BEGIN IMMEDIATE`` so the reservation row and
    the stock change commit together.
    """

    def __init__(self, database: str, *, tracer: Tracer | None = None, enable_tracing: bool = True) -> None:
        self._database = database
        self._connection: aiosqlite.Connection | None = None
        self._lock = asyncio.Lock()
        self._tracer = tracer or create_tracer(__name__, enable_tracing)

    async def __aenter__(self) -> SQLiteStockStore:
        await self.initialize()
        return self

    async def __aexit__(self, exc_type: type[BaseException] | None, exc_val: BaseException | None, exc_tb: Any) -> None:
        await self.close()

    async def initialize(self) -> None:
        if self._connection is None:
            self._connection = await aiosqlite.connect(self._database, isolation_level=None)
        await self._connection.executescript(STOCK_SCHEMA)
        logger.info("Initialized SQLite stock store: %s", self._database)

    async def close(self) -> None:
        if self._connection is not None:
            await self._connection.close()
            self._connection = None

    def _conn(self) -> aiosqlite.Connection:
        if self._connection is None:
            raise RuntimeError("Stock store not initialized. Call initialize() first.")
        return self._connection

    async def get_stock(self, product_id: UUID) -> int:
        cursor = await self._conn().execute(
            "SELECT stock FROM product_stock WHERE product_id = ?", (str(product_id),)
        )
        row = await cursor.fetchone()
        return int(row[0]) if row else 0

    async def set_stock(self, product_id: UUID, quantity: int) -> None:
        if quantity < 0:
            raise ValueError("stock cannot be negative")
        await self._conn().execute(
            """
            INSERT INTO product_stock (product_id, stock) VALUES (?, ?)
            ON CONFLICT (product_id) DO UPDATE SET stock = excluded.stock
            """,
            (str(product_id), quantity),
        )

    async def _adjust(self, conn: aiosqlite.Connection, product_id: UUID, delta: int) -> StockAdjustment:
        await conn.execute(
            "INSERT OR IGNORE INTO product_stock (product_id, stock) VALUES (?, 0)",
            (str(product_id),),
        )
        cursor = await conn.execute(
            """
            UPDATE product_stock
            SET last_delta = MAX(stock + ?, 0) - stock,
                stock = MAX(stock + ?, 0)
            WHERE product_id = ?
            RETURNING stock, last_delta
            """,
            (delta, delta, str(product_id)),
        )
        row = await cursor.fetchone()
        await cursor.close()
        if row is None:
            raise RuntimeError(f"stock row for {product_id} disappeared during adjust")
        return StockAdjustment(product_id, int(row[1]), int(row[0]))

    async def adjust(self, product_id: UUID, delta: int) -> StockAdjustment:
        async with self._lock:
            conn = self._conn()
            await conn.execute("BEGIN IMMEDIATE")
            try:
                adjustment = await self._adjust(conn, product_id, delta)
                await conn.execute("COMMIT")
            except Exception:
                await conn.execute("ROLLBACK")
                raise
            return adjustment

    async def reserve(self, key: str, product_id: UUID, quantity: int) -> int:
        async with self._lock:
            conn = self._conn()
            await conn.execute("BEGIN IMMEDIATE")
            try:
                cursor = await conn.execute(
                    "SELECT 1 FROM stock_reservations WHERE reservation_key = ?", (key,)
                )
                if await cursor.fetchone():
                    await conn.execute("COMMIT")
                    return 0
                adjustment = await self._adjust(conn, product_id, -quantity)
                await conn.execute(
                    """
                    INSERT INTO stock_reservations (reservation_key, product_id, quantity)
                    VALUES (?, ?, ?)
                    """,
                    (key, str(product_id), -adjustment.applied),
                )
                await conn.execute("COMMIT")
            except Exception:
                await conn.execute("ROLLBACK")
                raise
            return -adjustment.applied

    async def release(self, key: str) -> int:
        async with self._lock:
            conn = self._conn()
            await conn.execute("BEGIN IMMEDIATE")
            try:
                cursor = await conn.execute(
                    "DELETE FROM stock_reservations WHERE reservation_key = ? RETURNING product_id, quantity",
                    (key,),
                )
                row = await cursor.fetchone()
                await cursor.close()
                if row is None:
                    await conn.execute("COMMIT")
                    return 0
                await self._adjust(conn, UUID(row[0]), int(row[1]))
                await conn.execute("COMMIT")
            except Exception:
                await conn.execute("ROLLBACK")
                raise
            return int(row[1])

    async def reserved(self, key: str) -> int | None:
        cursor = await self._conn().execute(
            "SELECT quantity FROM stock_reservations WHERE reservation_key = ?", (key,)
        )
        row = await cursor.fetchone()
        return int(row[0]) if row else None


def reservation_key(order_id: UUID, item_id: UUID) -> str:
    return f"order:{order_id}:item:{item_id}"


class InventoryLedger:
    """
    Deducts and restores stock for order items.

    Example:
        >>> ledger = InventoryLedger(InMemoryStockStore({product_id: 10}))
        >>> await ledger.deduct(order_id, item_id, product_id, 3)
        3
        >>> await ledger.restore(order_id, item_id)
        3
    """

    def __init__(self, store: StockStore, *, tracer: Tracer | None = None, enable_tracing: bool = True) -> None:
        self._store = store
        self._tracer = tracer or create_tracer(__name__, enable_tracing)

    @property
    def store(self) -> StockStore:
        return self._store

    async def deduct(self, order_id: UUID, item_id: UUID, product_id: UUID, quantity: int) -> int:
        """Deduct stock for an item once. Returns the amount actually removed."""
        with self._tracer.span(
            "crewflow.inventory.deduct",
            {ATTR_ORDER_ID: str(order_id), "crewflow.product.id": str(product_id)},
        ):
            removed = await self._store.reserve(reservation_key(order_id, item_id), product_id, quantity)
        if removed < quantity:
            logger.warning(
                "Stock for product %s covered %d of %d units",
                product_id,
                removed,
                quantity,
                extra={"order_id": str(order_id), "item_id": str(item_id), "product_id": str(product_id)},
            )
        logger.debug(
            "Deducted %d units of %s for order %s",
            removed,
            product_id,
            order_id,
            extra={"order_id": str(order_id), "item_id": str(item_id)},
        )
        return removed

    async def restore(self, order_id: UUID, item_id: UUID) -> int:
        """Restore whatever was deducted for an item. Returns the amount restored."""
        with self._tracer.span("crewflow.inventory.restore", {ATTR_ORDER_ID: str(order_id)}):
            restored = await self._store.release(reservation_key(order_id, item_id))
        if restored:
            logger.debug(
                "Restored %d units for order %s item %s",
                restored,
                order_id,
                item_id,
                extra={"order_id": str(order_id), "item_id": str(item_id)},
            )
        return restored


__all__ = [
    "InMemoryStockStore",
    "InventoryLedger",
    "SQLiteStockStore",
    "STOCK_SCHEMA",
    "StockAdjustment",
    "StockStore",
    "reservation_key",
]
