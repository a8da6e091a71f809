# flower_shop/transactions.py
"""
Transaction executor.

Runs an ordered list of async operations inside ONE database transaction.
Each operation receives a strict Database bound to the transaction's session:

    async def reserve(tx: Database):
        return await tx.products.decrement({"id": 7}, "stock_quantity", 2)

    result = await TransactionExecutor(factory).run([reserve], timeout=5)
    if not result.success:
        ...  # result.error; nothing was committed

Any exception or timeout rolls the whole batch back.
"""
from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, List, Optional, Sequence
import asyncio
import logging
import time

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from flower_shop.errors import DataAccessError, ShopError, TransactionTimeoutError
from flower_shop.facade import Database
from flower_shop.settings import settings

logger = logging.getLogger(__name__)

Operation = Callable[[Database], Awaitable[Any]]


@dataclass
class TransactionResult:
    success: bool
    result: Any = None
    results: List[Any] = field(default_factory=list)
    error: Optional[BaseException] = None

    def unwrap(self) -> Any:
        """Return the batch result or re-raise its failure as a ShopError."""
        if self.success:
            return self.result
        if isinstance(self.error, ShopError):
            raise self.error
        raise DataAccessError("Transaction failed") from self.error


class TransactionExecutor:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def run(
        self,
        operations: Sequence[Operation],
        timeout: Optional[float] = None,
        max_wait: Optional[float] = None,
    ) -> TransactionResult:
        """
        Execute `operations` in order; commit only if all succeed.

        max_wait bounds acquiring a connection, timeout bounds the whole
        batch. Failures are logged and returned, never raised.
        """
        timeout = settings.TX_TIMEOUT_SECONDS if timeout is None else timeout
        max_wait = settings.TX_MAX_WAIT_SECONDS if max_wait is None else max_wait
        started = time.perf_counter()

        try:
            results = await asyncio.wait_for(self._execute(operations, max_wait), timeout=timeout)
        except asyncio.TimeoutError:
            error = TransactionTimeoutError(timeout)
            logger.error(
                "Transaction timed out after %.3fs (operations=%d, timeout=%s, max_wait=%s)",
                time.perf_counter() - started, len(operations), timeout, max_wait,
            )
            return TransactionResult(success=False, error=error)
        except Exception as e:
            logger.error(
                "Transaction failed (operations=%d, timeout=%s, max_wait=%s): %s",
                len(operations), timeout, max_wait, e,
                exc_info=not getattr(e, "is_client_error", False),
            )
            return TransactionResult(success=False, error=e)

        logger.info(
            "Transaction committed in %.3fs (operations=%d)",
            time.perf_counter() - started, len(operations),
        )
        return TransactionResult(
            success=True,
            result=results[-1] if results else None,
            results=results,
        )

    async def _execute(self, operations: Sequence[Operation], max_wait: float) -> List[Any]:
        async with self.session_factory() as session:
            async with session.begin():
                try:
                    await asyncio.wait_for(session.connection(), timeout=max_wait)
                except asyncio.TimeoutError:
                    raise TransactionTimeoutError(max_wait, phase="connection wait") from None
                tx = Database(session, strict=True)
                results = []
                for op in operations:
                    results.append(await op(tx))
                return results
