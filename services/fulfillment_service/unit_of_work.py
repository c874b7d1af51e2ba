from typing import Optional

import structlog
from sqlalchemy.exc import DBAPIError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .cascade import StatusCascadeEngine
from .constants import CascadePolicy
from .exceptions import DatabaseError
from .guard import RoleGuard
from .inventory import InventoryLedger
from .side_effects import SideEffectPipeline

logger = structlog.get_logger(__name__)

SERIALIZATION_FAILURE = "40001"


class UnitOfWork:
    """
    Transaction scope of one orchestrator call.

    Ledger updates, aggregate writes and the side-effect pipeline all share
    ``self.db``; leaving the block commits them together, and any exception
    rolls every one of them back. Unexpected persistence failures surface as
    DatabaseError with the original exception chained.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker,
        operation: str,
        actor_id: Optional[int] = None,
        policy: CascadePolicy = CascadePolicy.MIRROR,
    ):
        self._session_factory = session_factory
        self.operation = operation
        self.actor_id = actor_id
        self.policy = policy
        self.db: Optional[AsyncSession] = None
        self.ledger: Optional[InventoryLedger] = None
        self.effects: Optional[SideEffectPipeline] = None
        self.guard: Optional[RoleGuard] = None
        self.cascade: Optional[StatusCascadeEngine] = None

    async def __aenter__(self) -> "UnitOfWork":
        self.db = self._session_factory()
        await self.db.begin()
        self.ledger = InventoryLedger(self.db)
        self.effects = SideEffectPipeline(self.db, self.actor_id)
        self.guard = RoleGuard(self.db)
        self.cascade = StatusCascadeEngine(self.db, self.effects, self.ledger, self.policy)
        return self

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        try:
            if exc_type is None:
                try:
                    await self.db.commit()
                except SQLAlchemyError as commit_error:
                    await self.db.rollback()
                    self.effects.discard()
                    raise self._wrap(commit_error) from commit_error
                self.effects.publish()
                return False

            await self.db.rollback()
            self.effects.discard()
            if isinstance(exc, SQLAlchemyError):
                raise self._wrap(exc) from exc
            return False
        finally:
            await self.db.close()

    def _wrap(self, error: SQLAlchemyError) -> DatabaseError:
        details = {"operation": self.operation, "original_error": str(error)}
        if isinstance(error, DBAPIError):
            sqlstate = getattr(error.orig, "sqlstate", None) or getattr(error.orig, "pgcode", None)
            if sqlstate == SERIALIZATION_FAILURE:
                details["retryable"] = True
        logger.error("transaction_failed", operation=self.operation, error=str(error))
        return DatabaseError(f"Database error during {self.operation}", details)
