"""Concurrency guard: one processing batch per organization."""

from dataclasses import dataclass
from enum import Enum

import structlog

from floragen.services.generation.store import GenerationStore

logger = structlog.get_logger(__name__)


class GuardOutcome(str, Enum):
    ACTIVE = "active"
    IDLE = "idle"
    BACKEND_UNAVAILABLE = "backend_unavailable"


@dataclass(frozen=True)
class GuardCheck:
    outcome: GuardOutcome
    error: str | None = None

    @property
    def blocks(self) -> bool:
        """Only a confirmed active batch blocks; backend errors let the request through."""
        return self.outcome == GuardOutcome.ACTIVE


class ConcurrencyGuard:
    """Checks for a processing GenerationJob before a new batch is admitted.

    The check is read-then-act with no lock. A rare double run costs quota,
    which the usage ledger reserves atomically on its own.
    """

    def __init__(self, store: GenerationStore):
        self.store = store

    async def check(self, organization_id: str) -> GuardCheck:
        try:
            active = await self.store.has_active_job(organization_id)
        except Exception as e:
            logger.error(
                "concurrency_guard.backend_unavailable",
                organization_id=organization_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            return GuardCheck(GuardOutcome.BACKEND_UNAVAILABLE, error=str(e))

        return GuardCheck(GuardOutcome.ACTIVE if active else GuardOutcome.IDLE)

    async def has_active_batch(self, organization_id: str) -> bool:
        return (await self.check(organization_id)).blocks
