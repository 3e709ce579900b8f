"""
Charge Scheduler
================

Daily tick that drives recurring charges for due ACTIVE mandates.

Selection happens once at tick start; each mandate is then charged under
its own advisory lock by the engine, which re-reads it and skips anything
a webhook already charged after ``tick_start``. A tick stops taking new
mandates once its wall-clock budget is spent; whatever is left is picked
up by the next tick.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.orm import Session

from autopay.app.config import Settings, settings as default_settings
from autopay.app.exceptions import AutopayError
from autopay.repositories.mandate_repo import MandateRepository
from autopay.services.mandate_engine import ChargeResult, MandateEngine
from autopay.utils.validators import Clock, utcnow

logger = logging.getLogger(__name__)


@dataclass
class TickSummary:
    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0
    timed_out: int = 0
    results: List[ChargeResult] = field(default_factory=list)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "processed": self.processed,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "skipped": self.skipped,
            "timedOut": self.timed_out,
            "results": [result.as_dict() for result in self.results],
        }


class ChargeScheduler:
    """Runs one charge tick over the due mandates."""

    def __init__(
        self,
        db: Session,
        engine: MandateEngine,
        clock: Clock = utcnow,
        config: Optional[Settings] = None,
        monotonic: Callable[[], float] = time.monotonic,
    ):
        self.db = db
        self.engine = engine
        self.clock = clock
        self.config = config or default_settings
        self.monotonic = monotonic
        self.mandates = MandateRepository(db)

    def run_tick(self) -> TickSummary:
        tick_start = self.clock()
        started = self.monotonic()
        due = [
            (mandate.mandate_id, mandate.user_id, mandate.amount)
            for mandate in self.mandates.list_due(tick_start, self.config.CHARGE_BATCH_SIZE)
        ]
        # release the read transaction before per-mandate locking
        self.db.commit()

        summary = TickSummary()
        for index, (mandate_id, user_id, amount) in enumerate(due):
            if self.monotonic() - started >= self.config.CHARGE_TICK_MAX_SECONDS:
                summary.timed_out = len(due) - index
                logger.warning("Charge tick hit its time budget; %s mandates deferred", summary.timed_out)
                break
            try:
                result = self.engine.charge_due_mandate(mandate_id, tick_start)
            except AutopayError as exc:
                logger.warning("Charge of mandate %s errored: %s", mandate_id, exc.message)
                result = ChargeResult(mandate_id, user_id, success=False, amount=amount, error=exc.message)

            summary.results.append(result)
            if result.skipped:
                summary.skipped += 1
                continue
            summary.processed += 1
            if result.success:
                summary.succeeded += 1
            else:
                summary.failed += 1

        logger.info(
            "Charge tick: processed=%s succeeded=%s failed=%s skipped=%s timed_out=%s",
            summary.processed, summary.succeeded, summary.failed, summary.skipped, summary.timed_out,
        )
        return summary
