import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

from recurring_scheduler.domain.definition import RecurrenceDefinition
from recurring_scheduler.errors import CatchUpStalledError
from recurring_scheduler.executor import OccurrenceExecutor
from recurring_scheduler.timers import Clock, utc_now

logger = logging.getLogger(__name__)


@dataclass
class CatchUpReport:
    drained: List[RecurrenceDefinition] = field(default_factory=list)
    failed: Dict[str, Exception] = field(default_factory=dict)
    stalled: Dict[str, CatchUpStalledError] = field(default_factory=dict)
    executed: int = 0
    # Last state each definition reached, including those that failed partway through a backlog
    progress: Dict[str, RecurrenceDefinition] = field(default_factory=dict)


class CatchUpRunner:
    """
    Executes every occurrence that became due while the process was not running.
    """

    def __init__(self, executor: OccurrenceExecutor, clock: Clock = utc_now, max_iterations: int = 10000):
        self.executor = executor
        self._clock = clock
        self.max_iterations = max_iterations

    async def drain(self, definition: RecurrenceDefinition, now: Optional[datetime] = None) -> RecurrenceDefinition:
        """
        Run ``definition`` until its next occurrence is later than ``now``.

        The updated definition returned by each run is fed into the next
        iteration; the store is not re-read in between.

        Raises:
            CatchUpStalledError: An iteration did not move ``next_occurrence`` forward,
                or the iteration limit was reached.
            MaterializationError, PersistenceError: Propagated from the executor.
        """
        return await self._drain(definition, now or self._clock(), CatchUpReport())

    async def drain_all(self, definitions: List[RecurrenceDefinition], now: Optional[datetime] = None) -> CatchUpReport:
        """
        Drain each definition in turn. A failing definition is logged and reported,
        and never prevents the others from being processed.
        """
        now = now or self._clock()
        report = CatchUpReport()
        for definition in definitions:
            try:
                report.drained.append(await self._drain(definition, now, report))
            except CatchUpStalledError as e:
                logger.critical(str(e))
                report.stalled[definition.id] = e
            except Exception as e:
                logger.exception(f"Error catching up recurring job {definition.id}")
                report.failed[definition.id] = e
        return report

    async def _drain(self, definition: RecurrenceDefinition, now: datetime, report: CatchUpReport) -> RecurrenceDefinition:
        executed = 0
        report.progress[definition.id] = definition

        while definition.is_schedulable and definition.is_due(now):
            if executed >= self.max_iterations:
                raise CatchUpStalledError(definition.id, f"more than {self.max_iterations} missed occurrences")

            logger.info(f"Processing missed run for recurring job: {definition.name} ({definition.id}) "
                        f"at {definition.next_occurrence.isoformat()}")
            updated = await self.executor.run(definition, now)
            if updated.is_schedulable and updated.next_occurrence <= definition.next_occurrence:
                raise CatchUpStalledError(
                    definition.id,
                    f"next occurrence did not advance past {definition.next_occurrence.isoformat()}"
                )
            definition = updated
            executed += 1
            report.executed += 1
            report.progress[definition.id] = definition

        if executed:
            logger.info(f"All {executed} missed runs processed for recurring job: "
                        f"{definition.name} ({definition.id})")
        return definition
