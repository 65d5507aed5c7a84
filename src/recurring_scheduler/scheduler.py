import logging
from datetime import timedelta
from functools import partial
from typing import Optional, Set

from recurring_scheduler.audit import AuditSink, CompositeAuditSink, LoggingAuditSink
from recurring_scheduler.catch_up import CatchUpReport, CatchUpRunner
from recurring_scheduler.config import SchedulerSettings
from recurring_scheduler.domain.definition import RecurrenceDefinition
from recurring_scheduler.errors import DefinitionNotFoundError
from recurring_scheduler.executor import OccurrenceExecutor
from recurring_scheduler.materializers.http import WebhookMaterializer
from recurring_scheduler.materializers.protocol import Materializer
from recurring_scheduler.storages.protocol import ScheduleStore
from recurring_scheduler.storages.sqlalchemy import SqlAlchemyStore
from recurring_scheduler.timers import Clock, TimerRegistry, utc_now

logger = logging.getLogger(__name__)


class RecurringScheduler:
    """
    Keeps one live timer per active recurrence definition.

    ``initialize()`` is called once at process start. The CRUD layer calls
    ``on_created``, ``on_updated`` and ``on_deleted`` right after it persisted
    the matching change; these calls never block and never raise scheduling
    errors back into request handling.

    Only one scheduling process may run against a store: two processes would
    both execute every occurrence.
    """

    def __init__(self, store: ScheduleStore, materializer: Materializer,
                 audit_sink: Optional[AuditSink] = None,
                 settings: Optional[SchedulerSettings] = None,
                 clock: Clock = utc_now):
        self.settings = settings or SchedulerSettings()
        self.store = store
        self.timers = TimerRegistry(clock)
        self.executor = OccurrenceExecutor(store, materializer, audit_sink or LoggingAuditSink(), clock)
        self.catch_up = CatchUpRunner(self.executor, clock, self.settings.MAX_CATCH_UP_ITERATIONS)
        self.is_initialized = False
        self._clock = clock

    @classmethod
    def from_settings(cls, settings: Optional[SchedulerSettings] = None,
                      materializer: Optional[Materializer] = None) -> "RecurringScheduler":
        """
        Build a scheduler backed by ``SqlAlchemyStore`` and, unless one is given,
        a ``WebhookMaterializer``. Occurrences are audited to the log and the store.
        """
        settings = settings or SchedulerSettings()
        store = SqlAlchemyStore(settings.DATABASE_URL)
        if materializer is None:
            if not settings.WEBHOOK_URL:
                raise ValueError("WEBHOOK_URL must be configured when no materializer is given")
            materializer = WebhookMaterializer(settings.WEBHOOK_URL, settings.WEBHOOK_TIMEOUT_SECONDS)
        audit_sink = CompositeAuditSink([LoggingAuditSink(), store])
        return cls(store, materializer, audit_sink, settings)

    async def initialize(self) -> Optional[CatchUpReport]:
        """
        Load active definitions, catch each one up, then register its live timer.
        """
        if self.is_initialized:
            return None

        logger.info("Initializing recurring scheduler...")
        if isinstance(self.store, SqlAlchemyStore):
            await self.store.create_tables()

        definitions = await self.store.load_active_definitions()
        report = await self.catch_up.drain_all(definitions)

        for definition in report.drained:
            self._schedule(definition)
        for definition in definitions:
            if definition.id in report.failed:
                self._schedule_retry(report.progress.get(definition.id, definition))
            elif definition.id in report.stalled:
                logger.error(f"Recurring job {definition.id} is not scheduled until it is edited")

        self.is_initialized = True
        logger.info(f"Recurring scheduler initialized with {len(self.timers)} active jobs "
                    f"({report.executed} missed runs processed)")
        return report

    async def shutdown(self) -> None:
        await self.timers.shutdown()
        self.is_initialized = False
        logger.info("Stopped all recurring jobs")

    def on_created(self, definition: RecurrenceDefinition) -> None:
        try:
            if definition.is_schedulable:
                self._schedule(definition)
                logger.info(f"Added new recurring job: {definition.name} ({definition.id})")
        except Exception:
            logger.exception(f"Error adding recurring job {definition.id}")

    def on_updated(self, definition: RecurrenceDefinition) -> None:
        try:
            self.timers.unregister(definition.id)
            if definition.is_schedulable:
                self._schedule(definition)
            logger.info(f"Updated recurring job: {definition.name} ({definition.id})")
        except Exception:
            logger.exception(f"Error updating recurring job {definition.id}")

    def on_deleted(self, definition_id: str) -> None:
        if self.timers.unregister(definition_id):
            logger.info(f"Removed recurring job: {definition_id}")

    def list_active_timer_ids(self) -> Set[str]:
        return self.timers.list_registered()

    async def run_now(self, definition_id: str) -> RecurrenceDefinition:
        """
        Run a stored definition immediately if it is due, then reschedule it.

        Raises:
            DefinitionNotFoundError: If no such definition exists.
        """
        definition = await self.store.get_definition(definition_id)
        if definition is None:
            raise DefinitionNotFoundError(definition_id)

        self.timers.unregister(definition_id)
        try:
            updated = await self.executor.run(definition)
        except Exception:
            self._schedule_retry(definition)
            raise
        self._schedule(updated)
        return updated

    def _schedule(self, definition: RecurrenceDefinition) -> None:
        if not definition.is_schedulable:
            self.timers.unregister(definition.id)
            return
        self.timers.register(definition.id, definition.next_occurrence, partial(self._fire, definition))
        logger.debug(f"Scheduled recurring job: {definition.name} ({definition.id}) "
                     f"for {definition.next_occurrence.isoformat()}")

    def _schedule_retry(self, definition: RecurrenceDefinition) -> None:
        retry_at = self._clock() + timedelta(seconds=self.settings.RETRY_DELAY_SECONDS)
        self.timers.register(definition.id, retry_at, partial(self._fire, definition))
        logger.warning(f"Recurring job {definition.id} will be retried at {retry_at.isoformat()}")

    async def _fire(self, definition: RecurrenceDefinition) -> None:
        try:
            updated = await self.executor.run(definition)
        except Exception:
            logger.exception(f"Error executing recurring job {definition.id}")
            self._schedule_retry(definition)
            return
        self._schedule(updated)
