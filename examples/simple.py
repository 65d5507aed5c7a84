import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any, Dict

from recurring_scheduler.domain.definition import RecurrenceDefinition, Frequency
from recurring_scheduler.materializers.protocol import Materializer
from recurring_scheduler.scheduler import RecurringScheduler
from recurring_scheduler.storages.sqlalchemy import InMemoryStore


class PrintMaterializer(Materializer):
    def __init__(self):
        self.created = 0

    async def materialize(self, owner_context: Dict[str, Any], occurrence_time: datetime) -> Dict[str, Any]:
        self.created += 1
        print(f"Creating record for {owner_context['client']} starting {occurrence_time:%Y-%m-%d %H:%M %Z}")
        return {"id": f"prj_{self.created}"}


# Set up the store and scheduler
store = InMemoryStore()
scheduler = RecurringScheduler(store, PrintMaterializer())


async def main():
    await store.create_tables()

    # Started three weeks ago: the missed Mondays are created at startup
    start = datetime.now(timezone.utc).replace(hour=9, minute=0, second=0, microsecond=0) - timedelta(weeks=3)
    definition = RecurrenceDefinition(
        name="Weekly client report",
        anchor_time=start,
        frequency=Frequency.WEEKLY,
        owner_context={"client": "cli_acme"},
    )
    await store.create_definition(definition)

    await scheduler.initialize()
    stored = await store.get_definition(definition.id)
    print(stored.readable_string())
    print(f"Active timers: {scheduler.list_active_timer_ids()}")

    # A job created after startup is registered without a restart
    monthly = RecurrenceDefinition(
        name="Monthly invoice",
        anchor_time=datetime.now(timezone.utc) + timedelta(days=1),
        frequency=Frequency.MONTHLY,
        owner_context={"client": "cli_acme"},
    )
    await store.create_definition(monthly)
    scheduler.on_created(monthly)
    print(f"Active timers: {scheduler.list_active_timer_ids()}")

    await store.soft_delete_definition(monthly.id)
    scheduler.on_deleted(monthly.id)

    await scheduler.shutdown()
    await store.dispose()


if __name__ == "__main__":
    asyncio.run(main())
