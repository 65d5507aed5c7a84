from datetime import datetime, timezone, tzinfo
from typing import List, Optional
from zoneinfo import ZoneInfo
from sqlalchemy import Column, String, DateTime, Boolean, JSON, ForeignKey, update
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.future import select
from recurring_scheduler.domain.definition import RecurrenceDefinition, Frequency
from recurring_scheduler.domain.occurrence import Occurrence, OccurrenceEvent, OccurrenceStatus
from recurring_scheduler.storages.protocol import ScheduleStore

Base = declarative_base()


class DefinitionModel(Base):
    __tablename__ = 'recurrence_definitions'

    id = Column(String, primary_key=True)
    name = Column(String, nullable=False)
    description = Column(String)
    anchor_time = Column(DateTime(timezone=True), nullable=False)
    anchor_timezone = Column(String)
    frequency = Column(String, nullable=False)
    is_active = Column(Boolean, default=True, index=True)
    last_occurrence = Column(DateTime(timezone=True))
    next_occurrence = Column(DateTime(timezone=True), nullable=False, index=True)
    is_deleted = Column(Boolean, default=False, index=True)
    owner_context = Column(JSON, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False)


class OccurrenceModel(Base):
    __tablename__ = 'occurrences'

    id = Column(String, primary_key=True)
    definition_id = Column(String, ForeignKey('recurrence_definitions.id'), nullable=False, index=True)
    scheduled_for = Column(DateTime(timezone=True), nullable=False)
    status = Column(String, nullable=False)
    record_id = Column(String)
    error = Column(String)
    started_at = Column(DateTime(timezone=True))
    finished_at = Column(DateTime(timezone=True))


def _to_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    return value.astimezone(timezone.utc)


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite does not keep tzinfo; everything is written as UTC.
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _zone_name(value: datetime) -> str:
    # IANA key when there is one, so DST rules survive a reload; a fixed offset otherwise
    return getattr(value.tzinfo, "key", None) or value.strftime("%z")


def _zone(name: Optional[str]) -> tzinfo:
    if not name:
        return timezone.utc
    if name[0] in "+-":
        return datetime.strptime(name, "%z").tzinfo
    return ZoneInfo(name)


def _in_zone(value: Optional[datetime], zone: tzinfo) -> Optional[datetime]:
    if value is None:
        return None
    return _as_utc(value).astimezone(zone)


class SqlAlchemyStore(ScheduleStore):
    def __init__(self, db_url: str):
        self.engine = create_async_engine(db_url)
        self.async_session = sessionmaker(
            self.engine, class_=AsyncSession, expire_on_commit=False
        )

    async def create_tables(self):
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def dispose(self):
        await self.engine.dispose()

    async def create_definition(self, definition: RecurrenceDefinition) -> str:
        async with self.async_session() as session:
            db_definition = DefinitionModel(id=definition.id, created_at=_to_utc(definition.created_at))
            self._apply(db_definition, definition)
            session.add(db_definition)
            await session.commit()
            return definition.id

    async def get_definition(self, definition_id: str) -> Optional[RecurrenceDefinition]:
        async with self.async_session() as session:
            result = await session.execute(select(DefinitionModel).filter_by(id=definition_id))
            db_definition = result.scalar_one_or_none()
            if db_definition:
                return self._db_to_definition(db_definition)
            return None

    async def update_definition(self, definition: RecurrenceDefinition) -> bool:
        async with self.async_session() as session:
            result = await session.execute(select(DefinitionModel).filter_by(id=definition.id))
            db_definition = result.scalar_one_or_none()
            if db_definition:
                self._apply(db_definition, definition)
                await session.commit()
                return True
            return False

    async def soft_delete_definition(self, definition_id: str) -> bool:
        async with self.async_session() as session:
            result = await session.execute(
                update(DefinitionModel)
                .where(DefinitionModel.id == definition_id, DefinitionModel.is_deleted.is_(False))
                .values(is_deleted=True)
            )
            await session.commit()
            return result.rowcount > 0

    async def list_definitions(self, limit: int = 20, offset: int = 0, include_deleted: bool = False) -> List[RecurrenceDefinition]:
        async with self.async_session() as session:
            query = select(DefinitionModel)
            if not include_deleted:
                query = query.filter_by(is_deleted=False)
            result = await session.execute(query.offset(offset).limit(limit).order_by(DefinitionModel.created_at.desc()))
            return [self._db_to_definition(db_definition) for db_definition in result.scalars()]

    async def load_active_definitions(self) -> List[RecurrenceDefinition]:
        async with self.async_session() as session:
            result = await session.execute(
                select(DefinitionModel)
                .filter_by(is_active=True, is_deleted=False)
                .order_by(DefinitionModel.next_occurrence)
            )
            return [self._db_to_definition(db_definition) for db_definition in result.scalars()]

    async def persist_occurrence_state(self, definition: RecurrenceDefinition) -> bool:
        async with self.async_session() as session:
            result = await session.execute(
                update(DefinitionModel)
                .where(DefinitionModel.id == definition.id)
                .values(
                    last_occurrence=_to_utc(definition.last_occurrence),
                    next_occurrence=_to_utc(definition.next_occurrence),
                )
            )
            await session.commit()
            return result.rowcount > 0

    async def record(self, event: OccurrenceEvent) -> None:
        occurrence = event.occurrence
        async with self.async_session() as session:
            session.add(OccurrenceModel(
                id=occurrence.id,
                definition_id=occurrence.definition_id,
                scheduled_for=_to_utc(occurrence.scheduled_for),
                status=occurrence.status.value,
                record_id=occurrence.record_id,
                error=occurrence.error,
                started_at=_to_utc(occurrence.started_at),
                finished_at=_to_utc(occurrence.finished_at)
            ))
            await session.commit()

    async def list_recent_occurrences(self, definition_id: str, limit: int = 20) -> List[Occurrence]:
        async with self.async_session() as session:
            result = await session.execute(
                select(OccurrenceModel)
                .filter_by(definition_id=definition_id)
                .order_by(OccurrenceModel.scheduled_for.desc(), OccurrenceModel.started_at.desc())
                .limit(limit)
            )
            return [self._db_to_occurrence(db_occurrence) for db_occurrence in result.scalars()]

    def _apply(self, db_definition: DefinitionModel, definition: RecurrenceDefinition) -> None:
        db_definition.name = definition.name
        db_definition.description = definition.description
        db_definition.anchor_time = _to_utc(definition.anchor_time)
        db_definition.anchor_timezone = _zone_name(definition.anchor_time)
        db_definition.frequency = definition.frequency.value
        db_definition.is_active = definition.is_active
        db_definition.last_occurrence = _to_utc(definition.last_occurrence)
        db_definition.next_occurrence = _to_utc(definition.next_occurrence)
        db_definition.is_deleted = definition.is_deleted
        db_definition.owner_context = definition.owner_context

    def _db_to_definition(self, db_definition: DefinitionModel) -> RecurrenceDefinition:
        # Recurrence arithmetic is wall-clock in the anchor's zone, so the zone is restored
        zone = _zone(db_definition.anchor_timezone)
        return RecurrenceDefinition(
            id=db_definition.id,
            name=db_definition.name,
            description=db_definition.description,
            anchor_time=_in_zone(db_definition.anchor_time, zone),
            frequency=Frequency(db_definition.frequency),
            is_active=db_definition.is_active,
            last_occurrence=_in_zone(db_definition.last_occurrence, zone),
            next_occurrence=_in_zone(db_definition.next_occurrence, zone),
            is_deleted=db_definition.is_deleted,
            owner_context=db_definition.owner_context,
            created_at=_as_utc(db_definition.created_at)
        )

    def _db_to_occurrence(self, db_occurrence: OccurrenceModel) -> Occurrence:
        return Occurrence(
            id=db_occurrence.id,
            definition_id=db_occurrence.definition_id,
            scheduled_for=_as_utc(db_occurrence.scheduled_for),
            status=OccurrenceStatus(db_occurrence.status),
            record_id=db_occurrence.record_id,
            error=db_occurrence.error,
            started_at=_as_utc(db_occurrence.started_at),
            finished_at=_as_utc(db_occurrence.finished_at)
        )


class InMemoryStore(SqlAlchemyStore):
    def __init__(self):
        super().__init__("sqlite+aiosqlite:///:memory:")
