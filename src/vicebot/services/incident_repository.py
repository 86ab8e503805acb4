"""Incident persistence — folios, attachments and dispatch events."""

import logging
import uuid
from dataclasses import dataclass

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from vicebot.domain.areas import AREA_FOLIO_PREFIX, DEFAULT_FOLIO_PREFIX
from vicebot.domain.enums import IncidentEventType, IncidentStatus
from vicebot.domain.models import FolioSequence, Incident, IncidentAttachment, IncidentEvent

logger = logging.getLogger(__name__)

FOLIO_DIGITS = 5

# Attempts when two conversations create the same prefix row at once
PERSIST_ATTEMPTS = 3


@dataclass
class PersistedIncident:
    id: str
    folio: str


def folio_prefix(area: str | None) -> str:
    return AREA_FOLIO_PREFIX.get(area or "", DEFAULT_FOLIO_PREFIX)


def format_folio(prefix: str, value: int) -> str:
    return f"{prefix}-{value:0{FOLIO_DIGITS}d}"


class IncidentRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def _next_folio(self, prefix: str) -> str:
        """Increment the prefix counter in the database and return the new folio.

        The increment is a single ``UPDATE ... RETURNING``, so concurrent
        writers serialize on the row instead of reading the same value.
        A missing row is inserted; losing that insert race raises
        ``IntegrityError`` on flush.
        """
        stmt = (
            update(FolioSequence)
            .where(FolioSequence.prefix == prefix)
            .values(last_value=FolioSequence.last_value + 1)
            .returning(FolioSequence.last_value)
        )
        value = (await self.db.execute(stmt)).scalar_one_or_none()
        if value is None:
            self.db.add(FolioSequence(prefix=prefix, last_value=1))
            await self.db.flush()
            value = 1
        return format_folio(prefix, value)

    async def persist_incident(self, draft, meta: dict | None = None) -> PersistedIncident:
        """Insert the draft as an open incident with an area-scoped folio."""
        meta = meta or {}
        prefix = folio_prefix(draft.area_destino)

        for attempt in range(1, PERSIST_ATTEMPTS + 1):
            try:
                folio = await self._next_folio(prefix)
                incident = self._build_incident(draft, folio, meta)
                self.db.add(incident)
                self.db.add(IncidentEvent(
                    incident_id=incident.id,
                    event_type=IncidentEventType.CREATED.value,
                    payload={"source": meta.get("source", "chat")},
                ))
                await self.db.commit()
            except IntegrityError as exc:
                await self.db.rollback()
                if attempt == PERSIST_ATTEMPTS:
                    raise
                logger.warning("Folio collision for %s (attempt %d): %s", prefix, attempt, exc.orig)
                continue
            logger.info("Incident persisted: folio=%s area=%s lugar=%s", folio, draft.area_destino, draft.lugar)
            return PersistedIncident(id=incident.id, folio=folio)

    @staticmethod
    def _build_incident(draft, folio: str, meta: dict) -> Incident:
        return Incident(
            id=str(uuid.uuid4()),
            folio=folio,
            status=IncidentStatus.OPEN.value,
            descripcion=draft.descripcion,
            descripcion_original=draft.descripcion_original,
            interpretacion=draft.interpretacion,
            lugar=draft.lugar,
            building=draft.building,
            floor=draft.floor,
            room=draft.room,
            area_destino=draft.area_destino,
            areas=list(draft.areas),
            details=list(draft.details),
            notes=list(draft.notes),
            origin_conversation_id=meta.get("conversation_id"),
        )

    async def append_attachments(self, incident_id: str, metas: list[dict]) -> int:
        if not metas:
            return 0
        for meta in metas:
            self.db.add(IncidentAttachment(
                incident_id=incident_id,
                filename=meta["filename"],
                mimetype=meta.get("mimetype") or "application/octet-stream",
                path=meta["path"],
                size=meta.get("size") or 0,
            ))
        self.db.add(IncidentEvent(
            incident_id=incident_id,
            event_type=IncidentEventType.ATTACHMENTS_ADDED.value,
            payload={"count": len(metas)},
        ))
        await self.db.commit()
        return len(metas)

    async def append_dispatch_event(self, incident_id: str, targets: dict, success: bool = True) -> None:
        event_type = IncidentEventType.DISPATCHED if success else IncidentEventType.DISPATCH_FAILED
        self.db.add(IncidentEvent(
            incident_id=incident_id,
            event_type=event_type.value,
            payload=targets,
        ))
        await self.db.commit()

    async def get_by_folio(self, folio: str) -> Incident | None:
        result = await self.db.execute(select(Incident).where(Incident.folio == folio))
        return result.scalar_one_or_none()

    async def list_events(self, incident_id: str) -> list[IncidentEvent]:
        result = await self.db.execute(
            select(IncidentEvent)
            .where(IncidentEvent.incident_id == incident_id)
            .order_by(IncidentEvent.created_at)
        )
        return list(result.scalars().all())

    async def list_attachments(self, incident_id: str) -> list[IncidentAttachment]:
        result = await self.db.execute(
            select(IncidentAttachment).where(IncidentAttachment.incident_id == incident_id)
        )
        return list(result.scalars().all())
