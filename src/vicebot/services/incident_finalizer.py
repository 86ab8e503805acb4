"""Incident finalizer — persist, store media, dispatch, reset.

Each step is best-effort: a failure is logged (and reported to the user
where it matters) but never stops the steps after it, and the session is
always reset once finalization starts.
"""

import logging
from dataclasses import dataclass, field

from vicebot.domain.areas import area_list_label

from .dispatch_service import format_incident_message
from .incident_repository import IncidentRepository

logger = logging.getLogger(__name__)


@dataclass
class FinalizeResult:
    ok: bool = False
    folio: str | None = None
    incident_id: str | None = None
    missing: list[str] = field(default_factory=list)  # lugar / area_destino when preconditions fail
    warnings: list[str] = field(default_factory=list)
    failed_destinations: list[str] = field(default_factory=list)


class IncidentFinalizer:
    """Turns a confirmed draft into a persisted, dispatched incident.

    Args:
        store: Session store; the session is cleared after finalizing.
        session_factory: async_sessionmaker used to open a DB session.
        dispatch: DispatchService (resolve_target_groups / send_to_destinations).
        media_store: MediaStore for pending images.
    """

    def __init__(self, store, session_factory, dispatch, media_store):
        self.store = store
        self.session_factory = session_factory
        self.dispatch = dispatch
        self.media_store = media_store

    async def finalize(self, session, reply) -> FinalizeResult:
        draft = session.draft

        # == Preconditions (re-checked right before dispatch) ==
        missing = []
        if draft.lugar is None:
            missing.append("lugar")
        if draft.area_destino is None:
            missing.append("area_destino")
        if missing:
            logger.warning("Finalize refused for %s: missing %s", session.conversation_id, missing)
            return FinalizeResult(ok=False, missing=missing)

        result = FinalizeResult(ok=True)
        try:
            await self._persist_and_dispatch(session, reply, result)
        finally:
            # == 6. Reset ==
            self.store.clear(session.conversation_id)
            logger.info(
                "Finalized %s for %s (warnings=%s failed=%s)",
                result.folio, session.conversation_id, result.warnings, result.failed_destinations,
            )
        return result

    async def _persist_and_dispatch(self, session, reply, result: FinalizeResult) -> None:
        draft = session.draft
        media = list(session.pending_media)

        # == 1-2. Persist and store media ==
        try:
            async with self.session_factory() as db:
                await self._persist(db, session, media, result)
        except Exception as exc:
            logger.error("Incident store session failed for %s: %s", session.conversation_id, exc)
            if not result.incident_id and "persist_failed" not in result.warnings:
                result.warnings.append("persist_failed")

        # == 3. Dispatch ==
        targets = self.dispatch.resolve_target_groups(draft.area_destino, draft.areas)
        if targets.unknown_areas:
            await reply(
                f"⚠️ No tengo destino configurado para: {area_list_label(targets.unknown_areas)}. "
                "Envío a las demás áreas."
            )
            result.warnings.append("unknown_areas")

        destinations = targets.all_destinations()
        outcomes = {}
        if destinations:
            try:
                outcomes = await self.dispatch.send_to_destinations(
                    format_incident_message(draft, result.folio), destinations, media,
                )
            except Exception as exc:
                logger.error("Dispatch failed for %s: %s", result.folio, exc)
                outcomes = {dest: {"ok": False, "error": str(exc)} for dest in destinations}
        else:
            logger.warning("No destinations resolved for %s", result.folio)
            result.warnings.append("no_destinations")

        result.failed_destinations = [d for d, o in outcomes.items() if not o.get("ok")]

        # == 4. Dispatch trace ==
        if result.incident_id:
            try:
                async with self.session_factory() as db:
                    await IncidentRepository(db).append_dispatch_event(
                        result.incident_id,
                        {**targets.to_dict(), "failed": result.failed_destinations},
                        success=bool(destinations) and not result.failed_destinations,
                    )
            except Exception as exc:
                logger.error("Dispatch event save failed for %s: %s", result.folio, exc)

        # == 5. Tell the user ==
        delivered = bool(destinations) and len(result.failed_destinations) < len(destinations)
        if result.folio:
            message = f"✅ *Ticket creado:* {result.folio}\n\nTe avisaré cuando haya novedades."
            if result.failed_destinations or not destinations:
                message += "\n⚠️ No pude avisar a todos los equipos; el ticket quedó registrado."
        elif delivered:
            message = "⚠️ No pude guardar el ticket, pero lo envié al equipo responsable."
        else:
            message = "❌ No pude guardar ni enviar el ticket. Por favor avisa directamente al área."
        await reply(message)

    async def _persist(self, db, session, media: list, result: FinalizeResult) -> None:
        repo = IncidentRepository(db)
        try:
            persisted = await repo.persist_incident(
                session.draft, {"conversation_id": session.conversation_id, "source": "chat"},
            )
        except Exception as exc:
            logger.error("Persist failed for %s: %s", session.conversation_id, exc)
            result.warnings.append("persist_failed")
            await _rollback(db)
            return
        result.folio = persisted.folio
        result.incident_id = persisted.id

        if media:
            try:
                metas = await self.media_store.save_all(result.folio, media)
                await repo.append_attachments(result.incident_id, metas)
            except Exception as exc:
                logger.error("Attachment save failed for %s: %s", result.folio, exc)
                result.warnings.append("attachments_failed")
                await _rollback(db)


async def _rollback(db) -> None:
    try:
        await db.rollback()
    except Exception as exc:
        logger.error("Rollback failed: %s", exc)
