"""Intake routes — guest chat turns, session inspection and incident lookup.

The transport (WhatsApp bridge, web widget) posts each guest message to
``/api/intake/turns`` and relays the returned replies. Turns for the same
conversation are serialized here; different conversations run concurrently.
"""

import asyncio
import base64
import binascii
import logging
from contextlib import asynccontextmanager

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from vicebot.domain.schemas import (
    DraftSnapshot,
    IncidentOut,
    SessionSnapshot,
    TurnRequest,
    TurnResponse,
)
from vicebot.infra.database import get_db
from vicebot.services.incident_repository import IncidentRepository
from vicebot.services.intake_orchestrator import IncomingImage

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/intake", tags=["intake"])
incidents_router = APIRouter(prefix="/api/incidents", tags=["incidents"])


class ConversationLocks:
    """One ``asyncio.Lock`` per conversation id.

    A lock lives only while some request holds or awaits it, so the map
    stays bounded by the number of conversations with requests in flight.
    """

    def __init__(self):
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}

    def __contains__(self, conversation_id: str) -> bool:
        return conversation_id in self._locks

    def __len__(self) -> int:
        return len(self._locks)

    @asynccontextmanager
    async def hold(self, conversation_id: str):
        lock = self._locks.setdefault(conversation_id, asyncio.Lock())
        self._users[conversation_id] = self._users.get(conversation_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[conversation_id] -= 1
            if not self._users[conversation_id]:
                del self._users[conversation_id]
                del self._locks[conversation_id]


def _decode_images(body: TurnRequest) -> list[IncomingImage]:
    images = []
    for i, img in enumerate(body.images):
        try:
            data = base64.b64decode(img.data_base64, validate=True)
        except (binascii.Error, ValueError):
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"images[{i}].data_base64 is not valid base64",
            )
        if not data:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"images[{i}] is empty")
        images.append(IncomingImage(data=data, mimetype=img.mimetype, filename=img.filename))
    return images


@router.post("/turns", response_model=TurnResponse)
async def post_turn(body: TurnRequest, request: Request):
    """Process one guest message and return the bot replies it produced."""
    images = _decode_images(body)
    if not body.text.strip() and not images:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="text or images required")

    orchestrator = request.app.state.orchestrator
    collected: list[str] = []

    async def reply(text: str) -> None:
        collected.append(text)

    async with request.app.state.turn_locks.hold(body.conversation_id):
        result = await orchestrator.process_turn(body.conversation_id, body.text, reply, images=images)

    return TurnResponse(replies=collected, mode=result.mode, folio=result.folio)


@router.get("/sessions/{conversation_id}", response_model=SessionSnapshot)
async def get_session(conversation_id: str, request: Request):
    session = request.app.state.orchestrator.store.get(conversation_id)
    if session is None:
        raise HTTPException(status_code=404, detail="No active session")
    return SessionSnapshot(
        conversation_id=conversation_id,
        mode=session.mode.value,
        draft=DraftSnapshot(**session.draft.to_dict()),
        pending_media=len(session.pending_media),
        vision_area_hints=list(session.vision_area_hints),
    )


@router.delete("/sessions/{conversation_id}")
async def reset_session(conversation_id: str, request: Request):
    """Operator-side reset; same effect as the guest's reset command.

    Waits for a turn already running for the conversation.
    """
    async with request.app.state.turn_locks.hold(conversation_id):
        cleared = request.app.state.orchestrator.store.clear(conversation_id)
    logger.info("Session %s reset via API (existed=%s)", conversation_id, cleared)
    return {"ok": True, "cleared": cleared}


@incidents_router.get("/{folio}", response_model=IncidentOut)
async def get_incident(folio: str, db: AsyncSession = Depends(get_db)):
    incident = await IncidentRepository(db).get_by_folio(folio.upper())
    if incident is None:
        raise HTTPException(status_code=404, detail="Incident not found")
    return IncidentOut.model_validate(incident)
