"""Tests for incident persistence and folio allocation."""

import asyncio
from types import SimpleNamespace
from unittest.mock import patch

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from vicebot.domain.enums import IncidentEventType, IncidentStatus
from vicebot.infra.database import init_db, make_engine
from vicebot.services.incident_repository import IncidentRepository, folio_prefix, format_folio
from vicebot.services.session_store import IncidentDraft


def _draft(area="man", lugar="Lobby"):
    draft = IncidentDraft(descripcion="Se fue la luz", lugar=lugar)
    draft.set_primary_area(area)
    return draft


class TestFolios:
    def test_prefix_per_area(self):
        assert folio_prefix("man") == "MAN"
        assert folio_prefix("ama") == "AMA"
        assert folio_prefix(None) == "GEN"
        assert folio_prefix("xyz") == "GEN"

    def test_zero_padded(self):
        assert format_folio("IT", 7) == "IT-00007"
        assert format_folio("SEG", 12345) == "SEG-12345"


class TestPersist:
    async def test_persist_and_lookup(self, db_session):
        repo = IncidentRepository(db_session)

        saved = await repo.persist_incident(_draft(), {"conversation_id": "conv-9"})

        incident = await repo.get_by_folio(saved.folio)
        assert saved.folio == "MAN-00001"
        assert incident.id == saved.id
        assert incident.status == IncidentStatus.OPEN.value
        assert incident.origin_conversation_id == "conv-9"
        assert incident.areas == ["man"]
        events = await repo.list_events(saved.id)
        assert [e.event_type for e in events] == [IncidentEventType.CREATED.value]
        assert events[0].payload == {"source": "chat"}

    async def test_unmapped_area_uses_generic_prefix(self, db_session):
        repo = IncidentRepository(db_session)
        draft = SimpleNamespace(
            descripcion="algo raro", descripcion_original=None, interpretacion=None,
            lugar="Spa", building=None, floor=None, room=None,
            area_destino="legacy", areas=["legacy"], details=[], notes=[],
        )

        saved = await repo.persist_incident(draft)

        assert saved.folio == "GEN-00001"

    async def test_sequences_are_independent(self, db_session):
        repo = IncidentRepository(db_session)
        folios = [
            (await repo.persist_incident(_draft(area))).folio
            for area in ("seg", "seg", "it", "seg")
        ]
        assert folios == ["SEG-00001", "SEG-00002", "IT-00001", "SEG-00003"]

    async def test_unknown_folio(self, db_session):
        assert await IncidentRepository(db_session).get_by_folio("MAN-99999") is None

    async def test_sequence_row_collision_is_retried(self, db_session):
        repo = IncidentRepository(db_session)
        allocate = repo._next_folio
        calls = []

        async def _lost_race(prefix):
            calls.append(prefix)
            if len(calls) == 1:
                raise IntegrityError("INSERT INTO folio_sequences", {}, Exception("UNIQUE constraint failed"))
            return await allocate(prefix)

        with patch.object(repo, "_next_folio", _lost_race):
            saved = await repo.persist_incident(_draft())

        assert saved.folio == "MAN-00001"
        assert calls == ["MAN", "MAN"]


class TestConcurrentFolios:
    async def test_parallel_persists_get_distinct_folios(self, tmp_path):
        engine = make_engine(f"sqlite+aiosqlite:///{tmp_path / 'incidents.db'}")
        await init_db(engine)
        factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

        async def _persist():
            async with factory() as db:
                return (await IncidentRepository(db).persist_incident(_draft("man"))).folio

        try:
            folios = await asyncio.gather(*(_persist() for _ in range(4)))
        finally:
            await engine.dispose()

        assert sorted(folios) == [format_folio("MAN", n) for n in range(1, 5)]


class TestEvents:
    async def test_attachments_and_dispatch_events(self, db_session):
        repo = IncidentRepository(db_session)
        saved = await repo.persist_incident(_draft())

        count = await repo.append_attachments(saved.id, [
            {"filename": "a.jpg", "mimetype": "image/jpeg", "path": "/tmp/a.jpg", "size": 10},
        ])
        await repo.append_dispatch_event(saved.id, {"primary": "grp-man"}, success=False)

        assert count == 1
        assert await repo.append_attachments(saved.id, []) == 0
        types = [e.event_type for e in await repo.list_events(saved.id)]
        assert set(types) == {
            IncidentEventType.CREATED.value,
            IncidentEventType.ATTACHMENTS_ADDED.value,
            IncidentEventType.DISPATCH_FAILED.value,
        }
        attachments = await repo.list_attachments(saved.id)
        assert attachments[0].filename == "a.jpg"
