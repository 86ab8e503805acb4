"""Shared test infrastructure for the intake test suite.

Provides:
- db_session / session_factory: async SQLite in-memory database with all tables
- clock: injectable wall clock (seconds) with ``advance()``
- catalog_index: small place catalog (rooms, villas, common areas)
- interpreter / vision: deterministic fakes for the LLM collaborators
- dispatch_mock: dispatch service capturing outbound messages
- orchestrator: IntakeOrchestrator wired with all of the above
- replies: reply channel capturing every bot message
"""

from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from vicebot.infra.database import Base

import vicebot.domain.models  # noqa: F401

from vicebot.agents.intake.area_detector import AreaDetectorAgent
from vicebot.agents.intake.contracts import TurnInterpretation, VisionAnalysis
from vicebot.services.area_resolver import AreaResolver
from vicebot.services.dispatch_service import DestinationConfig, resolve_target_groups
from vicebot.services.incident_finalizer import IncidentFinalizer
from vicebot.services.intake_orchestrator import IntakeOrchestrator
from vicebot.services.media_store import MediaStore
from vicebot.services.place_catalog import PlaceCatalogIndex, entry_from_record
from vicebot.services.place_resolver import PlaceResolver
from vicebot.services.session_store import InMemorySessionStore


PLACE_RECORDS = [
    {"id": "hab-1311", "label": "Habitación 1311", "room_number": "1311", "building": "Torre Principal", "floor": "13"},
    {"id": "hab-1312", "label": "Habitación 1312", "room_number": "1312", "building": "Torre Principal", "floor": "13"},
    {"id": "hab-2204", "label": "Habitación 2204", "room_number": "2204", "building": "Torre Mar", "floor": "22"},
    {"id": "villa-6", "label": "Villa 6", "villa_number": "6", "building": "Villas"},
    {"id": "villa-12", "label": "Villa 12", "villa_number": "12", "building": "Villas"},
    {"id": "lobby", "label": "Lobby", "aliases": ["recepcion", "front desk"], "floor": "PB"},
    {"id": "alberca", "label": "Alberca Principal", "aliases": ["piscina principal"]},
    {"id": "terraza", "label": "Restaurante La Terraza", "aliases": ["la terraza"]},
    {"id": "gimnasio", "label": "Gimnasio", "aliases": ["gym"]},
    {"id": "spa", "label": "Spa"},
    {"id": "edificio-principal", "label": "Edificio Principal", "aliases": ["principal"]},
    {"id": "perla", "label": "Salón Perla", "active": False},
]

DESTINATIONS = DestinationConfig(
    areas={"man": "grp-man", "it": "grp-it", "ama": "grp-hskp", "seg": "grp-seg"},
    default_destination="ops-general",
)


# ---------------------------------------------------------------------------
# Database fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
async def db_engine():
    """Fresh in-memory engine with all tables created."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db_session(session_factory):
    """Async SQLite in-memory session, rolled back after the test."""
    async with session_factory() as session:
        yield session
        await session.rollback()


# ---------------------------------------------------------------------------
# Clock
# ---------------------------------------------------------------------------

class FakeClock:
    def __init__(self, start: float = 1_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------

@pytest.fixture
def catalog_index():
    entries = [e for e in (entry_from_record(r) for r in PLACE_RECORDS) if e is not None]
    return PlaceCatalogIndex(entries, source_path="memory")


@pytest.fixture
def place_resolver(catalog_index):
    return PlaceResolver(lambda: catalog_index)


@pytest.fixture
def area_resolver():
    return AreaResolver(AreaDetectorAgent(use_ai=False))


# ---------------------------------------------------------------------------
# LLM fakes
# ---------------------------------------------------------------------------

class FakeInterpreter:
    """Returns queued interpretations in order; empty ones once drained."""

    def __init__(self):
        self.queue: list[TurnInterpretation] = []
        self.calls: list[tuple] = []

    def push(self, *interpretations: TurnInterpretation) -> None:
        self.queue.extend(interpretations)

    async def interpret(self, text, focus_mode, draft):
        self.calls.append((text, focus_mode))
        if self.queue:
            return self.queue.pop(0)
        return TurnInterpretation()


class FakeVision:
    def __init__(self):
        self.result = VisionAnalysis()
        self.calls: list[tuple] = []

    async def analyze(self, image_bytes, mimetype, context_text=None):
        self.calls.append((len(image_bytes), mimetype, context_text))
        return self.result


@pytest.fixture
def interpreter():
    return FakeInterpreter()


@pytest.fixture
def vision():
    return FakeVision()


# ---------------------------------------------------------------------------
# Dispatch / finalizer
# ---------------------------------------------------------------------------

@pytest.fixture
def dispatch_mock():
    """Dispatch double: real target resolution, captured deliveries.

    ``send_to_destinations`` records (message, destinations) tuples on
    ``.sent`` and reports every destination as delivered.
    """
    mock = MagicMock()
    mock.sent = []
    mock.resolve_target_groups.side_effect = lambda primary, areas: resolve_target_groups(
        primary, areas, DESTINATIONS,
    )

    async def _send(message, destinations, media=None):
        mock.sent.append((message, list(destinations)))
        return {dest: {"ok": True} for dest in destinations}

    mock.send_to_destinations = AsyncMock(side_effect=_send)
    return mock


@pytest.fixture
def store(clock):
    return InMemorySessionStore(ttl_seconds=900, history_limit=50, clock=clock)


@pytest.fixture
def finalizer(store, session_factory, dispatch_mock, tmp_path):
    return IncidentFinalizer(
        store=store,
        session_factory=session_factory,
        dispatch=dispatch_mock,
        media_store=MediaStore(str(tmp_path / "attachments")),
    )


@pytest.fixture
def orchestrator(store, place_resolver, area_resolver, interpreter, vision, finalizer):
    return IntakeOrchestrator(
        store=store,
        place_resolver=place_resolver,
        area_resolver=area_resolver,
        interpreter=interpreter,
        vision=vision,
        finalizer=finalizer,
        media_batch_window=8.0,
        place_prompt_cooldown=15.0,
        max_pending_media=10,
    )


# ---------------------------------------------------------------------------
# Reply channel
# ---------------------------------------------------------------------------

class ReplyCapture:
    def __init__(self):
        self.messages: list[str] = []

    async def __call__(self, text: str) -> None:
        self.messages.append(text)

    @property
    def last(self) -> str | None:
        return self.messages[-1] if self.messages else None

    def clear(self) -> None:
        self.messages.clear()


@pytest.fixture
def replies():
    return ReplyCapture()
