"""FastAPI application entry point for the Vicebot intake API."""

import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI

from vicebot.agents.intake.area_detector import AreaDetectorAgent
from vicebot.agents.intake.place_classifier import InformalPlaceClassifierAgent
from vicebot.agents.intake.turn_interpreter import TurnInterpreterAgent
from vicebot.agents.intake.vision_analyzer import VisionAnalyzerAgent
from vicebot.app.config import get_settings
from vicebot.infra.database import async_session, init_db
from vicebot.services.area_resolver import AreaResolver
from vicebot.services.dispatch_service import DispatchService, load_destinations
from vicebot.services.incident_finalizer import IncidentFinalizer
from vicebot.services.intake_orchestrator import IntakeOrchestrator
from vicebot.services.media_store import MediaStore
from vicebot.services.place_catalog import PlaceCatalogLoader
from vicebot.services.place_resolver import PlaceResolver
from vicebot.services.session_store import InMemorySessionStore

logger = logging.getLogger(__name__)


def build_orchestrator(settings, catalog: PlaceCatalogLoader, session_factory=async_session) -> IntakeOrchestrator:
    """Wire the intake pipeline with its production collaborators."""
    store = InMemorySessionStore(
        ttl_seconds=settings.session_ttl_seconds,
        history_limit=settings.history_limit,
    )
    dispatch = DispatchService(load_destinations(settings.destinations_path))
    finalizer = IncidentFinalizer(
        store=store,
        session_factory=session_factory,
        dispatch=dispatch,
        media_store=MediaStore(settings.attachments_dir),
    )
    return IntakeOrchestrator(
        store=store,
        place_resolver=PlaceResolver(lambda: catalog.index, classifier=InformalPlaceClassifierAgent()),
        area_resolver=AreaResolver(AreaDetectorAgent()),
        interpreter=TurnInterpreterAgent(),
        vision=VisionAnalyzerAgent(),
        finalizer=finalizer,
        media_batch_window=settings.media_batch_window_seconds,
        place_prompt_cooldown=settings.ask_place_cooldown_seconds,
        max_pending_media=settings.max_pending_media,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: initialize database, catalogs and the intake pipeline."""
    await init_db()

    settings = get_settings()
    catalog = PlaceCatalogLoader()
    try:
        catalog.load(settings.place_catalog_path)
    except Exception as e:
        # Without a catalog places still resolve from strong signals and verbatim answers
        logger.warning("Failed to load place catalog %s: %s", settings.place_catalog_path, e)

    app.state.catalog = catalog
    app.state.orchestrator = build_orchestrator(settings, catalog)
    app.state.turn_locks = ConversationLocks()
    yield


settings = get_settings()

# Configure logging
logging.basicConfig(
    level=logging.INFO if settings.debug else logging.WARNING,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    datefmt="%H:%M:%S",
)

app = FastAPI(
    title="Vicebot Intake API",
    lifespan=lifespan,
    debug=settings.debug,
)

# ---------------------------------------------------------------------------
# Route includes
# ---------------------------------------------------------------------------
from vicebot.app.routes.intake import ConversationLocks, incidents_router, router as intake_router

app.include_router(intake_router)
app.include_router(incidents_router)


@app.get("/health", tags=["health"])
async def health_check():
    """Return service health status."""
    catalog = getattr(app.state, "catalog", None)
    return {
        "status": "ok",
        "service": "vicebot-intake",
        "places": len(catalog.index) if catalog else 0,
    }


def run() -> None:
    """Run the application with uvicorn (used by project.scripts entry point)."""
    uvicorn.run(
        "vicebot.app.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug,
    )


if __name__ == "__main__":
    run()
