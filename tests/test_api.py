"""HTTP tests for the intake and incident routes.

Drives a FastAPI app carrying the real routers over ``httpx.ASGITransport``;
the orchestrator is the deterministic one from conftest.
"""

import asyncio
import base64

import httpx
import pytest
from fastapi import FastAPI

from vicebot.app.routes.intake import ConversationLocks, incidents_router, router
from vicebot.infra.database import get_db

CONV = "wa-5215550001111"


@pytest.fixture
def app(orchestrator, session_factory):
    app = FastAPI()
    app.include_router(router)
    app.include_router(incidents_router)
    app.state.orchestrator = orchestrator
    app.state.turn_locks = ConversationLocks()

    async def _get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = _get_db
    return app


@pytest.fixture
async def client(app):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


async def _turn(client, text="", images=None):
    return await client.post("/api/intake/turns", json={
        "conversation_id": CONV,
        "text": text,
        "images": images or [],
    })


class TestTurns:
    async def test_full_conversation(self, client):
        resp = await _turn(client, "1311 no prende el aire")
        assert resp.status_code == 200
        body = resp.json()
        assert body["mode"] == "confirm_area_suggestion"
        assert body["replies"]

        await _turn(client, "sí")
        resp = await _turn(client, "sí")
        body = resp.json()
        assert body["mode"] is None
        assert body["folio"].startswith("MAN-")

        resp = await client.get(f"/api/incidents/{body['folio'].lower()}")
        assert resp.status_code == 200
        incident = resp.json()
        assert incident["lugar"] == "Habitación 1311"
        assert incident["area_destino"] == "man"
        assert incident["status"] == "open"

    async def test_image_turn(self, client, vision):
        data = base64.b64encode(b"\xff\xd8jpeg").decode()
        resp = await _turn(client, images=[{"mimetype": "image/jpeg", "data_base64": data}])

        assert resp.status_code == 200
        assert len(vision.calls) == 1
        session = (await client.get(f"/api/intake/sessions/{CONV}")).json()
        assert session["pending_media"] == 1

    async def test_empty_turn_rejected(self, client):
        resp = await _turn(client, "   ")
        assert resp.status_code == 400

    async def test_bad_base64_rejected(self, client):
        resp = await _turn(client, "foto", images=[{"data_base64": "***not-base64***"}])
        assert resp.status_code == 400
        assert "images[0]" in resp.json()["detail"]

    async def test_missing_conversation_id(self, client):
        resp = await client.post("/api/intake/turns", json={"text": "hola"})
        assert resp.status_code == 422


class TestSessions:
    async def test_snapshot_and_reset(self, client, app):
        await _turn(client, "no sirve la regadera")

        resp = await client.get(f"/api/intake/sessions/{CONV}")
        assert resp.status_code == 200
        snapshot = resp.json()
        assert snapshot["mode"] == "ask_place"
        assert snapshot["draft"]["descripcion"] == "No sirve la regadera"

        resp = await client.delete(f"/api/intake/sessions/{CONV}")
        assert resp.json() == {"ok": True, "cleared": True}
        assert CONV not in app.state.turn_locks
        assert (await client.get(f"/api/intake/sessions/{CONV}")).status_code == 404

    async def test_reset_unknown_session(self, client):
        resp = await client.delete("/api/intake/sessions/nobody")
        assert resp.json() == {"ok": True, "cleared": False}

    async def test_reset_waits_for_running_turn(self, client, app, orchestrator):
        started, release = asyncio.Event(), asyncio.Event()
        process_turn = orchestrator.process_turn

        async def _slow_turn(*args, **kwargs):
            started.set()
            await release.wait()
            return await process_turn(*args, **kwargs)

        orchestrator.process_turn = _slow_turn
        turn = asyncio.create_task(_turn(client, "no sirve la regadera"))
        await started.wait()
        reset = asyncio.create_task(client.delete(f"/api/intake/sessions/{CONV}"))
        await asyncio.sleep(0.05)

        assert not reset.done()
        release.set()
        assert (await turn).status_code == 200
        assert (await reset).json() == {"ok": True, "cleared": True}
        assert len(app.state.turn_locks) == 0


class TestConversationLocks:
    async def test_turns_serialize_and_locks_are_dropped(self):
        locks = ConversationLocks()
        order = []

        async def _hold(name, delay):
            async with locks.hold("c1"):
                order.append(f"{name}-start")
                await asyncio.sleep(delay)
                order.append(f"{name}-end")

        await asyncio.gather(_hold("a", 0.02), _hold("b", 0))

        assert order == ["a-start", "a-end", "b-start", "b-end"]
        assert "c1" not in locks
        assert len(locks) == 0

    async def test_lock_dropped_after_error(self):
        locks = ConversationLocks()
        with pytest.raises(RuntimeError):
            async with locks.hold("c1"):
                raise RuntimeError("turn failed")
        assert len(locks) == 0

    async def test_other_conversations_not_blocked(self):
        locks = ConversationLocks()
        async with locks.hold("c1"):
            async with locks.hold("c2"):
                assert len(locks) == 2


class TestIncidents:
    async def test_unknown_folio(self, client):
        resp = await client.get("/api/incidents/MAN-99999")
        assert resp.status_code == 404
