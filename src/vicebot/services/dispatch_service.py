"""Dispatch of confirmed incidents to area destinations.

Destinations come from a JSON file::

    {"defaultDestination": "ops-general", "areas": {"man": "grp-man", "it": "grp-it"}}

Messages are delivered through an outbound webhook (one POST per
destination, plus one per additional photo) using httpx, with a short
retry on 5xx responses and timeouts.
"""

import asyncio
import base64
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path

import httpx

from vicebot.app.config import get_settings
from vicebot.domain.areas import area_label, area_list_label, normalize_area_code

logger = logging.getLogger(__name__)

MAX_ATTEMPTS = 3


@dataclass
class DestinationConfig:
    areas: dict[str, str] = field(default_factory=dict)
    default_destination: str | None = None


@dataclass
class TargetGroups:
    primary: str | None = None
    secondary: list[str] = field(default_factory=list)
    unknown_areas: list[str] = field(default_factory=list)

    def all_destinations(self) -> list[str]:
        return ([self.primary] if self.primary else []) + list(self.secondary)

    def to_dict(self) -> dict:
        return {"primary": self.primary, "secondary": list(self.secondary), "unknown_areas": list(self.unknown_areas)}


def load_destinations(path: str) -> DestinationConfig:
    """Read the destinations file; a missing file yields an empty config."""
    p = Path(path)
    if not p.exists():
        logger.warning("Destinations file not found: %s", path)
        return DestinationConfig()
    raw = json.loads(p.read_text(encoding="utf-8"))
    areas = {}
    for key, dest in (raw.get("areas") or {}).items():
        code = normalize_area_code(key)
        if code and dest:
            areas[code] = str(dest)
    return DestinationConfig(areas=areas, default_destination=raw.get("defaultDestination") or None)


def resolve_target_groups(primary_area: str | None, areas, config: DestinationConfig) -> TargetGroups:
    """Primary destination, de-duplicated secondaries, and areas with no destination."""
    primary_key = normalize_area_code(primary_area)
    primary = config.areas.get(primary_key) if primary_key else None
    unknown: list[str] = []
    if primary_key and primary is None:
        unknown.append(primary_key)
    if primary is None:
        primary = config.default_destination

    secondary: list[str] = []
    for area in areas or []:
        key = normalize_area_code(area)
        if not key or key == primary_key:
            continue
        dest = config.areas.get(key)
        if dest is None:
            if key not in unknown:
                unknown.append(key)
        elif dest != primary and dest not in secondary:
            secondary.append(dest)

    return TargetGroups(primary=primary, secondary=secondary, unknown_areas=unknown)


def format_incident_message(draft, folio: str | None) -> str:
    """Summary posted to area destinations."""
    lines = [
        f"🆔 *{folio or 'SIN-FOLIO'}*",
        f"• *Lugar:* {draft.lugar or '—'}",
        f"• *Área:* {area_label(draft.area_destino)}",
        f"• *Descripción:* {draft.descripcion or draft.descripcion_original or '—'}",
    ]
    cc = [a for a in draft.areas if a != draft.area_destino]
    if cc:
        lines.append(f"• *CC:* {area_list_label(cc)}")
    if draft.details:
        lines.append("• *Detalles:*")
        lines.extend(f"   - {d}" for d in draft.details)
    if draft.interpretacion:
        lines.append(f"• *Foto:* {draft.interpretacion}")
    return "\n".join(lines)


class DispatchService:
    """Send formatted incidents to destinations via the outbound webhook."""

    def __init__(self, config: DestinationConfig | None = None):
        self.settings = get_settings()
        self.config = config or DestinationConfig()

    @property
    def _configured(self) -> bool:
        return bool(self.settings.dispatch_webhook_url)

    def resolve_target_groups(self, primary_area: str | None, areas) -> TargetGroups:
        return resolve_target_groups(primary_area, areas, self.config)

    async def send_to_destinations(self, message: str, destinations: list[str], media: list | None = None) -> dict:
        """Deliver ``message`` and every media item to each destination.

        The first item travels with the message as its caption; the rest
        follow as separate posts. Returns a mapping destination -> result
        dict whose ``ok`` flag reflects the message post; follow-up photos
        that fail are counted under ``media_failed``.
        """
        items = list(media or [])
        outcomes = {}
        for dest in destinations:
            payload = {"destination": dest, "message": message}
            if items:
                payload["media"] = _media_payload(items[0])
            outcome = await self._post(dest, payload)

            if outcome["ok"] and len(items) > 1:
                failed = 0
                for item in items[1:]:
                    extra = await self._post(dest, {"destination": dest, "media": _media_payload(item)})
                    if not extra["ok"]:
                        failed += 1
                if failed:
                    logger.warning("%d of %d photos not delivered to %s", failed, len(items), dest)
                    outcome["media_failed"] = failed
            outcomes[dest] = outcome
        return outcomes

    async def _post(self, destination: str, payload: dict) -> dict:
        if not self._configured:
            logger.warning("Dispatch webhook not configured; message not sent to %s", destination)
            return {"ok": False, "error": "dispatch_not_configured"}

        headers = {"Accept": "application/json"}
        if self.settings.dispatch_webhook_token:
            headers["Authorization"] = f"Bearer {self.settings.dispatch_webhook_token}"

        for attempt in range(MAX_ATTEMPTS):
            try:
                async with httpx.AsyncClient(timeout=20.0) as client:
                    resp = await client.post(self.settings.dispatch_webhook_url, json=payload, headers=headers)

                if 200 <= resp.status_code < 300:
                    logger.info("Dispatched to %s (status=%d)", destination, resp.status_code)
                    return {"ok": True, "status": resp.status_code}

                if resp.status_code >= 500 and attempt < MAX_ATTEMPTS - 1:
                    wait = 2 * (attempt + 1)
                    logger.warning(
                        "Dispatch %d for %s; retrying in %ds (attempt %d/%d)",
                        resp.status_code, destination, wait, attempt + 1, MAX_ATTEMPTS,
                    )
                    await asyncio.sleep(wait)
                    continue

                logger.error("Dispatch to %s failed (%d): %s", destination, resp.status_code, resp.text[:300])
                return {"ok": False, "error": f"http_{resp.status_code}", "status": resp.status_code}

            except httpx.TimeoutException:
                if attempt < MAX_ATTEMPTS - 1:
                    logger.warning("Dispatch to %s timed out; retrying", destination)
                    continue
                logger.error("Dispatch to %s timed out", destination)
                return {"ok": False, "error": "timeout"}
            except httpx.HTTPError as exc:
                logger.error("Dispatch httpx error for %s: %s", destination, exc)
                return {"ok": False, "error": str(exc)}

        return {"ok": False, "error": "max_retries"}


def _media_payload(media) -> dict:
    return {
        "mimetype": media.mimetype,
        "filename": media.filename,
        "data_base64": base64.b64encode(media.data).decode(),
    }
