"""Durable storage for images attached to an incident."""

import asyncio
import logging
import mimetypes
import re
from pathlib import Path

logger = logging.getLogger(__name__)

_SAFE_NAME_RE = re.compile(r"[^A-Za-z0-9._-]+")


def _extension(mimetype: str | None) -> str:
    ext = mimetypes.guess_extension(mimetype or "") or ".bin"
    return ".jpg" if ext == ".jpe" else ext


class MediaStore:
    def __init__(self, base_dir: str):
        self.base_dir = Path(base_dir)

    def _write(self, path: Path, data: bytes) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)

    async def save_all(self, folio: str, media: list) -> list[dict]:
        """Write each pending media item under ``<base_dir>/<folio>/``.

        Returns attachment metadata for every file written; items that fail
        to write are logged and skipped.
        """
        folder = self.base_dir / _SAFE_NAME_RE.sub("_", folio)
        metas = []
        for i, item in enumerate(media, start=1):
            filename = f"{folio}_{i:02d}{_extension(item.mimetype)}"
            path = folder / filename
            try:
                await asyncio.to_thread(self._write, path, item.data)
            except OSError as exc:
                logger.error("Failed to store media %s: %s", path, exc)
                continue
            metas.append({
                "filename": filename,
                "mimetype": item.mimetype,
                "path": str(path),
                "size": len(item.data),
            })
        logger.info("Stored %d/%d media files for %s", len(metas), len(media), folio)
        return metas
