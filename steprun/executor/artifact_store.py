"""Artifact store — per-step screenshots, thumbnails and guarded reads."""

from __future__ import annotations

import base64
import logging
from pathlib import Path
from typing import Literal

from PIL import Image
from playwright.async_api import Page

from steprun.errors import ArtifactAccessError

logger = logging.getLogger(__name__)

Variant = Literal["thumbnail", "full"]

_MIME_TYPES = {
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".webp": "image/webp",
}


class ArtifactStore:
    """Owns the screenshot files under ``root``.

    Layout: ``<root>/<run_id>/<order>-<step_id>.png`` for full images and
    ``<root>/<run_id>/thumbs/<order>-<step_id>.jpg`` for thumbnails.
    """

    def __init__(self, root: Path, thumbnail_size: tuple[int, int] = (320, 200)):
        self.root = root
        self.root.mkdir(parents=True, exist_ok=True)
        self.thumbnail_size = thumbnail_size

    def screenshot_path(self, run_id: str, step_id: str, step_order: int) -> Path:
        return self.root / run_id / f"{step_order:03d}-{step_id}.png"

    async def capture(self, page: Page, run_id: str, step_id: str, step_order: int) -> str | None:
        """Write a full-resolution screenshot; None when capture fails."""
        path = self.screenshot_path(run_id, step_id, step_order)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            await page.screenshot(path=str(path), full_page=True)
            return str(path)
        except Exception as e:
            logger.warning("Screenshot failed for step %s of run %s: %s", step_id, run_id, e)
            return None

    def thumbnail(self, screenshot_path: str) -> str:
        """Return the thumbnail path for a screenshot, generating it on first use.

        Raises ArtifactAccessError for paths outside the artifact root or when
        the image cannot be read.
        """
        source = self._contained(screenshot_path)
        target = source.parent / "thumbs" / f"{source.stem}.jpg"
        if target.exists() and target.stat().st_mtime >= source.stat().st_mtime:
            return str(target)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            with Image.open(source) as img:
                img = img.convert("RGB")
                img.thumbnail(self.thumbnail_size)
                img.save(target, format="JPEG", quality=80)
        except (OSError, ValueError) as e:
            raise ArtifactAccessError(f"Could not create thumbnail: {e}") from e
        logger.debug("Thumbnail written: %s", target)
        return str(target)

    def read(self, path: str, variant: Variant = "full") -> tuple[bytes, str]:
        """Read image bytes and MIME type; thumbnails fall back to the full image."""
        source = self._contained(path)
        if variant == "thumbnail":
            try:
                source = Path(self.thumbnail(str(source)))
            except ArtifactAccessError as e:
                logger.warning("Thumbnail unavailable for %s, serving full image: %s", path, e)
        try:
            data = source.read_bytes()
        except OSError as e:
            raise ArtifactAccessError(f"Screenshot not readable: {e}") from e
        return data, _MIME_TYPES.get(source.suffix.lower(), "image/png")

    def read_as_data_url(self, path: str, variant: Variant = "full") -> str:
        data, mime = self.read(path, variant)
        return f"data:{mime};base64,{base64.b64encode(data).decode('ascii')}"

    def _contained(self, path: str) -> Path:
        """Resolve ``path`` and refuse anything outside the artifact root."""
        cleaned = (path or "").strip()
        if not cleaned:
            raise ArtifactAccessError("Screenshot path is required.")
        root = self.root.resolve()
        resolved = Path(cleaned).resolve()
        if resolved == root or not resolved.is_relative_to(root):
            raise ArtifactAccessError("Screenshot path is outside artifacts directory.")
        if not resolved.is_file():
            raise ArtifactAccessError("Screenshot not found.")
        return resolved
