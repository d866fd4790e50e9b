"""Load image files from disk into :class:`ImageAttachment` objects."""

from __future__ import annotations

import mimetypes
from pathlib import Path
from typing import Iterable, List

from .models import ImageAttachment

__all__ = ["ImageInputError", "load_images", "guess_image_type"]

_EXTRA_TYPES = {
    ".webp": "image/webp",
    ".heic": "image/heic",
}


class ImageInputError(RuntimeError):
    """Raised when image paths cannot be used for a quiz."""


def guess_image_type(path: Path) -> str | None:
    mime, _ = mimetypes.guess_type(path.name)
    if mime is None:
        mime = _EXTRA_TYPES.get(path.suffix.lower())
    if mime is None or not mime.startswith("image/"):
        return None
    return mime


def load_images(paths: Iterable[Path], *, max_images: int) -> List[ImageAttachment]:
    """Read each path and return attachments in the given order."""

    resolved = [Path(item).expanduser() for item in paths]
    if not resolved:
        raise ImageInputError("Provide at least one image.")
    if len(resolved) > max_images:
        raise ImageInputError(
            f"Too many images: {len(resolved)} given, at most {max_images} allowed."
        )

    attachments: List[ImageAttachment] = []
    for path in resolved:
        if not path.is_file():
            raise ImageInputError(f"Image not found: {path}")
        mime = guess_image_type(path)
        if mime is None:
            raise ImageInputError(f"Not an image file: {path}")
        try:
            data = path.read_bytes()
        except OSError as exc:
            raise ImageInputError(f"Could not read {path}: {exc}") from exc
        if not data:
            raise ImageInputError(f"Image is empty: {path}")
        attachments.append(ImageAttachment(name=path.name, data=data, mime_type=mime))
    return attachments
