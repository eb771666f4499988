from __future__ import annotations

import traceback
import uuid
from dataclasses import dataclass
from pathlib import Path, PurePosixPath

from app.core.config import Settings
from app.core.logging import AppLogger, get_logger


ALLOWED_IMAGE_MIME_TYPES = frozenset({"image/jpeg", "image/jpg", "image/png", "image/gif", "image/webp"})
MAX_MENU_IMAGE_BYTES = 5 * 1024 * 1024

# Stored paths live under this public prefix no matter where UPLOAD_PATH points on disk.
PUBLIC_UPLOAD_PREFIX = "uploads"
MENU_ITEMS_FOLDER = "menu-items"


class UploadRejected(ValueError):
    pass


@dataclass(frozen=True)
class IncomingImage:
    content: bytes
    content_type: str | None
    filename: str
    size: int | None = None

    @property
    def byte_size(self) -> int:
        return self.size if self.size is not None else len(self.content)


class MenuImageStorage:
    """
    Menu item images on local disk under `<UPLOAD_PATH>/menu-items`.

    Construction creates the directories; a failure there is left to propagate
    so the application refuses to start without a usable upload root.
    """

    def __init__(self, settings: Settings, logger: AppLogger | None = None) -> None:
        self.root = Path(settings.upload_path)
        self.menu_items_dir = self.root / MENU_ITEMS_FOLDER
        self.base_url = settings.base_url.rstrip("/")
        self.logger = logger or get_logger(__name__)

        self.root.mkdir(parents=True, exist_ok=True)
        self.menu_items_dir.mkdir(parents=True, exist_ok=True)

    def store_menu_image(self, file: IncomingImage | None) -> str:
        if file is None:
            raise UploadRejected("No file provided")

        if file.content_type not in ALLOWED_IMAGE_MIME_TYPES:
            raise UploadRejected("Invalid file type. Only JPEG, PNG, GIF, and WebP images are allowed.")

        if file.byte_size > MAX_MENU_IMAGE_BYTES:
            raise UploadRejected("File size too large. Maximum size is 5MB.")

        suffix = PurePosixPath(file.filename or "").suffix
        name = f"{uuid.uuid4()}{suffix}"
        abs_path = self.menu_items_dir / name

        try:
            abs_path.write_bytes(file.content)
        except (OSError, ValueError) as e:
            self.logger.error(
                "Failed to save image",
                trace=traceback.format_exc(),
                context=type(self).__name__,
                path=str(abs_path),
            )
            raise UploadRejected("Failed to save file") from e

        return f"{PUBLIC_UPLOAD_PREFIX}/{MENU_ITEMS_FOLDER}/{name}"

    def resolve(self, image_path: str) -> Path:
        """
        Map a stored path to its file.

        `uploads/...` paths are resolved against the configured upload root;
        anything else is taken relative to the working directory.
        """
        rel = PurePosixPath(image_path.lstrip("/"))
        if rel.parts and rel.parts[0] == PUBLIC_UPLOAD_PREFIX:
            return self.root.joinpath(*rel.parts[1:])
        return Path.cwd().joinpath(*rel.parts)

    def delete_menu_image(self, image_path: str | None) -> None:
        if not image_path:
            return

        try:
            abs_path = self.resolve(image_path).resolve()
            if not abs_path.is_relative_to(self.root.resolve()):
                self.logger.warn(
                    "Refusing to delete image outside the upload root",
                    context=type(self).__name__,
                    image_path=image_path,
                )
                return
            if abs_path.is_file():
                abs_path.unlink()
        except Exception:
            self.logger.error(
                "Failed to delete image",
                trace=traceback.format_exc(),
                context=type(self).__name__,
                image_path=image_path,
            )

    def image_url(self, image_path: str | None) -> str | None:
        if not image_path:
            return None
        clean = image_path[1:] if image_path.startswith("/") else image_path
        return f"{self.base_url}/{clean}"
