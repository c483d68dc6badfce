"""File processing — MIME policy, disk storage, thumbnails and media metadata."""

from __future__ import annotations

import asyncio
import json
import logging
import random
import subprocess
import time
import uuid
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Callable, Optional

from fastapi import UploadFile
from PIL import Image, UnidentifiedImageError

from site_manager.common.exceptions import BadRequestException
from site_manager.config import settings

logger = logging.getLogger(__name__)

CHUNK_SIZE = 1024 * 1024
THUMBNAIL_QUALITY = 80
PROBE_TIMEOUT_SECONDS = 15

SUPPORTED_TYPES: dict[str, frozenset[str]] = {
    "image": frozenset({
        "image/jpeg", "image/png", "image/gif", "image/webp",
        "image/svg+xml", "image/bmp", "image/tiff", "image/x-icon",
    }),
    "video": frozenset({
        "video/mp4", "video/quicktime", "video/x-msvideo", "video/x-matroska",
        "video/webm", "video/x-flv", "video/3gpp", "video/x-ms-wmv",
    }),
    "audio": frozenset({
        "audio/mpeg", "audio/wav", "audio/aac", "audio/ogg", "audio/flac",
        "audio/x-m4a", "audio/webm", "audio/3gpp", "audio/mp4",
    }),
    "document": frozenset({
        "application/pdf",
        "application/msword",
        "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
        "application/vnd.ms-excel",
        "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        "application/vnd.ms-powerpoint",
        "application/vnd.openxmlformats-officedocument.presentationml.presentation",
        "text/plain", "text/html", "text/css", "text/javascript",
        "application/json", "application/xml", "text/xml", "text/markdown",
    }),
    "archive": frozenset({
        "application/zip",
        "application/x-rar-compressed",
        "application/x-7z-compressed",
        "application/x-tar",
        "application/gzip",
    }),
    "code": frozenset({
        "text/javascript", "application/javascript", "text/typescript",
        "application/json", "text/html", "text/css", "text/xml",
        "application/xml", "text/markdown", "text/x-python", "text/x-java",
        "text/x-c", "text/x-cpp", "text/x-csharp", "text/x-php", "text/x-ruby",
        "text/x-go", "text/x-rust", "text/x-swift", "text/x-kotlin",
    }),
}

# Category lookup order matters: shared text types resolve to "document"
_CATEGORY_ORDER = ("image", "video", "audio", "document", "archive", "code")

ProgressCallback = Callable[[int], None]


@dataclass
class FileValidationResult:
    is_valid: bool
    error: Optional[str] = None
    code: Optional[str] = None


@dataclass
class StoredFile:
    """An upload written to ``UPLOAD_DIR`` but not processed yet."""

    field_name: str
    original_name: str
    file_name: str
    mime_type: str
    size: int
    path: Path


@dataclass
class ProcessedFile:
    id: str
    original_name: str
    file_name: str
    mime_type: str
    size: int
    url: str
    path: str
    category: str
    thumbnail_url: Optional[str] = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_attachment(self) -> dict[str, Any]:
        """Descriptor stored in ``Message.attachments``."""
        data = asdict(self)
        data.pop("id")
        data.pop("path")
        return data


# ── Stateless helpers ───────────────────────────────────────────────

def get_file_category(mime_type: str) -> str:
    for category in _CATEGORY_ORDER:
        if mime_type in SUPPORTED_TYPES[category]:
            return category
    return "other"


def is_supported(mime_type: str) -> bool:
    return any(mime_type in types for types in SUPPORTED_TYPES.values())


def format_file_size(num_bytes: int) -> str:
    """Human readable size: ``0 Bytes``, ``1.5 KB``, ``12.34 MB``."""
    if num_bytes <= 0:
        return "0 Bytes"
    units = ["Bytes", "KB", "MB", "GB"]
    value = float(num_bytes)
    index = 0
    while value >= 1024 and index < len(units) - 1:
        value /= 1024
        index += 1
    return f"{round(value, 2):g} {units[index]}"


def storage_name(field_name: str, original_name: str) -> str:
    """``{field}-{ms timestamp}-{random}{ext}``."""
    suffix = Path(original_name or "").suffix
    return f"{field_name}-{int(time.time() * 1000)}-{random.randrange(1_000_000_000)}{suffix}"


# ── Service ─────────────────────────────────────────────────────────

class FileProcessingService:
    """Validate, store and post-process uploaded files.

    Limits default to the configured values; pass overrides for tests or
    one-off tooling.
    """

    def __init__(
        self,
        upload_dir: Optional[str | Path] = None,
        *,
        max_file_size: Optional[int] = None,
        max_files: Optional[int] = None,
        thumbnail_size: Optional[int] = None,
        ffprobe_path: Optional[str] = None,
    ) -> None:
        self.upload_dir = Path(upload_dir or settings.UPLOAD_DIR)
        self.thumbnails_dir = self.upload_dir / "thumbnails"
        self.max_file_size = max_file_size or settings.MAX_UPLOAD_SIZE_MB * 1024 * 1024
        self.max_files = max_files or settings.MAX_UPLOAD_FILES
        self.thumbnail_size = thumbnail_size or settings.THUMBNAIL_SIZE
        self.ffprobe_path = ffprobe_path or settings.FFPROBE_PATH

    def ensure_directories(self) -> None:
        self.thumbnails_dir.mkdir(parents=True, exist_ok=True)

    # ── Validation ──────────────────────────────────────────────────

    def validate_file(self, size: int, mime_type: str) -> FileValidationResult:
        if size > self.max_file_size:
            return FileValidationResult(
                False,
                f"File size exceeds limit of {self.max_file_size // (1024 * 1024)}MB",
                "FILE_TOO_LARGE",
            )
        if not is_supported(mime_type):
            return FileValidationResult(
                False,
                f"File type {mime_type} is not supported",
                "UNSUPPORTED_FILE_TYPE",
            )
        return FileValidationResult(True)

    def check_file_count(self, count: int) -> None:
        if count > self.max_files:
            raise BadRequestException(
                f"Too many files (maximum {self.max_files})", code="TOO_MANY_FILES",
            )

    # ── Storage ─────────────────────────────────────────────────────

    async def save_upload(self, upload: UploadFile, field_name: str = "files") -> StoredFile:
        """Stream *upload* to disk, enforcing type and size limits."""
        mime_type = upload.content_type or "application/octet-stream"
        precheck = self.validate_file(0, mime_type)
        if not precheck.is_valid:
            raise BadRequestException(precheck.error, code=precheck.code)

        self.ensure_directories()
        file_name = storage_name(field_name, upload.filename or "")
        path = self.upload_dir / file_name
        size = 0
        with path.open("wb") as fh:
            while chunk := await upload.read(CHUNK_SIZE):
                size += len(chunk)
                if size > self.max_file_size:
                    fh.close()
                    path.unlink(missing_ok=True)
                    result = self.validate_file(size, mime_type)
                    raise BadRequestException(result.error, code=result.code)
                fh.write(chunk)

        return StoredFile(
            field_name=field_name,
            original_name=upload.filename or file_name,
            file_name=file_name,
            mime_type=mime_type,
            size=size,
            path=path,
        )

    def delete_file(self, file_name: str) -> bool:
        """Remove a stored file and its thumbnail; returns True if anything was removed."""
        removed = False
        for path in (
            self.upload_dir / file_name,
            self.thumbnails_dir / f"thumb_{file_name}",
            self.thumbnails_dir / f"thumb_{Path(file_name).stem}.jpg",
        ):
            try:
                path.unlink()
                removed = True
            except FileNotFoundError:
                continue
            except OSError:
                logger.exception("Failed to delete %s", path)
        return removed

    # ── Processing ──────────────────────────────────────────────────

    async def process_file(
        self,
        stored: StoredFile,
        on_progress: Optional[ProgressCallback] = None,
    ) -> ProcessedFile:
        def report(value: int) -> None:
            if on_progress is not None:
                on_progress(value)

        report(10)
        if not stored.path.exists():
            raise FileNotFoundError(f"File not found on disk: {stored.path}")
        report(30)

        category = get_file_category(stored.mime_type)
        processed = ProcessedFile(
            id=uuid.uuid4().hex,
            original_name=stored.original_name,
            file_name=stored.file_name,
            mime_type=stored.mime_type,
            size=stored.path.stat().st_size,
            url=f"/uploads/{stored.file_name}",
            path=str(stored.path),
            category=category,
        )
        report(50)

        if category == "image":
            await asyncio.to_thread(self._process_image, processed)
        elif category in ("video", "audio"):
            processed.metadata.update(await self.probe_media(stored.path))
        elif stored.mime_type == "application/pdf":
            processed.metadata["format"] = "pdf"

        report(100)
        return processed

    def _process_image(self, processed: ProcessedFile) -> None:
        if processed.mime_type == "image/svg+xml":
            return
        thumb_name = f"thumb_{processed.file_name}"
        try:
            with Image.open(processed.path) as img:
                processed.metadata.update({
                    "width": img.width,
                    "height": img.height,
                    "format": (img.format or "").lower() or None,
                })
                thumb = img.copy()
                # thumbnail() only ever shrinks, never enlarges
                thumb.thumbnail((self.thumbnail_size, self.thumbnail_size), Image.Resampling.LANCZOS)
                if thumb.mode not in ("RGB", "L"):
                    thumb = thumb.convert("RGB")
                self.ensure_directories()
                thumb.save(self.thumbnails_dir / thumb_name, format="JPEG", quality=THUMBNAIL_QUALITY)
        except (UnidentifiedImageError, OSError) as exc:
            logger.warning("Thumbnail generation failed for %s: %s", processed.file_name, exc)
            return
        processed.thumbnail_url = f"/uploads/thumbnails/{thumb_name}"

    async def probe_media(self, path: Path) -> dict[str, Any]:
        """Duration, bitrate, codec and stream details via ``ffprobe``; empty when unavailable."""
        return await asyncio.to_thread(self._run_ffprobe, path)

    def _run_ffprobe(self, path: Path) -> dict[str, Any]:
        try:
            result = subprocess.run(
                [
                    self.ffprobe_path, "-v", "quiet", "-print_format", "json",
                    "-show_format", "-show_streams", str(path),
                ],
                capture_output=True, text=True, timeout=PROBE_TIMEOUT_SECONDS,
            )
        except FileNotFoundError:
            logger.info("ffprobe not installed; skipping metadata for %s", path.name)
            return {}
        except subprocess.TimeoutExpired:
            logger.warning("ffprobe timed out on %s", path.name)
            return {}

        if result.returncode != 0:
            logger.warning("ffprobe failed on %s: %s", path.name, result.stderr[:200])
            return {}
        try:
            info = json.loads(result.stdout or "{}")
        except json.JSONDecodeError:
            logger.warning("ffprobe returned invalid JSON for %s", path.name)
            return {}
        return summarize_probe(info)


def summarize_probe(info: dict[str, Any]) -> dict[str, Any]:
    fmt = info.get("format", {})
    streams = info.get("streams", [])
    video = next((s for s in streams if s.get("codec_type") == "video"), {})
    audio = next((s for s in streams if s.get("codec_type") == "audio"), {})

    def number(value: Any) -> Optional[float]:
        try:
            return float(value)
        except (TypeError, ValueError):
            return None

    summary = {
        "duration": number(fmt.get("duration")),
        "bitrate": number(fmt.get("bit_rate")),
        "format": fmt.get("format_name"),
        "width": video.get("width"),
        "height": video.get("height"),
        "codec": video.get("codec_name") or audio.get("codec_name"),
        "sample_rate": number(audio.get("sample_rate")),
        "channels": audio.get("channels"),
    }
    return {k: v for k, v in summary.items() if v is not None}
