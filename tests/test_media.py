"""Media pipeline tests — validation, storage, thumbnails, probing, retry."""

from __future__ import annotations

import io
import json
import subprocess
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from PIL import Image
from starlette.datastructures import Headers, UploadFile

from site_manager.common.exceptions import BadRequestException
from site_manager.media.processing import (
    FileProcessingService,
    StoredFile,
    format_file_size,
    get_file_category,
    is_supported,
    storage_name,
    summarize_probe,
)
from site_manager.media.retry import (
    RetryOptions,
    UploadRetryService,
    is_retryable_error,
)


@pytest.fixture
def processor(tmp_path):
    return FileProcessingService(
        tmp_path,
        max_file_size=1024 * 1024,
        max_files=3,
        thumbnail_size=100,
        ffprobe_path="/nonexistent/ffprobe",
    )


def _stored(processor, name: str, mime: str, payload: bytes) -> StoredFile:
    processor.ensure_directories()
    file_name = storage_name("files", name)
    path = processor.upload_dir / file_name
    path.write_bytes(payload)
    return StoredFile("files", name, file_name, mime, len(payload), path)


def _png(size=(300, 150), mode="RGB") -> bytes:
    buf = io.BytesIO()
    Image.new(mode, size).save(buf, format="PNG")
    return buf.getvalue()


def _upload(name: str, mime: str, payload: bytes) -> UploadFile:
    return UploadFile(
        file=io.BytesIO(payload),
        filename=name,
        headers=Headers({"content-type": mime}),
    )


# ── Helpers ─────────────────────────────────────────────────────────


async def test_format_file_size():
    assert format_file_size(0) == "0 Bytes"
    assert format_file_size(512) == "512 Bytes"
    assert format_file_size(1536) == "1.5 KB"
    assert format_file_size(5 * 1024 * 1024) == "5 MB"


async def test_get_file_category():
    assert get_file_category("image/png") == "image"
    assert get_file_category("video/mp4") == "video"
    assert get_file_category("audio/mpeg") == "audio"
    # text/html is listed under both document and code
    assert get_file_category("text/html") == "document"
    assert get_file_category("application/zip") == "archive"
    assert get_file_category("text/x-python") == "code"
    assert get_file_category("application/x-msdownload") == "other"


async def test_is_supported():
    assert is_supported("application/pdf")
    assert not is_supported("application/octet-stream")


async def test_storage_name_keeps_extension():
    name = storage_name("files", "Plan masse.PDF")
    field, millis, rest = name.split("-", 2)
    assert field == "files"
    assert millis.isdigit()
    assert rest.endswith(".PDF")


async def test_summarize_probe():
    info = {
        "format": {"duration": "12.5", "bit_rate": "128000", "format_name": "mov,mp4"},
        "streams": [
            {"codec_type": "video", "codec_name": "h264", "width": 1920, "height": 1080},
            {"codec_type": "audio", "codec_name": "aac", "sample_rate": "44100", "channels": 2},
        ],
    }
    assert summarize_probe(info) == {
        "duration": 12.5,
        "bitrate": 128000.0,
        "format": "mov,mp4",
        "width": 1920,
        "height": 1080,
        "codec": "h264",
        "sample_rate": 44100.0,
        "channels": 2,
    }


async def test_summarize_probe_drops_missing_fields():
    info = {"format": {"duration": "N/A"}, "streams": [{"codec_type": "audio", "codec_name": "mp3"}]}
    assert summarize_probe(info) == {"codec": "mp3"}


# ── Validation / storage ────────────────────────────────────────────


async def test_validate_file(processor):
    assert processor.validate_file(10, "image/jpeg").is_valid

    too_big = processor.validate_file(2 * 1024 * 1024, "image/jpeg")
    assert not too_big.is_valid
    assert too_big.code == "FILE_TOO_LARGE"
    assert "1MB" in too_big.error

    unsupported = processor.validate_file(10, "application/x-sh")
    assert unsupported.code == "UNSUPPORTED_FILE_TYPE"


async def test_check_file_count(processor):
    processor.check_file_count(3)
    with pytest.raises(BadRequestException) as exc_info:
        processor.check_file_count(4)
    assert exc_info.value.code == "TOO_MANY_FILES"


async def test_save_upload_writes_file(processor):
    stored = await processor.save_upload(_upload("devis.pdf", "application/pdf", b"%PDF-1.7"))
    assert stored.original_name == "devis.pdf"
    assert stored.file_name.startswith("files-")
    assert stored.size == 8
    assert stored.path.read_bytes() == b"%PDF-1.7"


async def test_save_upload_rejects_oversized_stream(processor):
    with pytest.raises(BadRequestException) as exc_info:
        await processor.save_upload(_upload("big.txt", "text/plain", b"x" * (2 * 1024 * 1024)))
    assert exc_info.value.code == "FILE_TOO_LARGE"
    assert [p for p in processor.upload_dir.iterdir() if p.is_file()] == []


async def test_delete_file_removes_thumbnail(processor):
    stored = _stored(processor, "photo.png", "image/png", _png())
    await processor.process_file(stored)
    assert (processor.thumbnails_dir / f"thumb_{stored.file_name}").exists()

    assert processor.delete_file(stored.file_name) is True
    assert not stored.path.exists()
    assert not (processor.thumbnails_dir / f"thumb_{stored.file_name}").exists()
    assert processor.delete_file(stored.file_name) is False


# ── Processing ──────────────────────────────────────────────────────


async def test_process_image_builds_thumbnail(processor):
    stored = _stored(processor, "photo.png", "image/png", _png((300, 150), "RGBA"))
    progress: list[int] = []

    processed = await processor.process_file(stored, progress.append)

    assert progress == [10, 30, 50, 100]
    assert processed.category == "image"
    assert processed.metadata == {"width": 300, "height": 150, "format": "png"}
    assert processed.thumbnail_url == f"/uploads/thumbnails/thumb_{stored.file_name}"
    with Image.open(processor.thumbnails_dir / f"thumb_{stored.file_name}") as thumb:
        assert thumb.size == (100, 50)
        assert thumb.format == "JPEG"


async def test_process_svg_skips_thumbnail(processor):
    stored = _stored(processor, "logo.svg", "image/svg+xml", b"<svg xmlns='http://www.w3.org/2000/svg'/>")
    processed = await processor.process_file(stored)
    assert processed.thumbnail_url is None
    assert processed.metadata == {}


async def test_process_corrupt_image_has_no_thumbnail(processor):
    stored = _stored(processor, "broken.jpg", "image/jpeg", b"not really a jpeg")
    processed = await processor.process_file(stored)
    assert processed.thumbnail_url is None


async def test_process_pdf(processor):
    stored = _stored(processor, "plan.pdf", "application/pdf", b"%PDF-1.4")
    processed = await processor.process_file(stored)
    assert processed.category == "document"
    assert processed.metadata == {"format": "pdf"}
    attachment = processed.to_attachment()
    assert "id" not in attachment and "path" not in attachment
    assert attachment["url"] == f"/uploads/{stored.file_name}"


async def test_process_missing_file_raises(processor):
    stored = _stored(processor, "gone.pdf", "application/pdf", b"%PDF")
    stored.path.unlink()
    with pytest.raises(FileNotFoundError):
        await processor.process_file(stored)


async def test_process_video_without_ffprobe(processor):
    stored = _stored(processor, "visite.mp4", "video/mp4", b"\x00\x00\x00\x18ftypmp42")
    processed = await processor.process_file(stored)
    assert processed.category == "video"
    assert processed.metadata == {}


async def test_probe_media_parses_ffprobe_output(processor, tmp_path):
    output = json.dumps({
        "format": {"duration": "3.0", "format_name": "mp3"},
        "streams": [{"codec_type": "audio", "codec_name": "mp3", "channels": 1}],
    })
    completed = subprocess.CompletedProcess(args=[], returncode=0, stdout=output, stderr="")
    with patch("site_manager.media.processing.subprocess.run", return_value=completed) as run:
        meta = await processor.probe_media(tmp_path / "note.mp3")
    assert run.call_args.args[0][0] == "/nonexistent/ffprobe"
    assert meta == {"duration": 3.0, "format": "mp3", "codec": "mp3", "channels": 1}


async def test_probe_media_failures_return_empty(processor, tmp_path):
    failed = subprocess.CompletedProcess(args=[], returncode=1, stdout="", stderr="boom")
    garbage = subprocess.CompletedProcess(args=[], returncode=0, stdout="{not json", stderr="")
    for outcome in (failed, garbage, subprocess.TimeoutExpired("ffprobe", 15)):
        kwargs = {"side_effect": outcome} if isinstance(outcome, Exception) else {"return_value": outcome}
        with patch("site_manager.media.processing.subprocess.run", **kwargs):
            assert await processor.probe_media(tmp_path / "clip.mp4") == {}


# ── Retry ───────────────────────────────────────────────────────────


async def test_backoff_doubles_and_caps(processor):
    service = UploadRetryService(RetryOptions(max_retries=6), processor=processor)
    upload = AsyncMock(side_effect=OSError("disk full"))

    with patch("site_manager.media.retry.asyncio.sleep", new_callable=AsyncMock) as sleep:
        await service.retry_upload(upload)
        await service.retry_upload(upload, max_retries=3, base_delay=500, backoff_multiplier=3)

    assert [call.args[0] for call in sleep.await_args_list] == [1, 2, 4, 8, 10, 0.5, 1.5]


async def test_is_retryable_error():
    assert is_retryable_error(ConnectionResetError())
    assert is_retryable_error(TimeoutError())
    assert is_retryable_error(OSError("read ECONNRESET"))
    assert is_retryable_error(RuntimeError("network_error while uploading"))
    assert not is_retryable_error(ValueError("bad file"))


async def test_retry_upload_succeeds_after_failures(processor):
    service = UploadRetryService(processor=processor)
    upload = AsyncMock(side_effect=[ConnectionResetError("ECONNRESET"), TimeoutError(), "ok"])

    with patch("site_manager.media.retry.asyncio.sleep", new_callable=AsyncMock) as sleep:
        result = await service.retry_upload(upload)

    assert result.success is True
    assert result.data == "ok"
    assert result.attempts == 3
    assert [call.args[0] for call in sleep.await_args_list] == [1.0, 2.0]


async def test_retry_upload_exhausted(processor):
    service = UploadRetryService(RetryOptions(max_retries=2), processor=processor)
    upload = AsyncMock(side_effect=OSError("disk full"))

    with patch("site_manager.media.retry.asyncio.sleep", new_callable=AsyncMock) as sleep:
        result = await service.retry_upload(upload)

    assert result.success is False
    assert result.error == "disk full"
    assert result.attempts == 2
    assert upload.await_count == 2
    assert sleep.await_count == 1


async def test_retry_upload_overrides(processor):
    service = UploadRetryService(processor=processor)
    upload = AsyncMock(side_effect=OSError())
    with patch("site_manager.media.retry.asyncio.sleep", new_callable=AsyncMock):
        result = await service.retry_upload(upload, max_retries=1)
    assert result.attempts == 1
    assert result.error == "Upload failed after all retries"


async def test_retry_batch_upload_keeps_order(processor):
    service = UploadRetryService(RetryOptions(max_retries=1), processor=processor)
    uploads = [
        AsyncMock(return_value="a"),
        AsyncMock(side_effect=OSError("b failed")),
        AsyncMock(return_value="c"),
    ]
    results = await service.retry_batch_upload(uploads)
    assert [r.success for r in results] == [True, False, True]
    assert results[0].data == "a"
    assert results[1].error == "b failed"
    assert results[2].data == "c"


async def test_process_files_with_retry(processor):
    service = UploadRetryService(processor=processor)
    good = _stored(processor, "plan.pdf", "application/pdf", b"%PDF-1.4")
    bad = StoredFile("files", "run.sh", "files-1-1.sh", "application/x-sh", 10, processor.upload_dir / "x")
    image = _stored(processor, "photo.png", "image/png", _png())
    progress = MagicMock()

    results = await service.process_files_with_retry([good, bad, image], progress)

    assert [r.success for r in results] == [True, False, True]
    assert results[1].attempts == 0
    assert "not supported" in results[1].error
    assert results[2].data.thumbnail_url is not None
    # (index, file progress, overall progress); the last call finishes the batch
    assert progress.call_args_list[0].args == (0, 10, 3)
    assert progress.call_args_list[-1].args == (2, 100, 100)
