"""Multipart upload pipeline: validate, store, process, report progress.

Progress is pushed to the conversation room:

* ``upload:progress`` at 0 and after every file,
* ``upload:complete`` once all files are processed,
* ``media_upload_complete`` after the message holding the files is stored.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Optional, Sequence

from fastapi import UploadFile

from site_manager.common.exceptions import AppException, ProcessingException
from site_manager.media.processing import FileProcessingService, ProcessedFile, StoredFile
from site_manager.media.retry import UploadRetryService
from site_manager.realtime.manager import manager

logger = logging.getLogger(__name__)


def _real_uploads(files: Optional[Sequence[UploadFile]]) -> list[UploadFile]:
    # Browsers send an empty part when the file input is left blank
    return [f for f in files or () if f.filename]


async def process_uploads(
    conversation_id: uuid.UUID,
    files: Optional[Sequence[UploadFile]],
    *,
    processor: Optional[FileProcessingService] = None,
    retry: Optional[UploadRetryService] = None,
) -> list[ProcessedFile]:
    """Run every upload through the pipeline and return the processed files.

    Validation errors (400) and processing failures (500
    ``FILE_PROCESSING_ERROR``) remove any file already written.
    """
    uploads = _real_uploads(files)
    if not uploads:
        return []

    processor = processor or FileProcessingService()
    retry = retry or UploadRetryService(processor=processor)
    processor.check_file_count(len(uploads))

    stored: list[StoredFile] = []
    processed: list[ProcessedFile] = []
    try:
        for upload in uploads:
            stored.append(await processor.save_upload(upload))

        await manager.emit_to_conversation(conversation_id, "upload:progress", {
            "conversation_id": conversation_id,
            "progress": 0,
            "status": "processing",
            "total_files": len(stored),
        })

        failed = 0
        for index, item in enumerate(stored, start=1):
            result = await retry.retry_file_processing(item)
            if result.success:
                processed.append(result.data)
            else:
                failed += 1
                logger.error(
                    "Processing %s failed after %d attempts: %s",
                    item.original_name, result.attempts, result.error,
                )
                processor.delete_file(item.file_name)

            await manager.emit_to_conversation(conversation_id, "upload:progress", {
                "conversation_id": conversation_id,
                "progress": round(index / len(stored) * 100),
                "status": "processing",
                "current_file": item.original_name,
                "file_index": index,
                "total_files": len(stored),
            })

        if not processed:
            raise ProcessingException("Failed to process uploaded files", code="FILE_PROCESSING_ERROR")

        await manager.emit_to_conversation(conversation_id, "upload:complete", {
            "conversation_id": conversation_id,
            "progress": 100,
            "status": "complete",
            "total_files": len(processed),
            "success_count": len(processed),
            "failed_count": failed,
        })
        return processed

    except AppException:
        _cleanup(processor, stored)
        raise
    except OSError as exc:
        logger.exception("Upload pipeline failed for conversation %s", conversation_id)
        _cleanup(processor, stored)
        raise ProcessingException(
            "Failed to process uploaded files", code="FILE_PROCESSING_ERROR",
        ) from exc


def _cleanup(processor: FileProcessingService, stored: Sequence[StoredFile]) -> None:
    for item in stored:
        processor.delete_file(item.file_name)


async def announce_media_complete(
    conversation_id: uuid.UUID,
    files: Sequence[ProcessedFile],
    *,
    uploaded_by: uuid.UUID,
    has_content: bool,
) -> None:
    attachments = [f.to_attachment() for f in files]
    await manager.emit_to_conversation(conversation_id, "media_upload_complete", {
        "conversation_id": conversation_id,
        "files": attachments,
        "uploaded_by": uploaded_by,
        "upload_type": "mixed" if has_content else "media-only",
        "timestamp": datetime.now(timezone.utc),
    })
    await manager.emit_to_conversation(conversation_id, "upload:progress", {
        "conversation_id": conversation_id,
        "progress": 100,
        "status": "complete",
        "files": attachments,
    })


def discard_processed(files: Sequence[ProcessedFile]) -> None:
    """Remove processed files whose message could not be stored."""
    processor = FileProcessingService()
    for item in files:
        processor.delete_file(item.file_name)
