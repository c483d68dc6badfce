"""Upload retry with exponential backoff."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, replace
from typing import Any, Awaitable, Callable, Optional, Sequence

from tenacity import (
    AsyncRetrying,
    RetryError,
    before_sleep_log,
    stop_after_attempt,
    wait_exponential,
)

from site_manager.media.processing import FileProcessingService, StoredFile

logger = logging.getLogger(__name__)

RETRYABLE_ERRORS = (
    "ECONNRESET",
    "ENOTFOUND",
    "ECONNREFUSED",
    "ETIMEDOUT",
    "ECONNABORTED",
    "NETWORK_ERROR",
    "TIMEOUT",
)

TotalProgressCallback = Callable[[int, int, int], None]


@dataclass(frozen=True)
class RetryOptions:
    max_retries: int = 3
    base_delay: int = 1000  # ms
    max_delay: int = 10000  # ms
    backoff_multiplier: float = 2

    def wait(self) -> wait_exponential:
        """Backoff between attempts, in seconds."""
        return wait_exponential(
            multiplier=self.base_delay / 1000,
            exp_base=self.backoff_multiplier,
            max=self.max_delay / 1000,
        )


@dataclass
class UploadResult:
    success: bool
    data: Any = None
    error: Optional[str] = None
    attempts: int = 0


def is_retryable_error(exc: BaseException) -> bool:
    """True for network style failures (connection resets, timeouts, DNS)."""
    if isinstance(exc, (ConnectionError, TimeoutError, asyncio.TimeoutError)):
        return True
    haystack = f"{type(exc).__name__} {exc}".upper()
    return any(code in haystack for code in RETRYABLE_ERRORS)


class UploadRetryService:
    def __init__(
        self,
        options: Optional[RetryOptions] = None,
        processor: Optional[FileProcessingService] = None,
    ) -> None:
        self.options = options or RetryOptions()
        self.processor = processor or FileProcessingService()

    def _options(self, overrides: dict[str, Any]) -> RetryOptions:
        return replace(self.options, **overrides) if overrides else self.options

    async def retry_upload(
        self,
        upload: Callable[[], Awaitable[Any]],
        **overrides: Any,
    ) -> UploadResult:
        """Run *upload* until it succeeds or ``max_retries`` attempts are used."""
        options = self._options(overrides)
        retrying = AsyncRetrying(
            stop=stop_after_attempt(options.max_retries),
            wait=options.wait(),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            sleep=asyncio.sleep,
        )

        try:
            async for attempt in retrying:
                with attempt:
                    data = await upload()
        except RetryError as exc:
            last_error = exc.last_attempt.exception()
            logger.warning(
                "Upload failed after %d attempts: %s", exc.last_attempt.attempt_number, last_error,
            )
            return UploadResult(
                success=False,
                error=str(last_error) if last_error and str(last_error) else "Upload failed after all retries",
                attempts=exc.last_attempt.attempt_number,
            )

        return UploadResult(success=True, data=data, attempts=attempt.retry_state.attempt_number)

    async def retry_file_processing(
        self,
        stored: StoredFile,
        on_progress: Optional[Callable[[int], None]] = None,
        **overrides: Any,
    ) -> UploadResult:
        return await self.retry_upload(
            lambda: self.processor.process_file(stored, on_progress), **overrides,
        )

    async def retry_batch_upload(
        self,
        uploads: Sequence[Callable[[], Awaitable[Any]]],
        **overrides: Any,
    ) -> list[UploadResult]:
        """Retry each upload concurrently; results keep input order."""
        outcomes = await asyncio.gather(
            *(self.retry_upload(fn, **overrides) for fn in uploads),
            return_exceptions=True,
        )
        return [
            o if isinstance(o, UploadResult) else UploadResult(success=False, error="Promise rejected")
            for o in outcomes
        ]

    def validate_file(self, stored: StoredFile) -> dict[str, Any]:
        result = self.processor.validate_file(stored.size, stored.mime_type)
        return {"valid": result.is_valid, "error": result.error}

    async def process_files_with_retry(
        self,
        files: Sequence[StoredFile],
        on_progress: Optional[TotalProgressCallback] = None,
        **overrides: Any,
    ) -> list[UploadResult]:
        """Validate and process *files* in order.

        *on_progress* receives ``(index, file_progress, total_progress)``.
        Invalid files are reported with ``attempts=0`` and never retried.
        """
        results: list[UploadResult] = []
        total = len(files)

        for index, stored in enumerate(files):
            validation = self.validate_file(stored)
            if not validation["valid"]:
                results.append(UploadResult(success=False, error=validation["error"], attempts=0))
                continue

            def report(progress: int, index: int = index) -> None:
                if on_progress is not None:
                    overall = round((index + progress / 100) / total * 100)
                    on_progress(index, progress, overall)

            results.append(await self.retry_file_processing(stored, report, **overrides))

        return results
