"""Upload a finished recording: signed-URL write first, backend proxy as fallback."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable, Protocol, Sequence

import httpx

from models.errors import UploadError
from models.upload import UploadAttempt, UploadOutcome, UploadResult, UploadStrategy
from services.backend_client import BackendClient
from services.gcs import DEFAULT_CONTENT_TYPE, generate_storage_key

logger = logging.getLogger(__name__)


class StrategyFailed(Exception):
    """A strategy failed; `written_key` is set when an object may have landed anyway."""

    def __init__(self, message: str, *, written_key: str | None = None) -> None:
        super().__init__(message)
        self.written_key = written_key


class UploadStrategyHandler(Protocol):
    strategy: UploadStrategy

    async def upload(self, data: bytes, storage_key: str, content_type: str) -> str:
        """Write `data` and return the key it was actually stored under."""
        ...


class SignedUrlUpload:
    """Ask the issuer for a write credential bound to `storage_key`, then PUT directly."""

    strategy = UploadStrategy.PRIMARY

    def __init__(self, client: BackendClient) -> None:
        self._client = client

    async def upload(self, data: bytes, storage_key: str, content_type: str) -> str:
        credential = await self._client.issue_write_credential(storage_key, content_type)
        logger.info(
            "[upload] Write credential issued: key=%s bucket=%s expires_at=%s",
            credential.storage_key,
            credential.bucket,
            credential.expires_at,
        )
        try:
            await self._client.put_object(credential, data)
        except httpx.TransportError as exc:
            # The request body may have reached storage before the connection dropped.
            raise StrategyFailed(f"signed URL PUT failed: {exc!r}", written_key=credential.storage_key) from exc
        return credential.storage_key


class ProxyUpload:
    """Stream the blob through the backend; the backend picks the canonical key."""

    strategy = UploadStrategy.FALLBACK

    def __init__(self, client: BackendClient) -> None:
        self._client = client

    async def upload(self, data: bytes, storage_key: str, content_type: str) -> str:
        return await self._client.proxy_upload(data, content_type)


class UploadCoordinator:
    """
    Tries each strategy in order and returns the first success.

    The storage key is generated before any network call. When every strategy
    fails the coordinator raises UploadError, unless `allow_simulated` is set,
    in which case it returns a placeholder result flagged simulated=True and
    nothing is written.
    """

    def __init__(
        self,
        strategies: Sequence[UploadStrategyHandler],
        *,
        allow_simulated: bool = False,
        key_factory: Callable[[], str] = generate_storage_key,
    ) -> None:
        if not strategies:
            raise ValueError("At least one upload strategy is required")
        if len(strategies) > 2:
            raise ValueError("A session makes at most two upload attempts")
        self._strategies = list(strategies)
        self._allow_simulated = allow_simulated
        self._key_factory = key_factory

    @classmethod
    def with_backend(cls, client: BackendClient, *, allow_simulated: bool = False) -> UploadCoordinator:
        return cls([SignedUrlUpload(client), ProxyUpload(client)], allow_simulated=allow_simulated)

    async def upload(
        self,
        blob: bytes,
        *,
        content_type: str = DEFAULT_CONTENT_TYPE,
        storage_key: str | None = None,
    ) -> UploadResult:
        storage_key = storage_key or self._key_factory()
        attempts: list[UploadAttempt] = []
        logger.info("[upload] Uploading %d bytes, planned key=%s", len(blob), storage_key)

        for handler in self._strategies:
            attempt = UploadAttempt(strategy=handler.strategy, started_at=datetime.now(timezone.utc))
            attempts.append(attempt)
            try:
                stored_key = await handler.upload(blob, storage_key, content_type)
            except Exception as exc:  # noqa: BLE001
                attempt.ended_at = datetime.now(timezone.utc)
                attempt.outcome = UploadOutcome.FAILED
                attempt.error = str(exc) or type(exc).__name__
                if isinstance(exc, StrategyFailed) and exc.written_key:
                    attempt.orphaned_key = exc.written_key
                    logger.warning("[upload] Ignoring possibly written object from failed attempt: %s", exc.written_key)
                logger.warning("[upload] %s strategy failed: %s", handler.strategy.value, attempt.error)
                continue

            attempt.ended_at = datetime.now(timezone.utc)
            attempt.outcome = UploadOutcome.SUCCEEDED
            attempt.bytes_transferred = len(blob)
            attempt.storage_key = stored_key
            if stored_key != storage_key:
                logger.info("[upload] Using key issued by %s strategy: %s (planned %s)", handler.strategy.value, stored_key, storage_key)
            elapsed = (attempt.ended_at - attempt.started_at).total_seconds()
            logger.info(
                "[upload] %s strategy succeeded: key=%s bytes=%d in %.2fs",
                handler.strategy.value,
                stored_key,
                len(blob),
                elapsed,
            )
            return UploadResult(storage_key=stored_key, strategy=handler.strategy, attempts=attempts)

        summary = "; ".join(f"{a.strategy.value}: {a.error}" for a in attempts)
        if self._allow_simulated:
            logger.warning(
                "[upload] All strategies failed (%s); returning placeholder key=%s simulated=True",
                summary,
                storage_key,
            )
            now = datetime.now(timezone.utc)
            attempts.append(
                UploadAttempt(
                    strategy=UploadStrategy.SIMULATED,
                    started_at=now,
                    ended_at=now,
                    outcome=UploadOutcome.SUCCEEDED,
                    storage_key=storage_key,
                )
            )
            return UploadResult(
                storage_key=storage_key,
                strategy=UploadStrategy.SIMULATED,
                simulated=True,
                attempts=attempts,
            )
        raise UploadError(f"All upload strategies failed ({summary})")
