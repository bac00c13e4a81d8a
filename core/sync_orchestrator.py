"""
SyncOrchestrator — re-synchronizes data sources into normalized chunks.

One sync run against one source:

    Connected/Error ──CAS──▶ Syncing ──fetch ─ normalize ─ store──▶ Connected
                                 │                                    (or)
                                 └──────────── any failure ──────────▶ Error

The ``Syncing`` transition is a compare-and-swap, so at most one run per
source is ever in flight.  The final status write and the chunk-set swap
commit in one transaction: readers see either the previous run or the new
one, never a mix.  Chunk blobs are written under a per-run prefix before
that commit, and the manifest moves to the new run only after it.

Runs are executed by a fixed pool of worker tasks reading a bounded queue.
``sync_all`` only enqueues; it never waits for the syncs it dispatched.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
import uuid
from typing import Any, Dict, List, Optional, Set, Tuple

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from config.settings import config
from connectors.errors import (
    ConnectorError,
    ConnectorNotImplementedError,
    ProviderError,
    SourceNotEligibleError,
    SourceNotFoundError,
)
from connectors.fetchers import BaseFetcher, build_fetchers
from connectors.registry import ConnectorRegistry
from connectors.token_manager import get_active_credential
from connectors.vault import CredentialVault
from database import helpers
from database.models import SYNC_ELIGIBLE_STATUSES, SourceStatus
from document_pipeline.normalizer import ContentNormalizer, NormalizedDocument
from storage.object_store import ObjectStore, chunk_key, document_key, manifest_key
from utils.schemas import SyncOutcome, SyncResult

logger = logging.getLogger(__name__)

SourceKey = Tuple[str, str]


class SyncOrchestrator:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        vault: CredentialVault,
        object_store: ObjectStore,
        *,
        normalizer: Optional[ContentNormalizer] = None,
        fetchers: Optional[Dict[str, BaseFetcher]] = None,
        registry: Optional[ConnectorRegistry] = None,
        max_workers: Optional[int] = None,
        queue_size: Optional[int] = None,
        timeout_seconds: Optional[float] = None,
    ):
        """
        Parameters
        ----------
        session_factory : async session factory for the metadata database
        vault           : credential vault used to look up / refresh tokens
        object_store    : blob store receiving chunks, documents and manifests
        fetchers        : mapping of source type -> fetcher (defaults to all)
        max_workers     : size of the worker pool (``sync_max_workers``)
        queue_size      : bound of the pending-sync queue (``sync_queue_size``)
        timeout_seconds : whole-run timeout (``sync_timeout_seconds``)
        """
        self._session_factory = session_factory
        self._vault = vault
        self._object_store = object_store
        self._normalizer = normalizer or ContentNormalizer()
        self._fetchers = fetchers if fetchers is not None else build_fetchers()
        self._registry = registry or ConnectorRegistry()
        self.max_workers = max_workers or config.sync_max_workers
        self.timeout_seconds = timeout_seconds or config.sync_timeout_seconds

        self._queue: asyncio.Queue[SourceKey] = asyncio.Queue(maxsize=queue_size or config.sync_queue_size)
        self._pending: Set[SourceKey] = set()
        self._in_flight: Set[SourceKey] = set()
        self._workers: List[asyncio.Task] = []
        self._dispatches: Set[asyncio.Task] = set()
        self._counters: Dict[str, int] = {
            "submitted": 0,
            "succeeded": 0,
            "failed": 0,
            "rejected": 0,
            "dropped": 0,
        }

    # ── Worker pool ─────────────────────────────────────────────────────

    @property
    def running(self) -> bool:
        return bool(self._workers)

    async def start(self) -> None:
        """Recover interrupted runs and launch the worker pool."""
        if self._workers:
            return
        await self.recover_interrupted()
        self._workers = [
            asyncio.create_task(self._worker(i), name=f"sync-worker-{i}") for i in range(self.max_workers)
        ]
        logger.info("[SyncOrchestrator] Started %d worker(s), queue capacity %d", self.max_workers, self._queue.maxsize)

    async def stop(self) -> None:
        """Cancel the workers; a run cut short is recorded as ``Error``."""
        tasks = self._workers + list(self._dispatches)
        self._workers = []
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("[SyncOrchestrator] Stopped")

    async def join(self) -> None:
        """Wait until every queued sync has been processed."""
        await self._queue.join()

    async def recover_interrupted(self) -> int:
        """
        Move sources left in ``Syncing`` by a previous process to ``Error``.

        Assumes one orchestrator process per database.
        """
        recovered = 0
        async with self._session_factory() as session:
            async with session.begin():
                stuck = await helpers.list_all_data_sources(session, statuses=[SourceStatus.SYNCING.value])
                for source in stuck:
                    if await helpers.transition_status(
                        session,
                        source.tenant_id,
                        source.id,
                        from_statuses=[SourceStatus.SYNCING.value],
                        to_status=SourceStatus.ERROR,
                        last_error="Sync interrupted by a restart",
                    ):
                        recovered += 1
        if recovered:
            logger.warning("[SyncOrchestrator] Recovered %d interrupted sync(s)", recovered)
        return recovered

    async def _worker(self, number: int) -> None:
        while True:
            key = await self._queue.get()
            try:
                await self.sync_one(*key)
            except (SourceNotEligibleError, SourceNotFoundError) as exc:
                logger.info("[SyncOrchestrator] worker %d skipped %s: %s", number, key[1], exc)
            except Exception:
                logger.exception("[SyncOrchestrator] worker %d crashed on source %s", number, key[1])
            finally:
                # Pending until the run is over, so submit() never queues it twice.
                self._pending.discard(key)
                self._queue.task_done()

    # ── Dispatch ────────────────────────────────────────────────────────

    def submit(self, tenant_id: str, source_id: str) -> bool:
        """
        Queue one source for syncing.

        Returns True when the source is queued or already queued / in
        flight, False when the queue is full.
        """
        key = (tenant_id, source_id)
        if key in self._pending or key in self._in_flight:
            return True
        try:
            self._queue.put_nowait(key)
        except asyncio.QueueFull:
            self._counters["dropped"] += 1
            logger.warning(
                "[SyncOrchestrator] Queue full (%d); dropping sync of source %s",
                self._queue.maxsize,
                source_id,
            )
            return False
        self._pending.add(key)
        self._counters["submitted"] += 1
        return True

    async def sync_all(self, cancel_event: Optional[asyncio.Event] = None) -> int:
        """
        Enqueue every eligible source of every tenant, one at a time.

        Stops launching further sources once ``cancel_event`` is set; syncs
        already queued still run.  Returns the number of sources submitted.
        """
        async with self._session_factory() as session:
            sources = await helpers.list_all_data_sources(session, statuses=SYNC_ELIGIBLE_STATUSES)
            keys = [(s.tenant_id, s.id) for s in sources]

        submitted = 0
        for tenant_id, source_id in keys:
            if cancel_event is not None and cancel_event.is_set():
                logger.info("[SyncOrchestrator] sync_all cancelled after %d of %d source(s)", submitted, len(keys))
                break
            if self.submit(tenant_id, source_id):
                submitted += 1
            await asyncio.sleep(0)

        logger.info("[SyncOrchestrator] sync_all dispatched %d of %d eligible source(s)", submitted, len(keys))
        return submitted

    def dispatch_sync_all(self, cancel_event: Optional[asyncio.Event] = None) -> asyncio.Task:
        """Run ``sync_all`` in the background (fire-and-forget)."""
        task = asyncio.create_task(self.sync_all(cancel_event), name="sync-all")
        self._dispatches.add(task)
        task.add_done_callback(self._dispatch_done)
        return task

    def _dispatch_done(self, task: asyncio.Task) -> None:
        self._dispatches.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("[SyncOrchestrator] sync_all failed: %s", task.exception())

    def stats(self) -> Dict[str, Any]:
        return {
            "workers": len(self._workers),
            "queueDepth": self._queue.qsize(),
            "queueCapacity": self._queue.maxsize,
            "inFlight": len(self._in_flight),
            "counters": dict(self._counters),
        }

    # ── One run ─────────────────────────────────────────────────────────

    async def sync_one(self, tenant_id: str, source_id: str) -> SyncOutcome:
        """
        Sync one source now.

        Raises ``SourceNotFoundError`` / ``SourceNotEligibleError`` before
        any network I/O when the source cannot be synced; every later
        failure is recorded on the source and returned as a failed outcome.
        """
        key = (tenant_id, source_id)
        view = await self._claim(tenant_id, source_id)
        self._in_flight.add(key)
        started = time.monotonic()
        logger.info("Sync started: tenant=%s source=%s type=%s", tenant_id, source_id, view["type"])

        try:
            item_count = await asyncio.wait_for(self._run(view), timeout=self.timeout_seconds)
        except asyncio.CancelledError:
            await self._record_failure(tenant_id, source_id, "Sync cancelled")
            raise
        except Exception as exc:
            message = self._describe(exc)
            logger.error("Sync failed: tenant=%s source=%s: %s", tenant_id, source_id, message)
            await self._record_failure(tenant_id, source_id, message)
            self._counters["failed"] += 1
            return SyncOutcome(
                tenant_id=tenant_id,
                source_id=source_id,
                result=SyncResult.FAILED,
                error=message,
                duration_ms=round((time.monotonic() - started) * 1000, 1),
            )
        finally:
            self._in_flight.discard(key)

        self._counters["succeeded"] += 1
        duration_ms = round((time.monotonic() - started) * 1000, 1)
        logger.info(
            "Sync succeeded: tenant=%s source=%s chunks=%d (%.0f ms)",
            tenant_id,
            source_id,
            item_count,
            duration_ms,
        )
        return SyncOutcome(
            tenant_id=tenant_id,
            source_id=source_id,
            result=SyncResult.SUCCEEDED,
            item_count=item_count,
            duration_ms=duration_ms,
        )

    async def _claim(self, tenant_id: str, source_id: str) -> Dict[str, Any]:
        """Check eligibility and CAS the source to ``Syncing``; no network I/O."""
        async with self._session_factory() as session:
            async with session.begin():
                source = await helpers.require_data_source(session, tenant_id, source_id)
                if source.status not in SYNC_ELIGIBLE_STATUSES:
                    self._counters["rejected"] += 1
                    raise SourceNotEligibleError(source_id, source.status)
                view = source.to_dict()
                won = await helpers.transition_status(
                    session,
                    tenant_id,
                    source_id,
                    from_statuses=SYNC_ELIGIBLE_STATUSES,
                    to_status=SourceStatus.SYNCING,
                )
                if not won:
                    self._counters["rejected"] += 1
                    raise SourceNotEligibleError(source_id, SourceStatus.SYNCING.value)
        return view

    async def _run(self, view: Dict[str, Any]) -> int:
        tenant_id, source_id, source_type = view["tenantId"], view["id"], view["type"]

        fetcher = self._fetchers.get(source_type)
        if fetcher is None:
            raise ConnectorNotImplementedError(source_type)

        credential = None
        if fetcher.requires_credential:
            credential = await get_active_credential(
                self._vault, tenant_id, source_id, source_type, registry=self._registry
            )
            if credential is None:
                raise ProviderError(source_type, "no credential stored for this source")

        raw_documents = await fetcher.fetch(view, credential)

        async with self._session_factory() as session:
            tag_cache = await helpers.tags_by_content_hash(session, tenant_id, source_id)
        documents = await self._normalizer.ingest_all(view, raw_documents, tag_cache=tag_cache)

        run_id = uuid.uuid4().hex
        staged: List[str] = []
        committed = False
        try:
            records = await self._stage_objects(tenant_id, source_id, run_id, documents, staged)
            async with self._session_factory() as session:
                async with session.begin():
                    previous_keys = await helpers.chunk_object_keys(session, tenant_id, source_id)
                    await helpers.replace_chunks(session, tenant_id, source_id, records)
                    won = await helpers.transition_status(
                        session,
                        tenant_id,
                        source_id,
                        from_statuses=[SourceStatus.SYNCING.value],
                        to_status=SourceStatus.CONNECTED,
                        last_synced_at=helpers.utcnow(),
                        last_error=None,
                        item_count=len(records),
                    )
                    if not won:
                        # Rolls back the chunk swap as well.
                        raise SourceNotFoundError(tenant_id, source_id)
                committed = True
        except BaseException:
            if not committed:
                await self._discard(staged)
            raise

        await self._publish(tenant_id, source_id, run_id, records, previous_keys)
        return len(records)

    async def _stage_objects(
        self,
        tenant_id: str,
        source_id: str,
        run_id: str,
        documents: List[NormalizedDocument],
        staged: List[str],
    ) -> List[Dict[str, Any]]:
        """Write this run's blobs under its own prefix; ``staged`` collects chunk keys."""
        records: List[Dict[str, Any]] = []
        for doc in documents:
            if not doc.cleaned_text:
                continue
            await self._object_store.put(
                document_key(tenant_id, source_id, doc.text_hash),
                doc.cleaned_text.encode("utf-8"),
                "text/plain; charset=utf-8",
            )
            for chunk in doc.chunks:
                key = chunk_key(tenant_id, source_id, run_id, chunk.chunk_index)
                body = {
                    "tenantId": tenant_id,
                    "sourceId": source_id,
                    "runId": run_id,
                    "chunkIndex": chunk.chunk_index,
                    "chunkId": chunk.chunk_id,
                    "documentId": chunk.document_id,
                    "title": chunk.title,
                    "originUrl": chunk.origin_url,
                    "text": chunk.text,
                    "tags": chunk.tags,
                    "contentHash": chunk.content_hash,
                    "metadata": chunk.metadata,
                }
                staged.append(key)
                await self._object_store.put(key, json.dumps(body, sort_keys=True).encode("utf-8"), "application/json")
                records.append(chunk.to_record(object_key=key))
        return records

    async def _publish(
        self,
        tenant_id: str,
        source_id: str,
        run_id: str,
        records: List[Dict[str, Any]],
        previous_keys: List[str],
    ) -> None:
        """
        Point the manifest at the committed run, then drop the previous
        run's chunk blobs.  The run is already committed, so failures here
        are logged and the old blobs are left for the next run.
        """
        manifest = {
            "tenantId": tenant_id,
            "sourceId": source_id,
            "runId": run_id,
            "chunkCount": len(records),
            "chunks": [r["object_key"] for r in records],
        }
        try:
            await self._object_store.put(
                manifest_key(tenant_id, source_id),
                json.dumps(manifest, sort_keys=True).encode("utf-8"),
                "application/json",
            )
        except Exception:
            logger.exception("[SyncOrchestrator] Could not publish manifest for source %s", source_id)
            return
        current = set(manifest["chunks"])
        await self._discard([key for key in previous_keys if key not in current])

    async def _discard(self, keys: List[str]) -> None:
        for key in keys:
            try:
                await self._object_store.delete(key)
            except Exception as exc:
                logger.warning("[SyncOrchestrator] Could not delete object %s: %s", key, exc)

    async def _record_failure(self, tenant_id: str, source_id: str, message: str) -> None:
        """Syncing -> Error, keeping the previous ``last_synced_at``."""
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    await helpers.transition_status(
                        session,
                        tenant_id,
                        source_id,
                        from_statuses=[SourceStatus.SYNCING.value],
                        to_status=SourceStatus.ERROR,
                        last_error=message[:2000],
                    )
        except Exception:
            logger.exception("Could not record sync failure for source %s", source_id)

    def _describe(self, exc: BaseException) -> str:
        if isinstance(exc, asyncio.TimeoutError):
            return f"Sync timed out after {self.timeout_seconds}s"
        if isinstance(exc, ConnectorError):
            return str(exc)
        return f"{type(exc).__name__}: {exc}"
