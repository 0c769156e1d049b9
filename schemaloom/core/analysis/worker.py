"""Background worker that drives analysis jobs.

Daemon thread with its own asyncio event loop:
- Polls the database for pending/running jobs every poll_interval
- Queue-based dispatch with Semaphore concurrency control
- Each dispatch runs exactly one ``advance`` (one batch) in a thread

A job is never queued twice while a dispatch for it is in flight; the
processor's per-job lock backs this up for callers outside the worker.
"""

import asyncio
import logging
import threading
from typing import Optional, Set
from uuid import uuid4

from .engine import AnalysisEngine
from .models import JobNotFoundError

logger = logging.getLogger(__name__)


class AnalysisWorker:
    """Poll-and-advance loop for analysis jobs.

    Lifecycle:
    1. start() spawns daemon thread with asyncio loop
    2. _poll_pending() queues active jobs every poll_interval
    3. _advance_sync() runs one batch per dispatch
    4. stop() signals shutdown
    """

    def __init__(
        self,
        engine: AnalysisEngine,
        poll_interval: float = 10.0,
        max_concurrent: int = 2,
    ):
        self._engine = engine
        self.poll_interval = poll_interval
        self.max_concurrent = max_concurrent
        self.worker_id = f"analysis-{uuid4()}"

        self._queue: Optional[asyncio.Queue] = None
        self._running = False
        self._thread: Optional[threading.Thread] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._semaphore: Optional[asyncio.Semaphore] = None

        self._inflight: Set[str] = set()
        self._inflight_lock = threading.Lock()

    def start(self):
        """Start the background worker thread."""
        if self._running:
            logger.warning("Analysis worker already running")
            return
        self._running = True
        self._thread = threading.Thread(
            target=self._run_loop, daemon=True, name="analysis-worker"
        )
        self._thread.start()
        logger.info(f"Analysis worker {self.worker_id} started")

    def stop(self):
        """Stop the background worker."""
        self._running = False
        if self._loop:
            self._loop.call_soon_threadsafe(self._loop.stop)
        if self._thread:
            self._thread.join(timeout=5.0)
        logger.info("Analysis worker stopped")

    def _run_loop(self):
        """Run the async event loop in the background thread."""
        self._loop = asyncio.new_event_loop()
        asyncio.set_event_loop(self._loop)
        self._queue = asyncio.Queue()
        self._semaphore = asyncio.Semaphore(self.max_concurrent)

        try:
            self._loop.run_until_complete(self._main_loop())
        except Exception as e:
            logger.error(f"Analysis worker loop error: {e}")
        finally:
            self._loop.close()

    async def _main_loop(self):
        poll_task = asyncio.create_task(self._poll_pending())

        while self._running:
            try:
                job_id = await asyncio.wait_for(
                    self._queue.get(),
                    timeout=self.poll_interval,
                )
                asyncio.create_task(self._process_with_semaphore(job_id))
            except asyncio.TimeoutError:
                continue
            except Exception as e:
                logger.error(f"Error in analysis main loop: {e}")

        poll_task.cancel()

    async def _poll_pending(self):
        while self._running:
            try:
                for job_id in self._claim_jobs():
                    await self._queue.put(job_id)
            except Exception as e:
                logger.error(f"Error polling analysis jobs: {e}")
            await asyncio.sleep(self.poll_interval)

    def _claim_jobs(self):
        """Active job ids not already dispatched by this worker."""
        claimed = []
        active = self._engine.list_active_job_ids(limit=self.max_concurrent * 5)
        with self._inflight_lock:
            for job_id in active:
                if job_id not in self._inflight:
                    self._inflight.add(job_id)
                    claimed.append(job_id)
        return claimed

    async def _process_with_semaphore(self, job_id: str):
        """Process job with semaphore for concurrency control."""
        try:
            async with self._semaphore:
                await asyncio.to_thread(self._advance_sync, job_id)
        finally:
            with self._inflight_lock:
                self._inflight.discard(job_id)

    def _advance_sync(self, job_id: str):
        """Run one batch of the job (runs in thread pool)."""
        try:
            result = self._engine.advance(job_id)
        except JobNotFoundError:
            logger.warning(f"Job {job_id} disappeared before it could be advanced")
            return None
        except Exception as e:
            logger.error(f"Job {job_id} advance failed: {e}", exc_info=True)
            return None

        if result.busy:
            logger.debug(f"Job {job_id} busy, will retry on next poll")
        elif not result.no_op:
            logger.info(
                f"Job {job_id}: status={result.status} progress={result.progress}% "
                f"ok={len(result.succeeded)} failed={len(result.failed)} deferred={len(result.deferred)}"
            )
        return result
