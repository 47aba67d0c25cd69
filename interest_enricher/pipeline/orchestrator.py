"""Enrichment orchestration: job runs, control actions and item processing.

A run loops over the job's unfinished items in passes. Each pass fans the
items out to a ``ConcurrencyPool``; results are persisted one by one as
tasks complete. Items that hit a retryable error are picked up again on a
later pass, after a backoff delay, until their attempts are exhausted.
"""
import asyncio
import logging
import random
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Callable, Optional, Sequence

from interest_enricher.cache.suggestion_cache import SuggestionCache
from interest_enricher.exceptions import (
    InvalidTransitionError,
    ItemBusyError,
    ItemNotFoundError,
    JobAlreadyRunningError,
    JobNotFoundError,
    RepositoryError,
)
from interest_enricher.persistence.models import utcnow
from interest_enricher.persistence.records import ItemRecord, JobRecord, NewSuggestion
from interest_enricher.persistence.repository import Repository
from interest_enricher.pipeline.options import RunOptions, load_run_options
from interest_enricher.pipeline.pool import ConcurrencyPool, TaskResult
from interest_enricher.pipeline.state import (
    ACTIVE_ITEM_STATUSES,
    ControlAction,
    ItemStatus,
    JobStatus,
    cancel_target,
    validate_transition,
)
from interest_enricher.scoring.similarity import SimilarityScorer
from interest_enricher.search.base import BaseSearchClient, CallContext, InterestCandidate
from interest_enricher.search.call_log import CallType
from interest_enricher.search.exceptions import ErrorType, RateLimitError, SearchError, should_retry
from interest_enricher.search.throttle import RequestThrottle

logger = logging.getLogger(__name__)

# How often a run re-checks items held by retry_item
OUT_OF_BAND_POLL_SECONDS = 0.05


@dataclass
class ItemOutcome:
    """Result of processing one item.

    ``status`` is None when the item was left untouched for a later run.
    ``held`` marks an item skipped because retry_item owns it.
    """

    item_id: str
    status: Optional[ItemStatus]
    suggestions: list[NewSuggestion] = field(default_factory=list)
    from_cache: bool = False
    error_type: Optional[ErrorType] = None
    retry_count: int = 0
    retry_after: Optional[float] = None
    held: bool = False


@dataclass
class ControlResult:
    status: str
    message: str

    def to_dict(self) -> dict:
        return {"status": self.status, "message": self.message}


class JobHandle:
    """Handle on a background job run; await ``wait()`` or poll ``done()``."""

    def __init__(self, job_id: str, task: asyncio.Task):
        self.job_id = job_id
        self.task = task

    def done(self) -> bool:
        return self.task.done()

    async def wait(self) -> str:
        """Wait for the run to stop and return the job status it left."""
        return await self.task

    def __repr__(self) -> str:
        state = "done" if self.done() else "running"
        return f"<JobHandle {self.job_id} ({state})>"


class EnrichmentOrchestrator:
    """Runs enrichment jobs and applies control actions to them.

    Usage:
        orchestrator = EnrichmentOrchestrator(repository, client, cache)
        handle = await orchestrator.start_enrichment(job_id)
        status = await handle.wait()
    """

    def __init__(
        self,
        repository: Repository,
        search_client: BaseSearchClient,
        cache: SuggestionCache,
        *,
        max_concurrency: int = 5,
        max_retries: int = 3,
        task_timeout: Optional[float] = None,
        batch_size: int = 100,
        pause_ms: int = 5000,
        retry_base_delay: float = 1.0,
        retry_max_delay: float = 60.0,
        retry_jitter: float = 1.0,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.repository = repository
        self.search_client = search_client
        self.cache = cache
        self.max_concurrency = max_concurrency
        self.max_retries = max_retries
        self.task_timeout = task_timeout
        self.batch_size = batch_size
        self.pause_ms = pause_ms
        self.retry_base_delay = retry_base_delay
        self.retry_max_delay = retry_max_delay
        self.retry_jitter = retry_jitter
        self._clock = clock
        self._runs: dict[str, asyncio.Task] = {}
        self._pools: dict[str, ConcurrencyPool] = {}
        self._out_of_band: dict[str, set[str]] = {}

    @classmethod
    def from_settings(
        cls,
        repository: Repository,
        search_client: BaseSearchClient,
        cache: SuggestionCache,
        settings,
    ) -> "EnrichmentOrchestrator":
        return cls(
            repository,
            search_client,
            cache,
            max_concurrency=settings.max_concurrency,
            max_retries=settings.max_retries,
            task_timeout=settings.request_timeout_seconds * 2,
            batch_size=settings.facebook_batch_size,
            pause_ms=settings.facebook_pause_ms,
        )

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    async def start_enrichment(self, job_id: str) -> JobHandle:
        """
        Start processing a pending job in the background.

        Raises:
            JobNotFoundError: Unknown job
            JobAlreadyRunningError: The job is already processing
            InvalidTransitionError: The job is not pending
        """
        job = self._require_job(job_id)
        if job_id in self._runs or job.status == JobStatus.PROCESSING:
            raise JobAlreadyRunningError(job_id)
        if job.status != JobStatus.PENDING:
            raise InvalidTransitionError(job_id, job.status, "start", "job must be pending")

        started = self.repository.update_job(
            job_id,
            only_from=[JobStatus.PENDING],
            status=JobStatus.PROCESSING,
            current_index=0,
            paused_at=None,
        )
        if not started:
            raise JobAlreadyRunningError(job_id)

        logger.info("Starting enrichment of %s job %s (%s)", job.kind, job_id, job.name)
        return self._launch(job_id)

    async def run_enrichment(self, job_id: str) -> str:
        """Start a job and wait for the run to stop."""
        handle = await self.start_enrichment(job_id)
        return await handle.wait()

    def get_handle(self, job_id: str) -> Optional[JobHandle]:
        """Handle of the active run of a job in this process, if any."""
        task = self._runs.get(job_id)
        return JobHandle(job_id, task) if task is not None else None

    async def set_job_control(self, job_id: str, action: str) -> ControlResult:
        """
        Pause, resume or cancel a job.

        Pause and cancel only stop new items from being started; searches
        already running are allowed to finish.

        Raises:
            JobNotFoundError: Unknown job
            InvalidTransitionError: Action not legal from the job's status
        """
        job = self._require_job(job_id)
        target = validate_transition(job_id, job.status, action)
        action = ControlAction(action)

        if action == ControlAction.PAUSE:
            applied = self.repository.update_job(
                job_id,
                only_from=[JobStatus.PROCESSING],
                status=JobStatus.PAUSED,
                paused_at=self._clock(),
            )
            message = "Enrichment paused; searches in progress will complete"
        elif action == ControlAction.RESUME:
            applied = self.repository.update_job(
                job_id,
                only_from=[JobStatus.PAUSED],
                status=JobStatus.PROCESSING,
                paused_at=None,
            )
            message = "Enrichment resumed"
        else:
            applied = self.repository.update_job(
                job_id,
                only_from=[JobStatus.PROCESSING, JobStatus.PAUSED],
                status=JobStatus.CANCELLED,
                paused_at=None,
                current_index=None,
            )
            message = "Enrichment cancelled"

        if not applied:
            raise InvalidTransitionError(job_id, job.status, action.value, "job status changed concurrently")

        if action == ControlAction.RESUME:
            if job_id not in self._runs:
                self._launch(job_id)
        else:
            self._stop_admission(job_id)

        if action == ControlAction.CANCEL:
            item_status = cancel_target(job.kind)
            moved = self.repository.bulk_update_item_status(job_id, ACTIVE_ITEM_STATUSES, item_status)
            message = f"{message}; {moved} unfinished items set to {item_status.value}"

        logger.info("Job %s: %s -> %s", job_id, action.value, target.value)
        return ControlResult(status=target.value, message=message)

    async def retry_item(self, job_id: str, item_id: str) -> str:
        """
        Re-run one item outside the batch loop.

        Existing suggestions are deleted and the attempt counter reset.
        While the retry runs, an active batch loop leaves the item alone.

        Returns:
            The item status after processing

        Raises:
            ItemBusyError: The item is already being searched
        """
        job = self._require_job(job_id)
        item = self.repository.get_item(item_id)
        if item is None or item.job_id != job_id:
            raise ItemNotFoundError(job_id, item_id)

        held = self._out_of_band.setdefault(job_id, set())
        running = job_id in self._runs and item.status == ItemStatus.IN_PROGRESS.value
        if item_id in held or running:
            raise ItemBusyError(job_id, item_id)

        held.add(item_id)
        try:
            return await self._retry_held_item(job, item)
        finally:
            held.discard(item_id)
            if not held:
                self._out_of_band.pop(job_id, None)

    async def _retry_held_item(self, job: JobRecord, item: ItemRecord) -> str:
        item_id = item.id
        self.repository.delete_suggestions(item_id)
        self.repository.update_item(
            item_id,
            status=ItemStatus.IN_PROGRESS,
            retry_count=0,
            last_error_type=None,
        )
        item = replace(item, status=ItemStatus.IN_PROGRESS.value, retry_count=0, last_error_type=None)

        options = self._load_options()
        scorer = SimilarityScorer(options.weights)
        try:
            outcome = await self._process_item(
                job, item, scorer, options, throttle=None, call_type=CallType.RETRY_ITEM
            )
        except RepositoryError:
            raise
        except Exception as e:
            outcome = self._outcome_for_exception(item, e)

        # Nobody would pick a retry up unless the batch loop is running
        if outcome.status == ItemStatus.RETRY and not self._is_processing(job.id):
            outcome.status = ItemStatus.FAILED

        self._persist_outcome(item, outcome)
        status = outcome.status or ItemStatus.PENDING
        logger.info("Retried item %s (%s): %s", item_id, item.label, status.value)
        return status.value

    def recalculate_scores(self, job_id: str, item_ids: Optional[Sequence[str]] = None) -> int:
        """
        Re-score stored suggestions with the current weights.

        Only the stored label and audience are available, so the
        contextual, brand and type factors use their neutral values.

        Returns:
            Number of suggestions updated
        """
        self._require_job(job_id)
        scorer = SimilarityScorer(self._load_options().weights)
        wanted = set(item_ids) if item_ids is not None else None

        updated = 0
        for item in self.repository.list_items(job_id):
            if wanted is not None and item.id not in wanted:
                continue
            suggestions = self.repository.list_suggestions(item.id)
            if not suggestions:
                continue

            candidates = [
                InterestCandidate(
                    name=s.label,
                    candidate_id=s.id,
                    audience_lower_bound=s.audience,
                    audience_upper_bound=s.audience,
                )
                for s in suggestions
            ]
            ranked = scorer.rank(item.label, candidates)
            scores = {r.candidate.candidate_id: r.similarity for r in ranked}
            updated += self.repository.update_suggestion_scores(
                item.id, scores, ranked[0].candidate.candidate_id
            )

        logger.info("Recalculated %d suggestion scores for job %s", updated, job_id)
        return updated

    async def recover_interrupted_jobs(self, policy: str = "pause") -> list[str]:
        """
        Handle jobs left ``processing`` by a previous process.

        Their ``in_progress`` items go back to ``pending``. With policy
        ``pause`` the job is demoted to ``paused``; with ``resume`` a new
        run is started.

        Returns:
            IDs of recovered jobs
        """
        if policy not in ("pause", "resume"):
            raise ValueError(f"Unknown recovery policy: {policy}")

        recovered = []
        for job in self.repository.list_jobs([JobStatus.PROCESSING]):
            if job.id in self._runs:
                continue

            self.repository.bulk_update_item_status(job.id, [ItemStatus.IN_PROGRESS], ItemStatus.PENDING)
            if policy == "resume":
                self._launch(job.id)
                logger.info("Recovered job %s: resuming", job.id)
            else:
                self.repository.update_job(
                    job.id,
                    only_from=[JobStatus.PROCESSING],
                    status=JobStatus.PAUSED,
                    paused_at=self._clock(),
                )
                logger.info("Recovered job %s: paused", job.id)
            recovered.append(job.id)

        return recovered

    # ------------------------------------------------------------------
    # Run loop
    # ------------------------------------------------------------------

    def _launch(self, job_id: str) -> JobHandle:
        task = asyncio.get_running_loop().create_task(self._run(job_id), name=f"enrichment-{job_id}")
        self._runs[job_id] = task
        return JobHandle(job_id, task)

    async def _run(self, job_id: str) -> str:
        status = JobStatus.ERROR.value
        try:
            options = self._load_options()
            throttle = RequestThrottle(options.batch_size, options.pause_seconds)
            scorer = SimilarityScorer(options.weights)
            passes = 0

            while True:
                job = self._require_job(job_id)
                if job.status != JobStatus.PROCESSING:
                    status = job.status
                    logger.info("Job %s stopped with status %s", job_id, status)
                    break

                items = self.repository.list_items(job_id, ACTIVE_ITEM_STATUSES)
                if not items:
                    self.repository.update_job(
                        job_id,
                        only_from=[JobStatus.PROCESSING],
                        status=JobStatus.DONE,
                        current_index=None,
                    )
                    status = JobStatus.DONE.value
                    logger.info("Job %s done", job_id)
                    break

                held = self._out_of_band.get(job_id, set())
                runnable = [item for item in items if item.id not in held]
                if not runnable:
                    await asyncio.sleep(OUT_OF_BAND_POLL_SECONDS)
                    continue

                outcomes = await self._run_pass(job, runnable, scorer, options, throttle)
                passes += 1

                delay = self._retry_delay(outcomes, passes)
                if delay > 0:
                    logger.info("Job %s: waiting %.1fs before retrying failed searches", job_id, delay)
                    await asyncio.sleep(delay)

        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Enrichment run of job %s failed", job_id)
            try:
                self.repository.update_job(job_id, status=JobStatus.ERROR, current_index=None)
            except RepositoryError as e:
                logger.error("Could not mark job %s as error: %s", job_id, e)
            status = JobStatus.ERROR.value
        finally:
            self._runs.pop(job_id, None)
            self._pools.pop(job_id, None)

        return status

    async def _run_pass(
        self,
        job: JobRecord,
        items: list[ItemRecord],
        scorer: SimilarityScorer,
        options: RunOptions,
        throttle: RequestThrottle,
    ) -> list[ItemOutcome]:
        pool = ConcurrencyPool(self.max_concurrency, self.task_timeout)
        self._pools[job.id] = pool
        outstanding = {item.id: item.position for item in items}
        outcomes: list[ItemOutcome] = []

        def should_admit() -> bool:
            return self._is_processing(job.id)

        def on_result(result: TaskResult) -> None:
            if result.cancelled:
                return
            item = items[result.index]
            if result.error is not None:
                if isinstance(result.error, RepositoryError):
                    raise result.error
                outcome = self._outcome_for_exception(item, result.error)
            else:
                outcome = result.value
            if outcome.held:
                return

            self._persist_outcome(item, outcome)
            outcomes.append(outcome)

            if outcome.status in (ItemStatus.DONE, ItemStatus.FAILED):
                outstanding.pop(item.id, None)
                if outstanding:
                    self.repository.update_job(
                        job.id,
                        only_from=[JobStatus.PROCESSING],
                        current_index=min(outstanding.values()),
                    )

        tasks = [
            (lambda item=item: self._process_item(job, item, scorer, options, throttle=throttle))
            for item in items
        ]
        await pool.execute(tasks, should_admit=should_admit, on_result=on_result)

        logger.debug(
            "Job %s pass: %d items, %d outcomes, peak concurrency %d",
            job.id, len(items), len(outcomes), pool.peak_in_flight,
        )
        return outcomes

    async def _process_item(
        self,
        job: JobRecord,
        item: ItemRecord,
        scorer: SimilarityScorer,
        options: RunOptions,
        throttle: Optional[RequestThrottle] = None,
        call_type: CallType = CallType.AUTO_ENRICHMENT,
    ) -> ItemOutcome:
        """Cache lookup, search on miss, then score the candidates."""
        if call_type == CallType.AUTO_ENRICHMENT and item.id in self._out_of_band.get(job.id, ()):
            return ItemOutcome(item_id=item.id, status=None, held=True)

        self.repository.update_item(item.id, status=ItemStatus.IN_PROGRESS)

        cached = self.cache.get(item.label, item.country)
        if cached is not None:
            candidates = [InterestCandidate.from_dict(data) for data in cached]
            logger.debug("Cache hit for '%s' (%s)", item.label, item.country)
        else:
            if throttle is not None:
                waited = await throttle.acquire()
                if waited and not self._is_processing(job.id):
                    return ItemOutcome(item_id=item.id, status=None, retry_count=item.retry_count)

            previous = ErrorType(item.last_error_type) if item.last_error_type else None
            context = CallContext(
                call_type=call_type,
                job_id=job.id,
                retry_attempt=item.retry_count,
                max_retries=self.max_retries,
                previous_error_type=previous,
            )
            try:
                result = await self.search_client.search(item.label, item.country, context=context)
            except SearchError as e:
                logger.warning("Search for '%s' failed (%s): %s", item.label, e.error_type.value, e.message)
                retry_after = e.retry_after if isinstance(e, RateLimitError) else None
                return self._failure_outcome(item, e.error_type, retry_after)

            candidates = result.candidates
            if candidates:
                self.cache.set(item.label, item.country, [c.to_dict() for c in candidates])

        ranked = scorer.rank(
            item.label,
            candidates,
            context_path=item.category_path,
            min_score=options.relevance_threshold,
        )
        suggestions = [
            NewSuggestion(
                label=scored.label,
                external_id=scored.candidate.candidate_id,
                audience=scored.candidate.audience,
                similarity_score=scored.similarity,
                is_best_match=scored.is_best_match,
            )
            for scored in ranked
        ]
        return ItemOutcome(
            item_id=item.id,
            status=ItemStatus.DONE,
            suggestions=suggestions,
            from_cache=cached is not None,
            retry_count=item.retry_count,
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _failure_outcome(
        self,
        item: ItemRecord,
        error_type: ErrorType,
        retry_after: Optional[float] = None,
    ) -> ItemOutcome:
        previous = ErrorType(item.last_error_type) if item.last_error_type else None
        retry = should_retry(error_type, item.retry_count, self.max_retries, previous)
        return ItemOutcome(
            item_id=item.id,
            status=ItemStatus.RETRY if retry else ItemStatus.FAILED,
            error_type=error_type,
            retry_count=item.retry_count + 1,
            retry_after=retry_after,
        )

    def _outcome_for_exception(self, item: ItemRecord, error: BaseException) -> ItemOutcome:
        if isinstance(error, asyncio.TimeoutError):
            logger.warning("Processing of '%s' timed out", item.label)
            return self._failure_outcome(item, ErrorType.NETWORK)

        logger.error("Unexpected error processing '%s': %s", item.label, error, exc_info=error)
        return ItemOutcome(item_id=item.id, status=ItemStatus.FAILED, retry_count=item.retry_count)

    def _persist_outcome(self, item: ItemRecord, outcome: ItemOutcome) -> None:
        if outcome.status is None:
            previous = item.status if item.status != ItemStatus.IN_PROGRESS else ItemStatus.PENDING
            self.repository.update_item(item.id, status=previous)
        elif outcome.status == ItemStatus.DONE:
            self.repository.replace_suggestions(item.id, outcome.suggestions)
            self.repository.update_item(item.id, status=ItemStatus.DONE, last_error_type=None)
        elif outcome.status == ItemStatus.FAILED:
            self.repository.delete_suggestions(item.id)
            self.repository.update_item(
                item.id,
                status=ItemStatus.FAILED,
                retry_count=outcome.retry_count,
                last_error_type=outcome.error_type,
            )
        else:
            self.repository.update_item(
                item.id,
                status=outcome.status,
                retry_count=outcome.retry_count,
                last_error_type=outcome.error_type,
            )

    def _retry_delay(self, outcomes: list[ItemOutcome], passes: int) -> float:
        """Backoff before the next pass when the last one produced retries."""
        retries = [o for o in outcomes if o.status == ItemStatus.RETRY]
        if not retries:
            return 0.0

        delay = min(self.retry_base_delay * (2 ** (passes - 1)), self.retry_max_delay)
        retry_after = max((o.retry_after or 0.0) for o in retries)
        delay = max(delay, min(retry_after, self.retry_max_delay))
        if self.retry_jitter > 0:
            delay += random.uniform(0, self.retry_jitter)
        return delay

    def _stop_admission(self, job_id: str) -> None:
        pool = self._pools.get(job_id)
        if pool is not None:
            pool.cancel()

    def _is_processing(self, job_id: str) -> bool:
        job = self.repository.get_job(job_id)
        return job is not None and job.status == JobStatus.PROCESSING

    def _require_job(self, job_id: str) -> JobRecord:
        job = self.repository.get_job(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    def _load_options(self) -> RunOptions:
        return load_run_options(self.repository, self.batch_size, self.pause_ms)
