"""
Summarization job orchestration.

A job walks Start -> AuthChecked -> BalanceChecked, then either takes a
cached result for the same URL or extracts, chunks and reduces the
transcript, and finally commits: the result is persisted first and the
requester is debited after. Any failure before the commit leaves the ledger
and the coin balance untouched.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Tuple

from . import chunking
from .chunking import Encoding
from .errors import (
    CommitError,
    GenerationFailed,
    InsufficientFunds,
    JobConflict,
    LedgerError,
    NoTranscript,
    PipelineError,
    Unauthorized,
)
from .ledger import CoinAccount, JobLedger
from .reducer import SummaryReducer
from .runtime import CancelToken
from .transcript_source import TranscriptSource, title_of

logger = logging.getLogger(__name__)


class JobState(str, Enum):
    START = "start"
    AUTH_CHECKED = "auth_checked"
    BALANCE_CHECKED = "balance_checked"
    CACHE_HIT = "cache_hit"
    EXTRACTING = "extracting"
    CHUNKING = "chunking"
    REDUCING = "reducing"
    COMMITTING = "committing"
    DONE = "done"
    FAILED = "failed"


STATUS_CACHED = "cached"
STATUS_COMPLETED = "completed"


@dataclass(frozen=True)
class SubmitResult:
    job_id: str
    status: str
    result_text: str
    title: Optional[str]
    charged: bool
    profile: Optional[str] = None
    states: Tuple[str, ...] = ()


@dataclass
class _JobRun:
    job_id: str
    requester_id: str
    url: str
    state: JobState = JobState.START
    history: List[JobState] = field(default_factory=lambda: [JobState.START])

    def advance(self, state: JobState) -> None:
        logger.debug(
            "job %s: %s -> %s",
            self.job_id,
            self.state.value,
            state.value,
        )
        self.state = state
        self.history.append(state)

    def states(self) -> Tuple[str, ...]:
        return tuple(s.value for s in self.history)


class JobOrchestrator:
    def __init__(
        self,
        *,
        transcript_source: TranscriptSource,
        reducer: SummaryReducer,
        ledger: JobLedger,
        account: CoinAccount,
        minimum_cost: int = 10,
        max_chunk_size: int = 8000,
        chunk_overlap: int = 200,
        encoding: Optional[Encoding] = None,
        job_timeout_seconds: Optional[float] = None,
    ) -> None:
        self._source = transcript_source
        self._reducer = reducer
        self._ledger = ledger
        self._account = account
        self._cost = int(minimum_cost)
        self._max_chunk_size = int(max_chunk_size)
        self._overlap = int(chunk_overlap)
        self._encoding = encoding
        self._job_timeout = job_timeout_seconds

    def submit(
        self,
        requester_id: Optional[str],
        source_url: str,
        job_id: str,
        cancel: Optional[CancelToken] = None,
    ) -> SubmitResult:
        if not str(job_id or "").strip():
            raise ValueError("job_id is required")
        run = _JobRun(
            job_id=job_id,
            requester_id=str(requester_id or ""),
            url=str(source_url or "").strip(),
        )
        token = cancel or CancelToken(self._job_timeout)

        try:
            result = self._run(run, token)
        except PipelineError as e:
            run.advance(JobState.FAILED)
            logger.info(
                "job %s failed at %s: %s",
                job_id,
                run.history[-2].value,
                e.code,
            )
            raise
        except LedgerError as e:
            run.advance(JobState.FAILED)
            logger.error("job %s ledger failure: %s", job_id, e)
            raise CommitError() from e

        logger.info(
            "job %s %s (charged=%s, profile=%s)",
            job_id,
            result.status,
            result.charged,
            result.profile or "-",
        )
        return result

    def _run(self, run: _JobRun, token: CancelToken) -> SubmitResult:
        if not run.requester_id:
            raise Unauthorized()
        balance = self._account.get_balance(run.requester_id)
        if balance is None:
            raise Unauthorized()
        run.advance(JobState.AUTH_CHECKED)

        replay = self._replay(run)
        if replay is not None:
            return replay

        if balance < self._cost:
            raise InsufficientFunds()
        run.advance(JobState.BALANCE_CHECKED)

        cached = self._ledger.find_by_url(run.url)
        if cached is not None:
            run.advance(JobState.CACHE_HIT)
            token.check()
            run.advance(JobState.COMMITTING)
            charged = self._debit(run)
            run.advance(JobState.DONE)
            return SubmitResult(
                job_id=run.job_id,
                status=STATUS_CACHED,
                result_text=cached.text,
                title=cached.title,
                charged=charged,
                states=run.states(),
            )

        run.advance(JobState.EXTRACTING)
        try:
            segments = self._source.fetch(run.url)
        except PipelineError:
            raise
        except Exception as e:
            logger.exception(
                "job %s: unexpected transcript failure",
                run.job_id,
            )
            raise NoTranscript() from e
        if not segments or not chunking.join_segments(segments):
            raise NoTranscript()
        title = title_of(segments)
        token.check()

        run.advance(JobState.CHUNKING)
        chunks = chunking.split(
            segments,
            self._max_chunk_size,
            self._overlap,
            encoding=self._encoding,
        )
        logger.debug("job %s: %d chunks", run.job_id, len(chunks))

        run.advance(JobState.REDUCING)
        try:
            reduction = self._reducer.summarize(chunks, token)
        except PipelineError:
            raise
        except Exception as e:
            logger.exception(
                "job %s: unexpected generation failure",
                run.job_id,
            )
            raise GenerationFailed(
                GenerationFailed.REASON_BACKEND_ERROR,
            ) from e
        token.check()

        run.advance(JobState.COMMITTING)
        try:
            self._ledger.persist(
                run.job_id,
                {
                    "requester_id": run.requester_id,
                    "url": run.url,
                    "title": title,
                },
                reduction.text,
            )
        except LedgerError as e:
            logger.error(
                "job %s: persist failed, not debiting: %s",
                run.job_id,
                e,
            )
            raise CommitError() from e
        charged = self._debit(run)
        run.advance(JobState.DONE)

        return SubmitResult(
            job_id=run.job_id,
            status=STATUS_COMPLETED,
            result_text=reduction.text,
            title=title,
            charged=charged,
            profile=reduction.profile,
            states=run.states(),
        )

    def _replay(self, run: _JobRun) -> Optional[SubmitResult]:
        """Result of an earlier run of this job id by the same requester."""
        existing = self._ledger.find_by_id(run.job_id)
        if existing is not None:
            if (
                existing.requester_id != run.requester_id
                or existing.url != run.url
            ):
                raise JobConflict()
            if not existing.completed:
                return None
            logger.info(
                "job %s already completed, returning stored result",
                run.job_id,
            )
            run.advance(JobState.DONE)
            return SubmitResult(
                job_id=run.job_id,
                status=STATUS_COMPLETED,
                result_text=existing.text,
                title=existing.title,
                charged=False,
                states=run.states(),
            )

        # cache hits are never persisted; the spend record marks them paid
        spent_url = self._account.find_spend(run.requester_id, run.job_id)
        if not spent_url:
            return None
        if spent_url != run.url:
            raise JobConflict()
        cached = self._ledger.find_by_url(run.url)
        if cached is None:
            return None
        logger.info("job %s already paid, returning cached result", run.job_id)
        run.advance(JobState.DONE)
        return SubmitResult(
            job_id=run.job_id,
            status=STATUS_CACHED,
            result_text=cached.text,
            title=cached.title,
            charged=False,
            states=run.states(),
        )

    def _debit(self, run: _JobRun) -> bool:
        # The deliverable exists at this point; a failed debit is a
        # reconciliation item, never a failed job.
        try:
            self._account.debit(run.requester_id, self._cost)
        except (InsufficientFunds, LedgerError) as e:
            logger.error(
                "RECONCILE missed debit job=%s requester=%s amount=%d: %s",
                run.job_id,
                run.requester_id,
                self._cost,
                e,
            )
            return False

        try:
            self._account.record_spend(
                run.requester_id,
                run.job_id,
                self._cost,
                run.url,
            )
        except LedgerError as e:
            logger.warning(
                "job %s: could not record coin spend: %s",
                run.job_id,
                e,
            )
        return True
