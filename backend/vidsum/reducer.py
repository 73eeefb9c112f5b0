import logging
import time
from concurrent.futures import (
    FIRST_EXCEPTION,
    Future,
    ThreadPoolExecutor,
    wait,
)
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

from .chunking import Chunk
from .errors import (
    BackendError,
    ContentSafetyRejected,
    GenerationFailed,
    GenerationTimeout,
)
from .llm_provider import GenerationBackend, GenerationProfile
from .prompts import PromptTemplates
from .runtime import CancelToken, limit_llm

logger = logging.getLogger(__name__)

_POLL_SECONDS = 0.2


@dataclass(frozen=True)
class ReductionResult:
    text: str
    profile: str
    attempts: int
    map_calls: int


class SummaryReducer:
    """Map-reduce summarization over a generation backend.

    Each chunk is summarized independently (concurrently, bounded by
    ``max_workers``), the partial summaries are joined in chunk order and
    one combine call turns them into the final summary with Q&A.
    """

    def __init__(
        self,
        backend: GenerationBackend,
        *,
        standard: GenerationProfile,
        conservative: GenerationProfile,
        templates: Optional[PromptTemplates] = None,
        generation_timeout_seconds: float = 120.0,
        max_workers: int = 4,
    ) -> None:
        self._backend = backend
        self.standard = standard
        self.conservative = conservative
        self._templates = templates or PromptTemplates()
        self._timeout = max(0.001, float(generation_timeout_seconds))
        self._max_workers = max(1, int(max_workers))

    def summarize(
        self,
        chunks: Sequence[Chunk],
        cancel: Optional[CancelToken] = None,
    ) -> ReductionResult:
        """Reduce at the standard profile, retrying once conservatively.

        Only a content-safety rejection triggers the retry; the whole
        map-reduce runs again under the conservative profile.
        """
        try:
            text, calls = self._reduce(chunks, self.standard, cancel)
            return ReductionResult(
                text=text,
                profile=self.standard.name,
                attempts=1,
                map_calls=calls,
            )
        except GenerationFailed as e:
            if e.reason != GenerationFailed.REASON_CONTENT_POLICY:
                raise
            logger.warning(
                "standard profile rejected by safety filter, "
                "retrying with %s profile: %s",
                self.conservative.name,
                e.message,
            )

        text, calls = self._reduce(chunks, self.conservative, cancel)
        return ReductionResult(
            text=text,
            profile=self.conservative.name,
            attempts=2,
            map_calls=calls,
        )

    def reduce(
        self,
        chunks: Sequence[Chunk],
        profile: GenerationProfile,
        cancel: Optional[CancelToken] = None,
    ) -> str:
        text, _ = self._reduce(chunks, profile, cancel)
        return text

    def _reduce(
        self,
        chunks: Sequence[Chunk],
        profile: GenerationProfile,
        cancel: Optional[CancelToken],
    ) -> Tuple[str, int]:
        if not chunks:
            raise GenerationFailed(
                GenerationFailed.REASON_BACKEND_ERROR,
                "nothing to summarize",
            )
        token = cancel or CancelToken()

        try:
            map_prompts = [
                self._templates.render("map", c.text)
                for c in sorted(chunks, key=lambda c: c.index)
            ]
            partials = self._run_all(map_prompts, profile, token)

            combined = "\n\n".join(p for p in partials if p)
            combine_prompt = self._templates.render(
                profile.combine_template,
                combined,
            )
            final = self._run_all([combine_prompt], profile, token)[0]
        except ContentSafetyRejected as e:
            raise GenerationFailed(
                GenerationFailed.REASON_CONTENT_POLICY,
            ) from e
        except GenerationTimeout as e:
            raise GenerationFailed(GenerationFailed.REASON_TIMEOUT) from e
        except BackendError as e:
            logger.warning("generation backend error: %s", e)
            raise GenerationFailed(
                GenerationFailed.REASON_BACKEND_ERROR,
            ) from e

        if not final:
            raise GenerationFailed(
                GenerationFailed.REASON_BACKEND_ERROR,
                "The summary service returned an empty summary.",
            )
        return final, len(map_prompts)

    def _run_all(
        self,
        prompts: List[str],
        profile: GenerationProfile,
        cancel: CancelToken,
    ) -> List[str]:
        """Run prompts concurrently; results keep the order of ``prompts``."""
        cancel.check()
        workers = min(self._max_workers, len(prompts))
        executor = ThreadPoolExecutor(
            max_workers=workers,
            thread_name_prefix="vidsum-gen",
        )
        futures: List[Future] = []
        try:
            futures = [
                executor.submit(self._call, p, profile, cancel)
                for p in prompts
            ]
            pending = set(futures)
            while pending:
                cancel.check()
                done, pending = wait(
                    pending,
                    timeout=_POLL_SECONDS,
                    return_when=FIRST_EXCEPTION,
                )
                for f in sorted(done, key=futures.index):
                    exc = f.exception()
                    if exc is not None:
                        raise exc
            return [f.result() for f in futures]
        finally:
            for f in futures:
                f.cancel()
            executor.shutdown(wait=False, cancel_futures=True)

    def _call(
        self,
        prompt: str,
        profile: GenerationProfile,
        cancel: CancelToken,
    ) -> str:
        cancel.check()
        # waiting for a slot is bounded by the job deadline only
        with limit_llm(timeout_seconds=cancel.remaining()):
            cancel.check()
            timeout = cancel.bound(self._timeout)
            if timeout is None or timeout <= 0:
                raise GenerationTimeout("GENERATION_BUDGET_EXHAUSTED")
            started = time.monotonic()
            text = self._backend.generate(prompt, profile, timeout=timeout)
            if time.monotonic() - started > timeout:
                raise GenerationTimeout("GENERATION_CALL_TIMEOUT")
        return str(text or "").strip()
