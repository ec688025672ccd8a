from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Iterator
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field

from ffireduce.errors import UnreproducibleInput
from ffireduce.model.render import size_of
from ffireduce.model.types import Candidate, Model
from ffireduce.oracle.base import Oracle, Outcome, Signature, capture_signature, classify
from ffireduce.search.cache import OutcomeCache
from ffireduce.search.moves import PASS_ORDER, PassKind, generate

logger = logging.getLogger(__name__)

Size = tuple[int, int]
AcceptCallback = Callable[[Candidate, Size], None]


@dataclass
class ReductionStats:
    generated: int = 0
    evaluations: int = 0
    accepted: int = 0
    invalid: int = 0
    timeouts: int = 0
    rounds: int = 0
    discarded: int = 0
    accepted_by_pass: dict[str, int] = field(default_factory=dict)


@dataclass(frozen=True)
class AcceptedStep:
    pass_kind: str
    description: str
    size: Size


@dataclass(frozen=True)
class ReductionResult:
    original: Model
    reduced: Model
    signature: Signature
    original_size: Size
    final_size: Size
    invocations: int
    cache_hits: int
    elapsed_ms: int
    budget_exhausted: bool
    stats: ReductionStats
    history: list[AcceptedStep]


class ReductionEngine:
    """Greedy restart-on-success reducer.

    Owns the accepted model and the outcome cache for exactly one run; nothing
    is shared between engines. Passes run coarse to fine and any accepted move
    restarts the search from the coarsest pass, so the result is a local
    fixpoint over every move kind.
    """

    def __init__(
        self,
        model: Model,
        oracle: Oracle,
        *,
        signature: Signature | None = None,
        problem: str | None = None,
        jobs: int = 1,
        max_invocations: int | None = None,
        on_accept: AcceptCallback | None = None,
    ) -> None:
        if jobs < 1:
            raise ValueError("jobs must be at least 1")
        self.original = model
        self.accepted = model
        self.accepted_size = size_of(model)
        self.oracle = oracle
        self.signature = signature
        self.problem = problem
        self.jobs = jobs
        self.max_invocations = max_invocations
        self.on_accept = on_accept
        self.cache = OutcomeCache()
        self.stats = ReductionStats()
        self.history: list[AcceptedStep] = []
        self._budget_exhausted = False
        self._invocations_base = oracle.invocations

    @property
    def used_invocations(self) -> int:
        return self.oracle.invocations - self._invocations_base

    def run(self) -> ReductionResult:
        start = time.perf_counter()
        original_size = self.accepted_size
        logger.info(
            "reduction start declarations=%s bytes=%s jobs=%s",
            original_size[0],
            original_size[1],
            self.jobs,
        )
        signature = self.establish_baseline()
        pool = ThreadPoolExecutor(max_workers=self.jobs) if self.jobs > 1 else None
        try:
            self._search(signature, pool)
        finally:
            if pool is not None:
                pool.shutdown(wait=True, cancel_futures=True)
        elapsed_ms = int((time.perf_counter() - start) * 1000)
        logger.info(
            "reduction complete declarations=%s bytes=%s accepted=%s invocations=%s elapsed_ms=%s",
            self.accepted_size[0],
            self.accepted_size[1],
            self.stats.accepted,
            self.used_invocations,
            elapsed_ms,
        )
        logger.debug(
            "outcome cache entries=%s discarded=%s", self.cache.snapshot(), self.stats.discarded
        )
        return ReductionResult(
            original=self.original,
            reduced=self.accepted,
            signature=signature,
            original_size=original_size,
            final_size=self.accepted_size,
            invocations=self.used_invocations,
            cache_hits=self.cache.hits,
            elapsed_ms=elapsed_ms,
            budget_exhausted=self._budget_exhausted,
            stats=self.stats,
            history=list(self.history),
        )

    def establish_baseline(self) -> Signature:
        result = self.oracle.run(self.accepted)
        if self.signature is not None:
            signature = self.signature
            if classify(result, signature) is not Outcome.REPRODUCES:
                raise UnreproducibleInput(
                    "unmodified input does not reproduce the given signature "
                    f"(exit code {result.returncode})"
                )
        else:
            signature = capture_signature(result, problem=self.problem)
        self.cache.put(self.accepted.key(), Outcome.REPRODUCES)
        logger.info(
            "baseline reproduces returncode=%s marker=%r", signature.returncode, signature.marker
        )
        return signature

    def _search(self, signature: Signature, pool: ThreadPoolExecutor | None) -> None:
        index = 0
        while index < len(PASS_ORDER):
            if index == 0:
                self.stats.rounds += 1
            kind = PASS_ORDER[index]
            progress = False
            while self._sweep(kind, signature, pool):
                progress = True
            if self._budget_exhausted:
                logger.warning("invocation budget exhausted max=%s", self.max_invocations)
                return
            index = 0 if progress else index + 1

    def _sweep(
        self, kind: PassKind, signature: Signature, pool: ThreadPoolExecutor | None
    ) -> bool:
        """One pass over the current candidates; True once a candidate is accepted."""
        candidates = generate(self.accepted, kind)
        if pool is None:
            return self._sweep_sequential(candidates, signature)
        return self._sweep_concurrent(candidates, signature, pool)

    def _sweep_sequential(self, candidates: Iterator[Candidate], signature: Signature) -> bool:
        for candidate in candidates:
            self.stats.generated += 1
            key = candidate.key()
            if self.cache.lookup(key) is not None:
                logger.debug("cache hit move=%s", candidate.description)
                continue
            if self._out_of_budget():
                return False
            outcome = self._evaluate(candidate, signature, None)
            self._record(key, outcome)
            if self._maybe_accept(candidate, outcome):
                return True
        return False

    def _sweep_concurrent(
        self,
        candidates: Iterator[Candidate],
        signature: Signature,
        pool: ThreadPoolExecutor,
    ) -> bool:
        exhausted = False
        while not exhausted:
            batch: list[tuple[str, Candidate]] = []
            keys: set[str] = set()
            limit = self._batch_limit()
            while len(batch) < limit:
                try:
                    candidate = next(candidates)
                except StopIteration:
                    exhausted = True
                    break
                self.stats.generated += 1
                key = candidate.key()
                if key in keys or self.cache.lookup(key) is not None:
                    continue
                keys.add(key)
                batch.append((key, candidate))
            if not batch:
                return False
            if self._run_batch(batch, signature, pool):
                return True
        return False

    def _run_batch(
        self,
        batch: list[tuple[str, Candidate]],
        signature: Signature,
        pool: ThreadPoolExecutor,
    ) -> bool:
        cancel = threading.Event()
        order: dict[Future[Outcome], int] = {}
        for position, (_key, candidate) in enumerate(batch):
            future = pool.submit(self._evaluate, candidate, signature, cancel)
            order[future] = position
        pending: set[Future[Outcome]] = set(order)
        winner: Candidate | None = None
        try:
            while pending:
                done, pending = wait(pending, return_when=FIRST_COMPLETED)
                for future in sorted(done, key=lambda item: order[item]):
                    if future.cancelled():
                        continue
                    outcome = future.result()
                    if cancel.is_set():
                        # may have been cut short; never cache it
                        self.stats.discarded += 1
                        continue
                    key, candidate = batch[order[future]]
                    self._record(key, outcome)
                    if self._maybe_accept(candidate, outcome):
                        winner = candidate
                        cancel.set()
                        for other in pending:
                            other.cancel()
        except BaseException:
            # a failed worker stops its siblings before the error surfaces
            cancel.set()
            for other in pending:
                other.cancel()
            raise
        return winner is not None

    def _evaluate(
        self, candidate: Candidate, signature: Signature, cancel: threading.Event | None
    ) -> Outcome:
        return self.oracle.evaluate(candidate, signature, cancel)

    def _record(self, key: str, outcome: Outcome) -> None:
        self.stats.evaluations += 1
        self.cache.put(key, outcome)
        if outcome is Outcome.INVALID:
            self.stats.invalid += 1
        elif outcome is Outcome.TIMEOUT:
            self.stats.timeouts += 1

    def _maybe_accept(self, candidate: Candidate, outcome: Outcome) -> bool:
        if outcome is not Outcome.REPRODUCES:
            return False
        size = size_of(candidate.model)
        if size >= self.accepted_size:
            return False
        self.accepted = candidate.model
        self.accepted_size = size
        self.stats.accepted += 1
        by_pass = self.stats.accepted_by_pass
        by_pass[candidate.pass_kind] = by_pass.get(candidate.pass_kind, 0) + 1
        step = AcceptedStep(candidate.pass_kind, candidate.description, size)
        self.history.append(step)
        logger.info(
            "accepted pass=%s move=%r declarations=%s bytes=%s",
            candidate.pass_kind,
            candidate.description,
            size[0],
            size[1],
        )
        if self.on_accept is not None:
            self.on_accept(candidate, size)
        return True

    def _out_of_budget(self) -> bool:
        if self.max_invocations is None:
            return False
        if self.used_invocations >= self.max_invocations:
            self._budget_exhausted = True
        return self._budget_exhausted

    def _batch_limit(self) -> int:
        if self.max_invocations is None:
            return self.jobs
        remaining = self.max_invocations - self.used_invocations
        if remaining <= 0:
            self._budget_exhausted = True
            return 0
        return min(self.jobs, remaining)
