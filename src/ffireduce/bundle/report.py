from __future__ import annotations

from pydantic import BaseModel, Field

from ffireduce.oracle.base import Signature
from ffireduce.search.engine import ReductionResult


class SizeReport(BaseModel):
    declarations: int
    bytes: int


class StepReport(BaseModel):
    pass_kind: str
    description: str
    declarations: int
    bytes: int


class ReductionReport(BaseModel):
    original_size: SizeReport
    final_size: SizeReport
    invocations: int
    cache_hits: int
    evaluations: int
    accepted_moves: int
    invalid_candidates: int
    timeouts: int
    rounds: int
    elapsed_ms: int
    budget_exhausted: bool = False
    signature: Signature
    case_sha256: str | None = None
    accepted_by_pass: dict[str, int] = Field(default_factory=dict)
    steps: list[StepReport] = Field(default_factory=list)

    @classmethod
    def from_result(cls, result: ReductionResult) -> ReductionReport:
        stats = result.stats
        return cls(
            original_size=SizeReport(
                declarations=result.original_size[0], bytes=result.original_size[1]
            ),
            final_size=SizeReport(declarations=result.final_size[0], bytes=result.final_size[1]),
            invocations=result.invocations,
            cache_hits=result.cache_hits,
            evaluations=stats.evaluations,
            accepted_moves=stats.accepted,
            invalid_candidates=stats.invalid,
            timeouts=stats.timeouts,
            rounds=stats.rounds,
            elapsed_ms=result.elapsed_ms,
            budget_exhausted=result.budget_exhausted,
            signature=result.signature,
            accepted_by_pass=dict(stats.accepted_by_pass),
            steps=[
                StepReport(
                    pass_kind=step.pass_kind,
                    description=step.description,
                    declarations=step.size[0],
                    bytes=step.size[1],
                )
                for step in result.history
            ],
        )
