"""Data models shared by the pipeline stages.

Candidates are immutable: every stage annotation returns a new
TokenCandidate, so one stage never mutates another stage's output.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from enum import Enum
from typing import TYPE_CHECKING, Any

from token_filter_pipeline.ingestor.models import TokenMetadata

if TYPE_CHECKING:
    from token_filter_pipeline.ingestor.models import TokenRecord


class StageName(str, Enum):
    """Stages that annotate candidates, in pipeline order."""

    MARKET = "market"
    METADATA = "metadata"
    OWNERSHIP = "ownership"
    REASONING = "reasoning"


STAGE_ORDER: tuple[StageName, ...] = (
    StageName.MARKET,
    StageName.METADATA,
    StageName.OWNERSHIP,
    StageName.REASONING,
)

# Stages whose score decides survival.
GATING_STAGES: tuple[StageName, ...] = (StageName.MARKET, StageName.METADATA)


class PipelineState(str, Enum):
    """Pipeline orchestrator states."""

    IDLE = "idle"
    SELECTING_PARAMETERS = "selecting_parameters"
    FETCHING_LIST = "fetching_list"
    ANALYZING_MARKET = "analyzing_market"
    ANALYZING_METADATA = "analyzing_metadata"
    ANALYZING_OWNERSHIP = "analyzing_ownership"
    REASONING = "reasoning"
    PERSISTING = "persisting"
    DONE = "done"
    CANCELLED = "cancelled"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (PipelineState.DONE, PipelineState.CANCELLED, PipelineState.FAILED)


def _dt_to_str(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _dt_from_str(value: Any) -> datetime | None:
    if not value:
        return None
    return datetime.fromisoformat(str(value))


def new_run_id(now: datetime | None = None) -> str:
    """Timestamp-derived run id, e.g. ``20260118T093000123456Z``."""
    now = now or datetime.now(UTC)
    return now.astimezone(UTC).strftime("%Y%m%dT%H%M%S%fZ")


@dataclass(frozen=True)
class StageScore:
    """A stage's score for one candidate.

    Attributes:
        stage: Stage that produced the score.
        score: Score in [0, 1] (after clamping).
        strengths: Positive factors cited by the decision function.
        risks: Negative factors cited by the decision function.
        details: Optional sub-scores (e.g. social_score, dev_score).
        clamped: True if the raw score was outside [0, 1].
    """

    stage: StageName
    score: float
    strengths: tuple[str, ...] = ()
    risks: tuple[str, ...] = ()
    details: dict[str, float] = field(default_factory=dict)
    clamped: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "stage": self.stage.value,
            "score": self.score,
            "strengths": list(self.strengths),
            "risks": list(self.risks),
            "details": dict(self.details),
            "clamped": self.clamped,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> StageScore:
        return cls(
            stage=StageName(data["stage"]),
            score=float(data["score"]),
            strengths=tuple(data.get("strengths") or ()),
            risks=tuple(data.get("risks") or ()),
            details=dict(data.get("details") or {}),
            clamped=bool(data.get("clamped", False)),
        )


@dataclass(frozen=True)
class OwnershipEvidence:
    """A tracked wallet's position in a candidate token.

    ``entry_time`` is best-effort: it is the first time the position was
    observed, not an authoritative on-chain open time, and is always flagged
    as approximate.
    """

    wallet_id: int | None
    wallet_name: str
    wallet_address: str
    position_size: float
    value_usd: float | None = None
    entry_time: datetime | None = None
    entry_time_approximate: bool = True
    confidence: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "wallet_id": self.wallet_id,
            "wallet_name": self.wallet_name,
            "wallet_address": self.wallet_address,
            "position_size": self.position_size,
            "value_usd": self.value_usd,
            "entry_time": _dt_to_str(self.entry_time),
            "entry_time_approximate": self.entry_time_approximate,
            "confidence": self.confidence,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> OwnershipEvidence:
        return cls(
            wallet_id=data.get("wallet_id"),
            wallet_name=data["wallet_name"],
            wallet_address=data["wallet_address"],
            position_size=float(data["position_size"]),
            value_usd=data.get("value_usd"),
            entry_time=_dt_from_str(data.get("entry_time")),
            entry_time_approximate=bool(data.get("entry_time_approximate", True)),
            confidence=float(data.get("confidence", 0.0)),
        )


RECOMMENDATIONS = ("buy", "watch", "avoid")


@dataclass(frozen=True)
class FinalReasoning:
    """Structured final assessment for a surviving candidate."""

    market_analysis: str
    sentiment_analysis: str
    social_signals: str
    risk_assessment: str
    final_recommendation: str
    recommendation: str = "watch"
    conviction: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "market_analysis": self.market_analysis,
            "sentiment_analysis": self.sentiment_analysis,
            "social_signals": self.social_signals,
            "risk_assessment": self.risk_assessment,
            "final_recommendation": self.final_recommendation,
            "recommendation": self.recommendation,
            "conviction": self.conviction,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FinalReasoning:
        return cls(
            market_analysis=data["market_analysis"],
            sentiment_analysis=data["sentiment_analysis"],
            social_signals=data["social_signals"],
            risk_assessment=data["risk_assessment"],
            final_recommendation=data["final_recommendation"],
            recommendation=data.get("recommendation", "watch"),
            conviction=float(data.get("conviction", 0.0)),
        )


@dataclass(frozen=True)
class TokenCandidate:
    """A token moving through the pipeline, with every stage's annotations.

    Attributes:
        address: Unique key within a run.
        symbol: Token symbol.
        name: Token name.
        decimals: Token decimals.
        market_snapshot: Numeric market fields captured at fetch time.
        metadata_snapshot: Social/description metadata (metadata stage).
        ownership_evidence: Tracked-wallet positions (ownership stage).
        stage_scores: Scores in the order the stages ran.
        final_reasoning: Final assessment (reasoning stage).
        survived: False once any stage rejects the candidate.
        rejected_by: Stage that rejected the candidate, if any.
        rejection_reason: Why it was rejected.
    """

    address: str
    symbol: str
    name: str
    decimals: int
    market_snapshot: dict[str, float]
    metadata_snapshot: TokenMetadata | None = None
    ownership_evidence: tuple[OwnershipEvidence, ...] = ()
    stage_scores: tuple[StageScore, ...] = ()
    final_reasoning: FinalReasoning | None = None
    survived: bool = True
    rejected_by: StageName | None = None
    rejection_reason: str | None = None

    @classmethod
    def from_record(cls, record: TokenRecord) -> TokenCandidate:
        return cls(
            address=record.address,
            symbol=record.symbol,
            name=record.name,
            decimals=record.decimals,
            market_snapshot=dict(record.market),
        )

    def score_for(self, stage: StageName) -> StageScore | None:
        for s in self.stage_scores:
            if s.stage == stage:
                return s
        return None

    @property
    def gating_mean(self) -> float:
        """Mean of the gating stage scores recorded so far (0.0 if none)."""
        scores = [s.score for s in self.stage_scores if s.stage in GATING_STAGES]
        return sum(scores) / len(scores) if scores else 0.0

    def with_score(self, score: StageScore) -> TokenCandidate:
        """Append a stage score.

        Raises:
            ValueError: If the candidate was already rejected or already
                scored for this stage.
        """
        if not self.survived:
            raise ValueError(f"{self.address}: cannot score a rejected candidate")
        if self.score_for(score.stage) is not None:
            raise ValueError(f"{self.address}: already scored for {score.stage.value}")
        return replace(self, stage_scores=(*self.stage_scores, score))

    def with_metadata(self, metadata: TokenMetadata) -> TokenCandidate:
        return replace(self, metadata_snapshot=metadata)

    def with_evidence(self, evidence: OwnershipEvidence) -> TokenCandidate:
        return replace(self, ownership_evidence=(*self.ownership_evidence, evidence))

    def with_reasoning(self, reasoning: FinalReasoning) -> TokenCandidate:
        return replace(self, final_reasoning=reasoning)

    def reject(self, stage: StageName, reason: str) -> TokenCandidate:
        if not self.survived:
            return self
        return replace(self, survived=False, rejected_by=stage, rejection_reason=reason)

    def to_dict(self) -> dict[str, Any]:
        return {
            "address": self.address,
            "symbol": self.symbol,
            "name": self.name,
            "decimals": self.decimals,
            "market_snapshot": dict(self.market_snapshot),
            "metadata_snapshot": (
                self.metadata_snapshot.to_dict() if self.metadata_snapshot else None
            ),
            "ownership_evidence": [e.to_dict() for e in self.ownership_evidence],
            "stage_scores": [s.to_dict() for s in self.stage_scores],
            "final_reasoning": self.final_reasoning.to_dict() if self.final_reasoning else None,
            "survived": self.survived,
            "rejected_by": self.rejected_by.value if self.rejected_by else None,
            "rejection_reason": self.rejection_reason,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TokenCandidate:
        metadata = data.get("metadata_snapshot")
        reasoning = data.get("final_reasoning")
        rejected_by = data.get("rejected_by")
        return cls(
            address=data["address"],
            symbol=data["symbol"],
            name=data["name"],
            decimals=int(data["decimals"]),
            market_snapshot={k: float(v) for k, v in data["market_snapshot"].items()},
            metadata_snapshot=TokenMetadata.from_dict(metadata) if metadata else None,
            ownership_evidence=tuple(
                OwnershipEvidence.from_dict(e) for e in data.get("ownership_evidence") or ()
            ),
            stage_scores=tuple(StageScore.from_dict(s) for s in data.get("stage_scores") or ()),
            final_reasoning=FinalReasoning.from_dict(reasoning) if reasoning else None,
            survived=bool(data.get("survived", True)),
            rejected_by=StageName(rejected_by) if rejected_by else None,
            rejection_reason=data.get("rejection_reason"),
        )


@dataclass(frozen=True)
class FilterParameterSet:
    """Query parameters for one token-list retrieval.

    Attributes:
        filters: Narrowing parameters (mandatory floors included).
        sort_by: Fixed sort key.
        sort_type: "asc" or "desc".
        limit: Page size.
        source: "decision" if chosen by the decision function, else "fallback".
    """

    filters: dict[str, float]
    sort_by: str
    sort_type: str
    limit: int
    source: str = "decision"

    def to_query_params(self) -> dict[str, Any]:
        params: dict[str, Any] = {"sort_by": self.sort_by, "sort_type": self.sort_type}
        for key, value in self.filters.items():
            params[key] = int(value) if float(value).is_integer() else value
        return params

    def to_dict(self) -> dict[str, Any]:
        return {
            "filters": dict(self.filters),
            "sort_by": self.sort_by,
            "sort_type": self.sort_type,
            "limit": self.limit,
            "source": self.source,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FilterParameterSet:
        return cls(
            filters={k: float(v) for k, v in data["filters"].items()},
            sort_by=data["sort_by"],
            sort_type=data["sort_type"],
            limit=int(data["limit"]),
            source=data.get("source", "decision"),
        )


@dataclass
class StageStats:
    """Per-stage counters."""

    stage: str
    count_in: int = 0
    count_out: int = 0
    count_errored: int = 0
    duration_seconds: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "stage": self.stage,
            "count_in": self.count_in,
            "count_out": self.count_out,
            "count_errored": self.count_errored,
            "duration_seconds": round(self.duration_seconds, 3),
        }


@dataclass
class StageResult:
    """Output of a scoring or enrichment stage."""

    survivors: list[TokenCandidate]
    rejected: list[TokenCandidate]
    stats: StageStats
    errors: list[str] = field(default_factory=list)


@dataclass
class PipelineRun:
    """State accumulated over one pipeline run.

    Created by the orchestrator and handed to the persistence stage once;
    never reused across runs.
    """

    run_id: str
    started_at: datetime
    parameters: FilterParameterSet | None = None
    stages: list[StageStats] = field(default_factory=list)
    fetched: list[TokenCandidate] = field(default_factory=list)
    candidates: list[TokenCandidate] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    finished_at: datetime | None = None

    def score_averages(self) -> dict[str, float]:
        """Average score per stage across the final survivors."""
        totals: dict[str, list[float]] = {}
        for candidate in self.candidates:
            for s in candidate.stage_scores:
                totals.setdefault(s.stage.value, []).append(s.score)
        return {stage: sum(v) / len(v) for stage, v in totals.items()}

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "started_at": self.started_at.isoformat(),
            "finished_at": _dt_to_str(self.finished_at),
            "parameters": self.parameters.to_dict() if self.parameters else None,
            "stages": [s.to_dict() for s in self.stages],
            "fetched_count": len(self.fetched),
            "survivor_count": len(self.candidates),
            "survivors": [c.address for c in self.candidates],
            "score_averages": self.score_averages(),
            "errors": list(self.errors),
        }


@dataclass
class PipelineRunSummary:
    """Result returned to callers of ``run_pipeline``."""

    run_id: str
    state: PipelineState
    stages: list[StageStats]
    survivor_count: int
    persisted: int = 0
    persist_failed: int = 0
    errors: list[str] = field(default_factory=list)
    parameters: FilterParameterSet | None = None

    def stage(self, name: str) -> StageStats | None:
        for s in self.stages:
            if s.stage == name:
                return s
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "state": self.state.value,
            "stages": [s.to_dict() for s in self.stages],
            "survivor_count": self.survivor_count,
            "persisted": self.persisted,
            "persist_failed": self.persist_failed,
            "errors": list(self.errors),
            "parameters": self.parameters.to_dict() if self.parameters else None,
        }
