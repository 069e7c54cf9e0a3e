"""Pipeline stages - parameter selection, analysis, reasoning and persistence."""

from token_filter_pipeline.stages.market import MarketAnalysisStage
from token_filter_pipeline.stages.metadata import MetadataAnalysisStage
from token_filter_pipeline.stages.models import (
    FilterParameterSet,
    FinalReasoning,
    OwnershipEvidence,
    PipelineRun,
    PipelineRunSummary,
    PipelineState,
    StageName,
    StageResult,
    StageScore,
    StageStats,
    TokenCandidate,
)
from token_filter_pipeline.stages.ownership import FirstSeenEntryTimes, OwnershipAnalysisStage
from token_filter_pipeline.stages.parameters import FilterParameterSelector
from token_filter_pipeline.stages.persistence import PersistenceResult, PersistenceStage
from token_filter_pipeline.stages.reasoning import ReasoningStage

__all__ = [
    "FilterParameterSelector",
    "FilterParameterSet",
    "FinalReasoning",
    "FirstSeenEntryTimes",
    "MarketAnalysisStage",
    "MetadataAnalysisStage",
    "OwnershipAnalysisStage",
    "OwnershipEvidence",
    "PersistenceResult",
    "PersistenceStage",
    "PipelineRun",
    "PipelineRunSummary",
    "PipelineState",
    "ReasoningStage",
    "StageName",
    "StageResult",
    "StageScore",
    "StageStats",
    "TokenCandidate",
]
