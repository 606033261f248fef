"""Experimentation module: A/B, multivariate and bandit experiments."""

from .schema import (
    AssignmentMethod,
    ConversionEvent,
    Experiment,
    ExperimentConfiguration,
    ExperimentMetrics,
    ExperimentResults,
    ExperimentStatus,
    ExperimentType,
    ExperimentVariant,
    TargetAudience,
    VariantAssignment,
    VariantConfiguration,
    VariantResult,
)
from .assignment import assign_entities, bucket_variant, hash_to_unit, is_eligible
from .event_store import ExperimentStore, FileExperimentStore, InMemoryExperimentStore
from .analyze import run_analysis, save_results
from .engine import ExperimentationEngine
from .report import render_exec_summary

__all__ = [
    "AssignmentMethod",
    "ConversionEvent",
    "Experiment",
    "ExperimentConfiguration",
    "ExperimentMetrics",
    "ExperimentResults",
    "ExperimentStatus",
    "ExperimentType",
    "ExperimentVariant",
    "TargetAudience",
    "VariantAssignment",
    "VariantConfiguration",
    "VariantResult",
    "assign_entities",
    "bucket_variant",
    "hash_to_unit",
    "is_eligible",
    "ExperimentStore",
    "FileExperimentStore",
    "InMemoryExperimentStore",
    "run_analysis",
    "save_results",
    "ExperimentationEngine",
    "render_exec_summary",
]
