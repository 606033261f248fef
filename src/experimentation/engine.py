"""
Experimentation engine: lifecycle, assignment, conversion tracking, results.

State lives in an injected ExperimentStore. Assignment check-then-set and
event appends run under a per-experiment lock, so concurrent first requests
for the same customer observe a single assignment.
"""

import logging
import math
import re
import threading
from dataclasses import replace
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple

import numpy as np

from ..config import OPTION_FIELDS, EngineConfig, option_error
from ..errors import InvalidStateError, NotFoundError, ValidationError
from .analyze import compute_variant_results, run_analysis
from .assignment import bucket_variant, is_eligible
from .event_store import ExperimentStore, InMemoryExperimentStore
from .schema import (
    AssignmentMethod,
    ConversionEvent,
    Experiment,
    ExperimentResults,
    ExperimentStatus,
    ExperimentType,
    VariantAssignment,
)
from .stats import thompson_sample

logger = logging.getLogger(__name__)

S = ExperimentStatus

# experiment ids double as directory names in the file store
EXPERIMENT_ID_PATTERN = re.compile(r"^[A-Za-z0-9_.-]+$")


class ExperimentationEngine:
    """
    A/B, multivariate and bandit experiments over a pluggable store.

    Usage:
        engine = ExperimentationEngine(seed=42)
        engine.create_experiment(experiment)
        engine.start_experiment(experiment.id)
        variant_id = engine.get_variant_assignment(experiment.id, "cust_1", "tenant_1")
    """

    def __init__(
        self,
        store: Optional[ExperimentStore] = None,
        config: Optional[EngineConfig] = None,
        rng: Optional[np.random.Generator] = None,
        clock: Optional[Callable[[], datetime]] = None,
        seed: Optional[int] = None,
    ):
        self.store = store or InMemoryExperimentStore()
        self.config = config or EngineConfig()
        self.rng = rng if rng is not None else np.random.default_rng(seed)
        self._clock = clock or datetime.utcnow
        self._locks: Dict[str, threading.RLock] = {}
        self._locks_guard = threading.Lock()
        self._rng_lock = threading.Lock()
        self._results_cache: Dict[str, ExperimentResults] = {}

    def _lock_for(self, experiment_id: str) -> threading.RLock:
        with self._locks_guard:
            lock = self._locks.get(experiment_id)
            if lock is None:
                lock = self._locks[experiment_id] = threading.RLock()
            return lock

    def _require(self, experiment_id: str) -> Experiment:
        experiment = self.store.get_experiment(experiment_id)
        if experiment is None:
            raise NotFoundError(f"Experiment not found: {experiment_id}")
        return experiment

    # ------------------------------------------------------------------
    # Definition and lifecycle
    # ------------------------------------------------------------------

    def _validate_allocations(self, allocations: List[float]) -> None:
        for a in allocations:
            if not isinstance(a, (int, float)) or not math.isfinite(a) or not 0 <= a <= 1:
                raise ValidationError(f"Variant allocation must be within [0, 1], got {a!r}")
        total = sum(allocations)
        if abs(total - 1.0) > self.config.allocation_tolerance:
            raise ValidationError(f"Variant allocations must sum to 1.0 (got {total:.4f})")

    def validate_experiment(self, experiment: Experiment) -> None:
        """Raise ValidationError for malformed experiment definitions."""
        if not experiment.id:
            raise ValidationError("Experiment ID is required")
        if (not isinstance(experiment.id, str) or not EXPERIMENT_ID_PATTERN.fullmatch(experiment.id)
                or set(experiment.id) == {"."}):
            raise ValidationError(
                f"Experiment ID may only contain letters, digits, '_', '-' and '.': {experiment.id!r}"
            )
        if not experiment.name:
            raise ValidationError("Experiment name is required")
        if not experiment.variants or len(experiment.variants) < 2:
            raise ValidationError("At least 2 variants are required")

        ids = [v.id for v in experiment.variants]
        if not all(ids):
            raise ValidationError("Every variant needs an id")
        if len(set(ids)) != len(ids):
            raise ValidationError("Variant ids must be unique")
        self._validate_allocations([v.allocation for v in experiment.variants])
        for v in experiment.variants:
            for key in OPTION_FIELDS:
                if key in v.configuration.parameters:
                    error = option_error(key, v.configuration.parameters[key])
                    if error:
                        raise ValidationError(f"Variant {v.id}: {error}")

        if experiment.control_variant_id is not None and experiment.control_variant_id not in ids:
            raise ValidationError(f"Control variant {experiment.control_variant_id} is not a variant")
        if not experiment.metrics or not experiment.metrics.primary:
            raise ValidationError("Primary metric is required")

        cfg = experiment.configuration
        if not 0 < cfg.traffic_allocation <= 1:
            raise ValidationError("Traffic allocation must be within (0, 1]")
        if not 0 < cfg.confidence_level < 1:
            raise ValidationError("Confidence level must be within (0, 1)")
        if cfg.min_sample_size < 1:
            raise ValidationError("Minimum sample size must be positive")
        if experiment.target_audience.size is not None and experiment.target_audience.size <= 0:
            raise ValidationError("Target audience size must be positive")

    def create_experiment(self, experiment: Experiment) -> None:
        """
        Validate and store a new experiment in draft status.

        Raises:
            ValidationError: invalid definition or duplicate id
        """
        self.validate_experiment(experiment)
        with self._lock_for(experiment.id):
            if self.store.get_experiment(experiment.id) is not None:
                raise ValidationError(f"Experiment already exists: {experiment.id}")
            stored = replace(
                experiment,
                status=S.DRAFT,
                start_date=None,
                end_date=None,
                stop_reason=None,
                results=None,
            )
            self.store.save_experiment(stored)
        logger.info(f"Experiment created: {experiment.id} ({experiment.name})")

    def _transition(
        self,
        experiment_id: str,
        allowed_from: Tuple[ExperimentStatus, ...],
        target: ExperimentStatus,
        action: str,
    ) -> Experiment:
        experiment = self._require(experiment_id)
        if experiment.status not in allowed_from:
            raise InvalidStateError(f"Cannot {action} experiment in status: {experiment.status.value}")
        experiment.status = target
        return experiment

    def start_experiment(self, experiment_id: str) -> None:
        with self._lock_for(experiment_id):
            experiment = self._transition(experiment_id, (S.DRAFT,), S.RUNNING, "start")
            experiment.start_date = self._clock()
            self.store.save_experiment(experiment)
        logger.info(f"Experiment started: {experiment_id}")

    def pause_experiment(self, experiment_id: str) -> None:
        with self._lock_for(experiment_id):
            experiment = self._transition(experiment_id, (S.RUNNING,), S.PAUSED, "pause")
            self.store.save_experiment(experiment)
        logger.info(f"Experiment paused: {experiment_id}")

    def resume_experiment(self, experiment_id: str) -> None:
        with self._lock_for(experiment_id):
            experiment = self._transition(experiment_id, (S.PAUSED,), S.RUNNING, "resume")
            self.store.save_experiment(experiment)
        logger.info(f"Experiment resumed: {experiment_id}")

    def stop_experiment(self, experiment_id: str, reason: str = "Manual stop") -> ExperimentResults:
        """
        Complete a running or paused experiment and freeze its final results.

        Returns:
            The frozen ExperimentResults
        """
        with self._lock_for(experiment_id):
            experiment = self._transition(experiment_id, (S.RUNNING, S.PAUSED), S.COMPLETED, "stop")
            experiment.end_date = self._clock()
            experiment.stop_reason = reason
            experiment.results = run_analysis(
                experiment, self.store.read_events(experiment_id), self.config.srm_alpha
            )
            self.store.save_experiment(experiment)
            self._results_cache.pop(experiment_id, None)
        logger.info(f"Experiment stopped: {experiment_id}, reason: {reason}")
        return experiment.results

    def cancel_experiment(self, experiment_id: str, reason: str = "Cancelled") -> None:
        with self._lock_for(experiment_id):
            experiment = self._transition(
                experiment_id, (S.DRAFT, S.RUNNING, S.PAUSED), S.CANCELLED, "cancel"
            )
            experiment.end_date = self._clock()
            experiment.stop_reason = reason
            self.store.save_experiment(experiment)
        logger.info(f"Experiment cancelled: {experiment_id}, reason: {reason}")

    def update_variant_allocations(self, experiment_id: str, allocations: Dict[str, float]) -> None:
        """
        Replace variant allocations. Existing assignments are untouched.

        Args:
            experiment_id: Experiment to edit
            allocations: variant_id -> new allocation, covering every variant
        """
        with self._lock_for(experiment_id):
            experiment = self._require(experiment_id)
            if experiment.status in (S.COMPLETED, S.CANCELLED):
                raise InvalidStateError(
                    f"Cannot edit experiment in status: {experiment.status.value}"
                )
            ids = {v.id for v in experiment.variants}
            if set(allocations) != ids:
                raise ValidationError(f"Allocations must cover exactly the variants {sorted(ids)}")
            self._validate_allocations([allocations[v.id] for v in experiment.variants])
            for v in experiment.variants:
                v.allocation = float(allocations[v.id])
            self.store.save_experiment(experiment)
            self._results_cache.pop(experiment_id, None)
        logger.info(f"Experiment {experiment_id} allocations updated: {allocations}")

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_experiment(self, experiment_id: str) -> Optional[Experiment]:
        return self.store.get_experiment(experiment_id)

    def list_experiments(
        self,
        status: Optional[ExperimentStatus] = None,
        type: Optional[ExperimentType] = None,
    ) -> List[Experiment]:
        experiments = sorted(self.store.list_experiments(), key=lambda e: e.id)
        if status:
            experiments = [e for e in experiments if e.status == status]
        if type:
            experiments = [e for e in experiments if e.type == type]
        return experiments

    def get_active_experiments(self) -> List[Experiment]:
        """Running experiments, ordered by id."""
        return self.list_experiments(status=S.RUNNING)

    # ------------------------------------------------------------------
    # Assignment
    # ------------------------------------------------------------------

    def _store_assignment(
        self,
        experiment: Experiment,
        customer_id: str,
        tenant_id: str,
        variant_id: str,
        method: AssignmentMethod,
    ) -> str:
        stored = self.store.save_assignment_if_absent(VariantAssignment(
            experiment_id=experiment.id,
            customer_id=customer_id,
            tenant_id=tenant_id,
            variant_id=variant_id,
            assigned_at=self._clock(),
            method=method,
        ))
        if stored.variant_id == variant_id:
            logger.info(
                f"Assigned customer {customer_id} to variant {variant_id} "
                f"in experiment {experiment.id} ({method.value})"
            )
        return stored.variant_id

    def get_variant_assignment(self, experiment_id: str, customer_id: str, tenant_id: str) -> Optional[str]:
        """
        Variant for a customer, assigning on first eligible request.

        Returns:
            variant_id, or None when the experiment is not running, unknown,
            or the customer falls outside the traffic allocation
        """
        experiment = self.store.get_experiment(experiment_id)
        if experiment is None or experiment.status != S.RUNNING:
            return None

        with self._lock_for(experiment_id):
            # a concurrent stop may have landed before the lock was taken
            experiment = self.store.get_experiment(experiment_id)
            if experiment is None or experiment.status != S.RUNNING:
                return None
            existing = self.store.get_assignment(experiment_id, customer_id, tenant_id)
            if existing is not None:
                return existing.variant_id
            if not is_eligible(experiment, customer_id, tenant_id):
                return None
            variant_id = bucket_variant(experiment, customer_id)
            return self._store_assignment(experiment, customer_id, tenant_id, variant_id, AssignmentMethod.HASH)

    def optimize_with_bandit(self, experiment_id: str, customer_id: str, tenant_id: str) -> Optional[str]:
        """
        Thompson-sampling assignment for running bandit experiments.

        An existing assignment is returned unchanged. While any variant has no
        data yet, falls back to deterministic bucketing.
        """
        experiment = self.store.get_experiment(experiment_id)
        if experiment is None or experiment.type != ExperimentType.BANDIT or experiment.status != S.RUNNING:
            return None

        with self._lock_for(experiment_id):
            experiment = self.store.get_experiment(experiment_id)
            if experiment is None or experiment.status != S.RUNNING:
                return None
            existing = self.store.get_assignment(experiment_id, customer_id, tenant_id)
            if existing is not None:
                return existing.variant_id
            if not is_eligible(experiment, customer_id, tenant_id):
                return None

            results = compute_variant_results(experiment, self.store.read_events(experiment_id))
            if any(r.participants == 0 for r in results.values()):
                variant_id = bucket_variant(experiment, customer_id)
                method = AssignmentMethod.HASH
            else:
                arms = {vid: (r.conversions, r.participants) for vid, r in results.items()}
                with self._rng_lock:
                    variant_id, draws = thompson_sample(arms, self.rng)
                logger.debug(f"Thompson draws for {experiment_id}: {draws}")
                method = AssignmentMethod.BANDIT
            return self._store_assignment(experiment, customer_id, tenant_id, variant_id, method)

    def apply_experiments(self, request) -> Tuple[Any, List[str]]:
        """
        Rewrite a DecisionRequest with the customer's variant overrides.

        Running experiments are evaluated in id order; a later experiment's
        override wins over an earlier one for the same key.

        Returns:
            Tuple of (new request, applied experiment ids)
        """
        applied = []
        options = request.options
        for experiment in self.get_active_experiments():
            if experiment.type == ExperimentType.BANDIT:
                variant_id = self.optimize_with_bandit(experiment.id, request.customer_id, request.tenant_id)
            else:
                variant_id = self.get_variant_assignment(experiment.id, request.customer_id, request.tenant_id)
            if not variant_id:
                continue
            variant = experiment.get_variant(variant_id)
            if variant is None:
                continue

            overrides = dict(variant.configuration.parameters)
            if variant.configuration.model_id:
                overrides["preferred_model_id"] = variant.configuration.model_id
            options = options.with_overrides(overrides)
            applied.append(experiment.id)

        return replace(request, options=options), applied

    # ------------------------------------------------------------------
    # Tracking and results
    # ------------------------------------------------------------------

    def track_conversion(
        self,
        experiment_id: str,
        customer_id: str,
        tenant_id: str,
        metric: str,
        value: float = 1.0,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> bool:
        """
        Record a metric for an assigned customer in a running experiment.

        Never raises for unknown or ineligible input.

        Returns:
            True if an event was recorded
        """
        experiment = self.store.get_experiment(experiment_id)
        if experiment is None or experiment.status != S.RUNNING:
            return False
        try:
            numeric = float(value)
        except (TypeError, ValueError):
            logger.warning(f"Ignoring non-numeric value {value!r} for {experiment_id}/{metric}")
            return False

        with self._lock_for(experiment_id):
            experiment = self.store.get_experiment(experiment_id)
            if experiment is None or experiment.status != S.RUNNING:
                return False
            assignment = self.store.get_assignment(experiment_id, customer_id, tenant_id)
            if assignment is None:
                return False
            self.store.append_event(ConversionEvent(
                experiment_id=experiment_id,
                customer_id=customer_id,
                tenant_id=tenant_id,
                variant_id=assignment.variant_id,
                metric=metric,
                value=numeric,
                timestamp=self._clock(),
                metadata=dict(metadata or {}),
            ))
            self._results_cache.pop(experiment_id, None)
        logger.info(
            f"Tracked conversion for experiment {experiment_id}, "
            f"variant {assignment.variant_id}: {metric} = {numeric}"
        )
        return True

    def get_experiment_results(self, experiment_id: str) -> Optional[ExperimentResults]:
        """
        Results computed from the full event log.

        A cached copy is served until the next tracked conversion or
        allocation change. Completed experiments return their frozen results.
        Unknown ids give None; experiments without data give an empty running
        result.
        """
        experiment = self.store.get_experiment(experiment_id)
        if experiment is None:
            return None
        if experiment.status == S.COMPLETED and experiment.results is not None:
            return experiment.results
        with self._lock_for(experiment_id):
            cached = self._results_cache.get(experiment_id)
            if cached is not None:
                return cached
            results = run_analysis(experiment, self.store.read_events(experiment_id), self.config.srm_alpha)
            self._results_cache[experiment_id] = results
        return results
