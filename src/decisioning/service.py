"""
Decisioning service: the seam between experiments and decisions.

A decision request is first rewritten by any running experiments the customer
is assigned to, then run through the decision engine, and the result is kept
in the decision history.
"""

import logging
import uuid
from dataclasses import replace
from typing import Any, Dict, Optional

from ..config import EngineConfig
from ..experimentation.engine import ExperimentationEngine
from ..experimentation.event_store import FileExperimentStore, InMemoryExperimentStore
from .engine import DecisionEngine
from .history import DecisionHistory
from .providers import FeatureProvider, ModelRegistry
from .schema import DecisionRequest, DecisionResult

logger = logging.getLogger(__name__)


class DecisioningService:
    """
    Facade wiring ExperimentationEngine -> DecisionEngine -> DecisionHistory.

    Usage:
        service = DecisioningService.from_config(EngineConfig.from_env())
        result = service.decide(request)
        service.track_conversion("exp_1", "cust_1", "tenant_1", "purchase", 49.0)
    """

    def __init__(
        self,
        decision_engine: Optional[DecisionEngine] = None,
        experimentation: Optional[ExperimentationEngine] = None,
        history: Optional[DecisionHistory] = None,
    ):
        self.decision_engine = decision_engine or DecisionEngine()
        self.experimentation = experimentation or ExperimentationEngine()
        self.history = history or DecisionHistory()

    @classmethod
    def from_config(
        cls,
        config: EngineConfig,
        feature_provider: Optional[FeatureProvider] = None,
        model_registry: Optional[ModelRegistry] = None,
        seed: Optional[int] = None,
    ) -> "DecisioningService":
        """Build a service whose store is file-backed when config.store_dir is set."""
        store = FileExperimentStore(config.store_dir) if config.store_dir else InMemoryExperimentStore()
        return cls(
            decision_engine=DecisionEngine(
                feature_provider=feature_provider,
                model_registry=model_registry,
                config=config,
            ),
            experimentation=ExperimentationEngine(store=store, config=config, seed=seed),
        )

    def close(self) -> None:
        self.decision_engine.close()

    def decide(self, request: DecisionRequest) -> DecisionResult:
        """
        Apply experiments, make the decision, record it.

        A missing request_id is replaced with a generated one.

        Raises:
            ValidationError: malformed request or request_id already decided
        """
        if not request.request_id:
            request = replace(request, request_id=f"req_{uuid.uuid4().hex[:12]}")

        self.decision_engine.validate_request(request)
        self.history.reserve(request.request_id)
        try:
            rewritten, applied = self.experimentation.apply_experiments(request)
            if applied:
                logger.info(f"Request {request.request_id}: experiments applied {applied}")
            result = self.decision_engine.make_decision(rewritten, experiments_applied=applied)
            self.history.append(result)
        except Exception:
            self.history.release(request.request_id)
            raise
        return result

    def get_decision(self, request_id: str) -> Optional[DecisionResult]:
        return self.history.get(request_id)

    def track_conversion(
        self,
        experiment_id: str,
        customer_id: str,
        tenant_id: str,
        metric: str,
        value: float = 1.0,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> bool:
        return self.experimentation.track_conversion(
            experiment_id, customer_id, tenant_id, metric, value, metadata
        )
