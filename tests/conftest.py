"""Pytest configuration - add project root to path, shared fixtures."""
import sys
from datetime import datetime
from pathlib import Path

import pytest

ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(ROOT))

from src.decisioning.schema import DecisionRequest
from src.experimentation.engine import ExperimentationEngine
from src.experimentation.schema import (
    Experiment,
    ExperimentConfiguration,
    ExperimentMetrics,
    ExperimentType,
    ExperimentVariant,
    VariantConfiguration,
)

FIXED_NOW = datetime(2024, 3, 5, 10, 30)  # a Tuesday, mid-morning


@pytest.fixture
def fixed_now():
    return FIXED_NOW


@pytest.fixture
def make_experiment():
    """Factory for experiment definitions with sensible defaults."""
    def _make(
        experiment_id="exp_1",
        allocations=(("A", 0.5), ("B", 0.5)),
        type=ExperimentType.AB_TEST,
        primary="purchase",
        traffic_allocation=1.0,
        parameters=None,
        model_ids=None,
        **kwargs,
    ):
        parameters = parameters or {}
        model_ids = model_ids or {}
        variants = [
            ExperimentVariant(
                id=vid,
                allocation=alloc,
                name=f"Variant {vid}",
                configuration=VariantConfiguration(
                    parameters=dict(parameters.get(vid, {})),
                    model_id=model_ids.get(vid),
                ),
            )
            for vid, alloc in allocations
        ]
        return Experiment(
            id=experiment_id,
            name=f"Experiment {experiment_id}",
            variants=variants,
            metrics=ExperimentMetrics(primary=primary),
            type=type,
            configuration=ExperimentConfiguration(traffic_allocation=traffic_allocation),
            **kwargs,
        )
    return _make


@pytest.fixture
def engine():
    """Experimentation engine over an in-memory store, seeded RNG."""
    return ExperimentationEngine(seed=7, clock=lambda: FIXED_NOW)


@pytest.fixture
def running_experiment(engine, make_experiment):
    exp = make_experiment()
    engine.create_experiment(exp)
    engine.start_experiment(exp.id)
    return exp


@pytest.fixture
def make_request():
    """Factory for decision requests built from a JSON-style payload."""
    def _make(request_id="req_1", behavioral=None, objectives=None, constraints=None, options=None, **context):
        payload = {
            "request_id": request_id,
            "customer_id": "cust_1",
            "tenant_id": "tenant_1",
            "decision_type": "next_best_action",
            "context": {"behavioral": behavioral or {}, **context},
            "objectives": objectives if objectives is not None else [
                {"type": "revenue", "weight": 0.5},
                {"type": "retention", "weight": 0.5},
            ],
            "constraints": constraints or [],
            "options": options or {},
        }
        return DecisionRequest.from_dict(payload)
    return _make
