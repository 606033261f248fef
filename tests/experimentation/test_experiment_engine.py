"""Tests for the experimentation engine: lifecycle, assignment, tracking, results."""
import threading
from concurrent.futures import ThreadPoolExecutor

import pytest
from src.decisioning.schema import DecisionOptions, DecisionRequest, DecisionType
from src.errors import InvalidStateError, NotFoundError, ValidationError
from src.experimentation.engine import ExperimentationEngine
from src.experimentation.schema import (
    AssignmentMethod,
    ConversionEvent,
    ExperimentStatus,
    ExperimentType,
    VariantAssignment,
)


def _seed_arm(engine, experiment_id, variant_id, participants, conversions, metric="purchase", prefix=None):
    """Write assignments and events directly to the store for one arm."""
    prefix = prefix or variant_id
    for i in range(participants):
        cid = f"{prefix}_{i}"
        engine.store.save_assignment_if_absent(VariantAssignment(experiment_id, cid, "t1", variant_id))
        engine.store.append_event(ConversionEvent(experiment_id, cid, "t1", variant_id, "visit", 1.0))
        if i < conversions:
            engine.store.append_event(ConversionEvent(experiment_id, cid, "t1", variant_id, metric, 10.0))


# ---------------------------------------------------------------------------
# Definition
# ---------------------------------------------------------------------------


def test_create_stores_draft(engine, make_experiment):
    exp = make_experiment()
    engine.create_experiment(exp)
    stored = engine.get_experiment("exp_1")
    assert stored.status == ExperimentStatus.DRAFT
    assert [v.id for v in stored.variants] == ["A", "B"]


def test_create_forces_draft_status(engine, make_experiment):
    engine.create_experiment(make_experiment(status=ExperimentStatus.RUNNING))
    assert engine.get_experiment("exp_1").status == ExperimentStatus.DRAFT


@pytest.mark.parametrize("allocations", [
    (("A", 0.5), ("B", 0.6)),
    (("A", 0.5), ("B", 0.4)),
    (("A", 1.2), ("B", -0.2)),
])
def test_create_rejects_bad_allocations(engine, make_experiment, allocations):
    with pytest.raises(ValidationError):
        engine.create_experiment(make_experiment(allocations=allocations))
    assert engine.get_experiment("exp_1") is None


def test_create_accepts_allocation_within_tolerance(engine, make_experiment):
    engine.create_experiment(make_experiment(allocations=(("A", 0.5), ("B", 0.505))))
    assert engine.get_experiment("exp_1") is not None


@pytest.mark.parametrize("overrides", [
    {"max_recommendations": "2"},
    {"max_recommendations": 0},
    {"max_recommendations": 1.5},
    {"max_recommendations": True},
    {"timeout": 0},
    {"timeout": "fast"},
    {"debug": "yes"},
    {"include_reasons": 1},
])
def test_create_rejects_bad_option_overrides(engine, make_experiment, overrides):
    with pytest.raises(ValidationError):
        engine.create_experiment(make_experiment(parameters={"A": overrides}))
    assert engine.get_experiment("exp_1") is None


def test_create_accepts_well_typed_option_overrides(engine, make_experiment):
    overrides = {"max_recommendations": 2, "timeout": 0.5, "debug": True, "discount": "15%"}
    engine.create_experiment(make_experiment(parameters={"B": overrides}))
    assert engine.get_experiment("exp_1").get_variant("B").configuration.parameters == overrides


@pytest.mark.parametrize("experiment_id", ["../escaped", "a/b", "..", ".", "exp 1", "exp\n"])
def test_create_rejects_unsafe_ids(engine, make_experiment, experiment_id):
    with pytest.raises(ValidationError):
        engine.create_experiment(make_experiment(experiment_id))
    assert engine.list_experiments() == []


def test_create_rejects_single_variant(engine, make_experiment):
    with pytest.raises(ValidationError):
        engine.create_experiment(make_experiment(allocations=(("A", 1.0),)))


def test_create_rejects_duplicate_variant_ids(engine, make_experiment):
    with pytest.raises(ValidationError):
        engine.create_experiment(make_experiment(allocations=(("A", 0.5), ("A", 0.5))))


def test_create_rejects_unknown_control(engine, make_experiment):
    with pytest.raises(ValidationError):
        engine.create_experiment(make_experiment(control_variant_id="Z"))


def test_create_rejects_bad_traffic(engine, make_experiment):
    with pytest.raises(ValidationError):
        engine.create_experiment(make_experiment(traffic_allocation=0.0))


def test_create_rejects_duplicate_id(engine, make_experiment):
    engine.create_experiment(make_experiment())
    with pytest.raises(ValidationError):
        engine.create_experiment(make_experiment())


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------


def test_lifecycle_happy_path(engine, make_experiment, fixed_now):
    engine.create_experiment(make_experiment())
    engine.start_experiment("exp_1")
    assert engine.get_experiment("exp_1").status == ExperimentStatus.RUNNING
    assert engine.get_experiment("exp_1").start_date == fixed_now

    engine.pause_experiment("exp_1")
    assert engine.get_experiment("exp_1").status == ExperimentStatus.PAUSED
    engine.resume_experiment("exp_1")
    assert engine.get_experiment("exp_1").status == ExperimentStatus.RUNNING

    results = engine.stop_experiment("exp_1", reason="Enough data")
    stored = engine.get_experiment("exp_1")
    assert stored.status == ExperimentStatus.COMPLETED
    assert stored.stop_reason == "Enough data"
    assert stored.end_date == fixed_now
    assert stored.results is not None
    assert results.experiment_id == "exp_1"


def test_illegal_transitions(engine, make_experiment):
    engine.create_experiment(make_experiment())
    with pytest.raises(InvalidStateError):
        engine.pause_experiment("exp_1")
    with pytest.raises(InvalidStateError):
        engine.resume_experiment("exp_1")
    with pytest.raises(InvalidStateError):
        engine.stop_experiment("exp_1")

    engine.start_experiment("exp_1")
    with pytest.raises(InvalidStateError):
        engine.start_experiment("exp_1")

    engine.stop_experiment("exp_1")
    with pytest.raises(InvalidStateError):
        engine.start_experiment("exp_1")
    with pytest.raises(InvalidStateError):
        engine.cancel_experiment("exp_1")


def test_cancel_from_draft(engine, make_experiment):
    engine.create_experiment(make_experiment())
    engine.cancel_experiment("exp_1", reason="Not needed")
    stored = engine.get_experiment("exp_1")
    assert stored.status == ExperimentStatus.CANCELLED
    assert stored.stop_reason == "Not needed"


def test_unknown_experiment_lifecycle(engine):
    with pytest.raises(NotFoundError):
        engine.start_experiment("missing")


def test_list_experiments_filters_and_orders(engine, make_experiment):
    engine.create_experiment(make_experiment("exp_b"))
    engine.create_experiment(make_experiment("exp_a", type=ExperimentType.BANDIT))
    engine.create_experiment(make_experiment("exp_c"))
    engine.start_experiment("exp_c")
    engine.start_experiment("exp_a")

    assert [e.id for e in engine.list_experiments()] == ["exp_a", "exp_b", "exp_c"]
    assert [e.id for e in engine.get_active_experiments()] == ["exp_a", "exp_c"]
    assert [e.id for e in engine.list_experiments(type=ExperimentType.BANDIT)] == ["exp_a"]
    assert [e.id for e in engine.list_experiments(status=ExperimentStatus.DRAFT)] == ["exp_b"]


# ---------------------------------------------------------------------------
# Assignment
# ---------------------------------------------------------------------------


def test_assignment_none_unless_running(engine, make_experiment):
    engine.create_experiment(make_experiment())
    assert engine.get_variant_assignment("exp_1", "c1", "t1") is None
    assert engine.get_variant_assignment("missing", "c1", "t1") is None


def test_assignment_is_permanent(engine, running_experiment):
    first = engine.get_variant_assignment("exp_1", "c1", "t1")
    assert first in ("A", "B")
    for _ in range(5):
        assert engine.get_variant_assignment("exp_1", "c1", "t1") == first


def test_assignment_survives_allocation_change(engine, running_experiment):
    before = {f"c{i}": engine.get_variant_assignment("exp_1", f"c{i}", "t1") for i in range(100)}
    engine.update_variant_allocations("exp_1", {"A": 0.0, "B": 1.0})
    after = {cid: engine.get_variant_assignment("exp_1", cid, "t1") for cid in before}
    assert before == after
    # new customers only see the new table
    assert {engine.get_variant_assignment("exp_1", f"new_{i}", "t1") for i in range(50)} == {"B"}


def test_assignment_survives_pause(engine, running_experiment):
    first = engine.get_variant_assignment("exp_1", "c1", "t1")
    engine.pause_experiment("exp_1")
    assert engine.get_variant_assignment("exp_1", "c1", "t1") is None
    engine.resume_experiment("exp_1")
    assert engine.get_variant_assignment("exp_1", "c1", "t1") == first


def test_assignment_deterministic_across_engines(make_experiment):
    """Two independent engines place a customer in the same variant."""
    results = []
    for seed in (1, 2):
        eng = ExperimentationEngine(seed=seed)
        eng.create_experiment(make_experiment())
        eng.start_experiment("exp_1")
        results.append([eng.get_variant_assignment("exp_1", f"c{i}", "t1") for i in range(100)])
    assert results[0] == results[1]


def test_concurrent_first_assignment_single_variant(engine, running_experiment):
    """Many threads asking at once all see one persisted assignment."""
    barrier = threading.Barrier(16)

    def ask(_):
        barrier.wait()
        return engine.get_variant_assignment("exp_1", "c_race", "t1")

    with ThreadPoolExecutor(max_workers=16) as pool:
        seen = set(pool.map(ask, range(16)))
    assert len(seen) == 1
    assert len(engine.store.read_assignments("exp_1")) == 1


def test_ineligible_customer_stays_unassigned(engine, make_experiment):
    engine.create_experiment(make_experiment(traffic_allocation=0.2))
    engine.start_experiment("exp_1")
    outcomes = {f"c{i}": engine.get_variant_assignment("exp_1", f"c{i}", "t1") for i in range(200)}
    ineligible = [cid for cid, v in outcomes.items() if v is None]
    assert ineligible
    for cid in ineligible:
        assert engine.get_variant_assignment("exp_1", cid, "t1") is None
    assert len(engine.store.read_assignments("exp_1")) == 200 - len(ineligible)


def _stop_once_lock_is_taken(engine, monkeypatch):
    """Stop exp_1 right after the per-experiment lock is first handed out."""
    original = engine._lock_for
    pending = ["stop"]

    def lock_for(experiment_id):
        lock = original(experiment_id)
        if pending:
            pending.pop()
            engine.stop_experiment(experiment_id)
        return lock

    monkeypatch.setattr(engine, "_lock_for", lock_for)


def test_assignment_after_concurrent_stop_is_refused(engine, running_experiment, monkeypatch):
    _stop_once_lock_is_taken(engine, monkeypatch)
    assert engine.get_variant_assignment("exp_1", "c1", "t1") is None
    assert engine.get_experiment("exp_1").status == ExperimentStatus.COMPLETED
    assert engine.store.get_assignment("exp_1", "c1", "t1") is None


def test_update_allocations_validates(engine, running_experiment):
    with pytest.raises(ValidationError):
        engine.update_variant_allocations("exp_1", {"A": 0.7, "B": 0.7})
    with pytest.raises(ValidationError):
        engine.update_variant_allocations("exp_1", {"A": 1.0})
    with pytest.raises(NotFoundError):
        engine.update_variant_allocations("missing", {"A": 0.5, "B": 0.5})


# ---------------------------------------------------------------------------
# apply_experiments
# ---------------------------------------------------------------------------


def _request(customer_id="c1"):
    return DecisionRequest(
        request_id="r1",
        customer_id=customer_id,
        tenant_id="t1",
        decision_type=DecisionType.NEXT_BEST_ACTION,
        options=DecisionOptions(parameters={"existing": 1}),
    )


def test_apply_experiments_merges_overrides(engine, make_experiment):
    exp = make_experiment(
        allocations=(("A", 1.0), ("B", 0.0)),
        parameters={"A": {"max_recommendations": 2, "discount": 15}},
        model_ids={"A": "churn_v2"},
    )
    engine.create_experiment(exp)
    engine.start_experiment(exp.id)

    original = _request()
    rewritten, applied = engine.apply_experiments(original)

    assert applied == ["exp_1"]
    assert rewritten.options.max_recommendations == 2
    assert rewritten.options.parameters == {
        "existing": 1,
        "max_recommendations": 2,
        "discount": 15,
        "preferred_model_id": "churn_v2",
    }
    # input untouched
    assert original.options.parameters == {"existing": 1}
    assert original.options.max_recommendations == 5


def test_apply_experiments_later_id_wins(engine, make_experiment):
    for exp_id, value in (("exp_b", "from_b"), ("exp_a", "from_a")):
        exp = make_experiment(exp_id, allocations=(("A", 1.0), ("B", 0.0)), parameters={"A": {"copy": value}})
        engine.create_experiment(exp)
        engine.start_experiment(exp_id)

    rewritten, applied = engine.apply_experiments(_request())
    assert applied == ["exp_a", "exp_b"]
    assert rewritten.options.parameters["copy"] == "from_b"


def test_apply_experiments_skips_non_running(engine, make_experiment):
    engine.create_experiment(make_experiment())
    rewritten, applied = engine.apply_experiments(_request())
    assert applied == []
    assert rewritten.options.parameters == {"existing": 1}


def test_apply_experiments_ignores_ill_typed_stored_override(engine, make_experiment):
    """Overrides written straight to the store skip creation checks; typed fields keep their value."""
    exp = make_experiment(
        allocations=(("A", 1.0), ("B", 0.0)),
        parameters={"A": {"max_recommendations": "2", "timeout": -1}},
        status=ExperimentStatus.RUNNING,
    )
    engine.store.save_experiment(exp)

    rewritten, applied = engine.apply_experiments(_request())
    assert applied == ["exp_1"]
    assert rewritten.options.max_recommendations == 5
    assert rewritten.options.timeout == 5.0
    assert rewritten.options.parameters["max_recommendations"] == "2"


# ---------------------------------------------------------------------------
# Tracking and results
# ---------------------------------------------------------------------------


def test_track_unassigned_customer_records_nothing(engine, running_experiment):
    assert engine.track_conversion("exp_1", "never_seen", "t1", "purchase", 10.0) is False
    assert engine.store.read_events("exp_1").empty


def test_track_unknown_or_stopped_experiment(engine, running_experiment):
    assert engine.track_conversion("missing", "c1", "t1", "purchase") is False
    engine.get_variant_assignment("exp_1", "c1", "t1")
    engine.pause_experiment("exp_1")
    assert engine.track_conversion("exp_1", "c1", "t1", "purchase") is False


def test_track_records_assigned_variant(engine, running_experiment):
    variant = engine.get_variant_assignment("exp_1", "c1", "t1")
    assert engine.track_conversion("exp_1", "c1", "t1", "purchase", 25.0, {"order": "o1"}) is True
    events = engine.store.read_events("exp_1")
    assert len(events) == 1
    assert events.iloc[0]["variant_id"] == variant
    assert events.iloc[0]["value"] == 25.0


def test_track_non_numeric_value_is_ignored(engine, running_experiment):
    engine.get_variant_assignment("exp_1", "c1", "t1")
    assert engine.track_conversion("exp_1", "c1", "t1", "purchase", "lots") is False


def test_track_after_concurrent_stop_is_refused(engine, running_experiment, monkeypatch):
    engine.get_variant_assignment("exp_1", "c1", "t1")
    _stop_once_lock_is_taken(engine, monkeypatch)
    assert engine.track_conversion("exp_1", "c1", "t1", "purchase", 10.0) is False
    assert engine.store.read_events("exp_1").empty


def test_results_unknown_experiment(engine):
    assert engine.get_experiment_results("missing") is None


def test_results_cold_start(engine, running_experiment):
    results = engine.get_experiment_results("exp_1")
    assert results.status == ExperimentStatus.RUNNING
    assert results.confidence == 0.0
    assert results.winner is None
    assert "No data collected yet" in results.insights
    assert all(r.participants == 0 for r in results.results.values())


def test_results_z_test_scenario(engine, running_experiment):
    """A 40/100 vs B 60/100 -> B wins with confidence above 95%."""
    _seed_arm(engine, "exp_1", "A", 100, 40)
    _seed_arm(engine, "exp_1", "B", 100, 60)

    results = engine.get_experiment_results("exp_1")
    assert results.results["A"].participants == 100
    assert results.results["A"].conversions == 40
    assert results.results["B"].conversion_rate == pytest.approx(0.6)
    assert results.results["B"].significance > 0.95
    assert results.results["A"].significance == 0.0
    assert results.winner == "B"
    assert results.confidence > 0.95
    assert results.status == ExperimentStatus.COMPLETED
    assert results.srm_passed


def test_results_small_sample_no_winner(engine, running_experiment):
    _seed_arm(engine, "exp_1", "A", 20, 2)
    _seed_arm(engine, "exp_1", "B", 20, 15)
    results = engine.get_experiment_results("exp_1")
    assert results.results["B"].significance == 0.0
    assert results.winner is None
    assert results.status == ExperimentStatus.RUNNING


def test_results_count_distinct_customers(engine, running_experiment):
    """Repeat primary-metric events count one conversion but add revenue."""
    _seed_arm(engine, "exp_1", "A", 1, 1)
    engine.store.append_event(ConversionEvent("exp_1", "A_0", "t1", "A", "purchase", 5.0))
    r = engine.get_experiment_results("exp_1").results["A"]
    assert r.participants == 1
    assert r.conversions == 1
    assert r.revenue == pytest.approx(15.0)
    assert r.revenue_per_user == pytest.approx(15.0)


def test_results_refresh_after_tracking(engine, running_experiment):
    engine.get_variant_assignment("exp_1", "c1", "t1")
    assert engine.get_experiment_results("exp_1").insights == ["No data collected yet"]
    engine.track_conversion("exp_1", "c1", "t1", "purchase", 10.0)
    results = engine.get_experiment_results("exp_1")
    assert sum(r.conversions for r in results.results.values()) == 1


def test_results_frozen_after_stop(engine, running_experiment):
    _seed_arm(engine, "exp_1", "A", 100, 40)
    _seed_arm(engine, "exp_1", "B", 100, 60)
    frozen = engine.stop_experiment("exp_1")
    _seed_arm(engine, "exp_1", "A", 100, 100, prefix="late")
    assert engine.get_experiment_results("exp_1").to_dict() == frozen.to_dict()


def test_results_explicit_control(engine, make_experiment):
    engine.create_experiment(make_experiment(control_variant_id="B"))
    engine.start_experiment("exp_1")
    _seed_arm(engine, "exp_1", "A", 100, 60)
    _seed_arm(engine, "exp_1", "B", 100, 40)
    results = engine.get_experiment_results("exp_1")
    assert results.control_variant_id == "B"
    assert results.winner == "A"


def test_results_srm_flags_skewed_split(engine, running_experiment):
    _seed_arm(engine, "exp_1", "A", 300, 30)
    _seed_arm(engine, "exp_1", "B", 100, 10)
    results = engine.get_experiment_results("exp_1")
    assert not results.srm_passed
    assert any("Sample ratio mismatch" in s for s in results.insights)


# ---------------------------------------------------------------------------
# Bandit
# ---------------------------------------------------------------------------


@pytest.fixture
def bandit_engine(make_experiment):
    eng = ExperimentationEngine(seed=11)
    eng.create_experiment(make_experiment("bandit_1", type=ExperimentType.BANDIT))
    eng.start_experiment("bandit_1")
    return eng


def test_bandit_none_for_non_bandit(engine, running_experiment):
    assert engine.optimize_with_bandit("exp_1", "c1", "t1") is None


def test_bandit_cold_start_uses_hash(bandit_engine):
    variant = bandit_engine.optimize_with_bandit("bandit_1", "c1", "t1")
    assignment = bandit_engine.store.get_assignment("bandit_1", "c1", "t1")
    assert assignment.variant_id == variant
    assert assignment.method == AssignmentMethod.HASH


def test_bandit_keeps_existing_assignment(bandit_engine):
    first = bandit_engine.optimize_with_bandit("bandit_1", "c1", "t1")
    _seed_arm(bandit_engine, "bandit_1", "A", 100, 5)
    _seed_arm(bandit_engine, "bandit_1", "B", 100, 60)
    for _ in range(10):
        assert bandit_engine.optimize_with_bandit("bandit_1", "c1", "t1") == first


def test_bandit_favours_better_variant(bandit_engine):
    _seed_arm(bandit_engine, "bandit_1", "A", 200, 10)
    _seed_arm(bandit_engine, "bandit_1", "B", 200, 100)
    chosen = [bandit_engine.optimize_with_bandit("bandit_1", f"new_{i}", "t1") for i in range(50)]
    assert chosen.count("B") >= 48
    assignment = bandit_engine.store.get_assignment("bandit_1", "new_0", "t1")
    assert assignment.method == AssignmentMethod.BANDIT


def test_bandit_applied_to_requests(bandit_engine):
    rewritten, applied = bandit_engine.apply_experiments(_request("c_req"))
    assert applied == ["bandit_1"]
    assert bandit_engine.store.get_assignment("bandit_1", "c_req", "t1") is not None
