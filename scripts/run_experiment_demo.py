#!/usr/bin/env python3
"""
Run full experiment demo: create -> simulate -> analyze -> report -> decide.

Creates artifacts/experiments/<id>/results.json and exec_summary.html.
"""

import logging
import sys
from pathlib import Path

ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(ROOT))


def main():
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(name)s %(levelname)s %(message)s")

    from src.config import EngineConfig
    from src.decisioning.schema import DecisionRequest
    from src.decisioning.service import DecisioningService
    from src.experimentation.analyze import save_results
    from src.experimentation.report import render_exec_summary
    from src.experimentation.schema import (
        Experiment,
        ExperimentMetrics,
        ExperimentVariant,
        VariantConfiguration,
    )
    from src.experimentation.simulate_campaign import run_campaign_simulation

    experiment_id = "demo_offer_001"
    config = EngineConfig(
        store_dir=str(ROOT / "data" / "experiments" / "demo"),
        artifacts_dir=str(ROOT / "artifacts" / "experiments"),
    )
    artifacts_dir = Path(config.artifacts_dir)

    service = DecisioningService.from_config(config, seed=42)
    engine = service.experimentation

    if engine.get_experiment(experiment_id) is None:
        print("1. Creating experiment...")
        engine.create_experiment(Experiment(
            id=experiment_id,
            name="Retention offer copy test",
            variants=[
                ExperimentVariant(id="control", allocation=0.5, name="Control"),
                ExperimentVariant(
                    id="short_list",
                    allocation=0.5,
                    name="Short list",
                    configuration=VariantConfiguration(parameters={"max_recommendations": 2}),
                ),
            ],
            metrics=ExperimentMetrics(primary="purchase"),
        ))
        engine.start_experiment(experiment_id)

        print("2. Simulating traffic...")
        summary = run_campaign_simulation(
            engine,
            experiment_id,
            true_rates={"control": 0.10, "short_list": 0.13},
            n_customers=4000,
        )
        print(f"   Assigned: {summary['assigned']}, converted: {summary['converted']}")
    else:
        print("1-2. Experiment already exists in store, reusing its data")

    print("3. Running analysis...")
    results = engine.get_experiment_results(experiment_id)
    for vid, r in results.results.items():
        print(f"   {vid}: {r.conversions}/{r.participants} = {r.conversion_rate:.3f} "
              f"(significance {r.significance:.3f})")
    print(f"   Winner: {results.winner}, confidence {results.confidence:.3f}")
    save_results(results, artifacts_dir=str(artifacts_dir))

    print("4. Generating executive summary...")
    render_exec_summary(results.to_dict(), experiment_id, artifacts_dir=str(artifacts_dir))

    print("5. Making a decision under the experiment...")
    decision = service.decide(DecisionRequest.from_dict({
        "customer_id": "cust_000001",
        "tenant_id": "tenant_demo",
        "decision_type": "next_best_action",
        "context": {"behavioral": {"churn_risk": 0.85, "lifetime_value": 2000, "engagement_score": 80}},
        "objectives": [{"type": "revenue", "weight": 0.6}, {"type": "engagement", "weight": 0.4}],
    }))
    print(f"   {len(decision.recommendations)} recommendations, experiments {decision.experiments_applied}")
    for rec in decision.recommendations:
        print(f"   - {rec.id}: confidence {rec.confidence:.2f}, expected value {rec.expected_value:.2f}")
    service.close()

    out_dir = artifacts_dir / experiment_id
    print(f"\n[OK] Demo complete. Artifacts in {out_dir}:")
    for f in sorted(out_dir.iterdir()):
        print(f"   - {f.name}")


if __name__ == "__main__":
    main()
