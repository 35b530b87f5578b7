#!/usr/bin/env python3
"""
Run full experiment demo: create -> start -> simulate -> analyze -> complete.

Writes artifacts/experiments/<id>/analysis.json and summary.json.
"""

import json
import sys
from pathlib import Path

ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(ROOT / "src"))


def main():
    from experiment_engine.config import configure_logging, get_settings
    from experiment_engine.controller import build_controller
    from experiment_engine.simulate import simulate_binary_experiment

    settings = get_settings()
    configure_logging(settings)

    experiment_id = "demo_checkout_001"
    artifacts_dir = ROOT / "artifacts" / "experiments" / experiment_id
    artifacts_dir.mkdir(parents=True, exist_ok=True)

    controller = build_controller(settings)
    if controller.store.get_experiment(experiment_id) is not None:
        print(f"Experiment {experiment_id} already exists in {settings.data_dir}; remove it to rerun")
        sys.exit(1)

    print("1. Creating experiment...")
    controller.create_experiment({
        "id": experiment_id,
        "name": "Checkout button copy",
        "hypothesis": "Clearer copy increases checkout completion",
        "variants": [
            {"id": "control", "name": "Control", "weight": 0.5, "is_control": True, "feature_flag_value": "old"},
            {"id": "variant_a", "name": "variant_a", "weight": 0.5, "feature_flag_value": "new"},
        ],
        "primary_metric": {"id": "checkout", "name": "Checkout completion", "metric_type": "binary"},
        "target_sample_size": 500,
    })
    controller.start(experiment_id)

    print("2. Simulating traffic...")
    summary = simulate_binary_experiment(
        controller,
        experiment_id,
        n_subjects=1000,
        success_rates={"control": 0.55, "variant_a": 0.62},
        exact=True,
    )
    print(f"   Assigned: {summary['counts']}")

    print("3. Running analysis...")
    results = controller.analyze(experiment_id)
    with open(artifacts_dir / "analysis.json", "w") as f:
        json.dump(results.to_dict(), f, indent=2)
    print(f"   {results.overall_recommendation}")

    if results.overall_recommendation.startswith("SHIP"):
        best = max(results.comparisons, key=lambda c: c.frequentist.effect_size)
        print(f"4. Completing with winner {best.variant_id}...")
        controller.complete(experiment_id, best.variant_id)

    with open(artifacts_dir / "summary.json", "w") as f:
        json.dump(controller.get_summary(experiment_id).to_dict(), f, indent=2)

    print(f"\nDone. Artifacts in {artifacts_dir}")


if __name__ == "__main__":
    main()
