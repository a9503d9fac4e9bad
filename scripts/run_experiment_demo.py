#!/usr/bin/env python3
"""
Run full experiment demo: create -> simulate -> analyze -> report.

Writes artifacts/experiments/<id>/analysis.json and events.csv.
"""

import json
import logging
import sys
from pathlib import Path

ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(ROOT))

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(name)s %(levelname)s %(message)s")


def main():
    from src.abcore import (
        EngineConfig,
        ExperimentStore,
        analyze_bayesian,
        analyze_frequentist,
        analyze_revenue,
        analyze_sequential,
        compute_sample_size,
        create_experiment,
        events_frame,
        run_simulation,
        start_experiment,
    )

    artifacts_dir = ROOT / "artifacts" / "experiments"

    plan = compute_sample_size(baseline_rate=0.10, mde=0.20, num_variants=3)
    print(f"0. Planned sample: {plan.sample_size_per_variant} per variant, {plan.total_sample_size} total")

    store = ExperimentStore(EngineConfig(random_seed=42))
    exp = create_experiment(
        store,
        name="Checkout CTA colour",
        type="abn",
        variants=[
            {"id": "control", "name": "Blue", "is_control": True, "traffic_weight": 34},
            {"id": "green", "name": "Green", "traffic_weight": 33},
            {"id": "orange", "name": "Orange", "traffic_weight": 33},
        ],
        goals=[{"name": "purchase", "is_primary": True}],
        allocation={"type": "fixed", "method": "weighted"},
        sample_size=plan.total_sample_size,
    )
    start_experiment(store, exp.experiment_id)

    print("1. Simulating traffic...")
    summary = run_simulation(
        store,
        exp.experiment_id,
        true_rates={"control": 0.10, "green": 0.12, "orange": 0.10},
        n_visitors=plan.total_sample_size,
        revenue_per_conversion=25.0,
        revenue_noise_std=5.0,
    )
    for vid, counts in summary["variants"].items():
        print(f"   {vid}: {counts['impressions']} impressions, {counts['conversions']} conversions")

    print("2. Running analysis...")
    freq = analyze_frequentist(store, exp.experiment_id, correction="fdr_bh")
    bayes = analyze_bayesian(store, exp.experiment_id)
    seq = analyze_sequential(store, exp.experiment_id)
    revenue = analyze_revenue(store, exp.experiment_id)

    for c in freq.comparisons:
        print(f"   {c.variant_id}: lift {c.relative_lift:+.1%}, adjusted p={c.adjusted_p_value:.4f}")
    for vid, p in bayes.probability_best.items():
        print(f"   P({vid} is best) = {p:.1%}")
    print(f"   Sequential decision: {seq.decision.value} ({seq.decision_reason})")

    print("3. Writing artifacts...")
    out_dir = artifacts_dir / exp.experiment_id
    out_dir.mkdir(parents=True, exist_ok=True)
    analysis = {
        "experiment": exp.to_dict(),
        "frequentist": freq.to_dict(),
        "bayesian": bayes.to_dict(),
        "sequential": seq.to_dict(),
        "revenue": revenue.to_dict(),
    }
    with open(out_dir / "analysis.json", "w") as f:
        json.dump(analysis, f, indent=2)
    events_frame(store, exp.experiment_id).to_csv(out_dir / "events.csv", index=False)

    print(f"\n[OK] Demo complete. Artifacts in {out_dir}:")
    for f in sorted(out_dir.iterdir()):
        print(f"   - {f.name}")


if __name__ == "__main__":
    main()
