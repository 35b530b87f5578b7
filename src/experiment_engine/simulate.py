"""
Traffic simulator.

Pushes synthetic subjects through a running experiment: each subject is
assigned through the controller and then records one binary outcome on the
primary metric, with a success rate per variant. Used by the demo script and
the end-to-end tests.
"""

import logging
from typing import Dict, List, Optional

import numpy as np

from .controller import ExperimentController
from .errors import ExperimentError

logger = logging.getLogger(__name__)

SIMULATOR_SEED = 42


def simulate_binary_experiment(
    controller: ExperimentController,
    experiment_id: str,
    n_subjects: int,
    success_rates: Dict[str, float],
    metric_id: Optional[str] = None,
    exact: bool = False,
    subject_prefix: str = "user",
    random_seed: int = SIMULATOR_SEED,
) -> Dict:
    """
    Simulate a binary-outcome experiment.

    Args:
        controller: Controller serving the experiment (must be running)
        experiment_id: Experiment identifier
        n_subjects: Number of subjects to push through assignment
        success_rates: Success probability per variant id
        metric_id: Metric to record (default: the primary metric)
        exact: If True, each variant gets exactly round(rate * n) successes,
            spread over its subjects at random; otherwise Bernoulli draws
        subject_prefix: Prefix for generated subject ids
        random_seed: Random seed for reproducibility

    Returns:
        Dict with n_assigned, n_skipped, counts and successes per variant
    """
    rng = np.random.default_rng(random_seed)
    experiment = controller.store.get_experiment(experiment_id)
    if experiment is None:
        raise ValueError(f"Unknown experiment: {experiment_id}")
    metric_id = metric_id or experiment.primary_metric.id

    by_variant: Dict[str, List[str]] = {v.id: [] for v in experiment.variants}
    skipped = 0
    for i in range(n_subjects):
        subject_id = f"{subject_prefix}_{i:06d}"
        try:
            variant = controller.assign(experiment_id, subject_id)
        except ExperimentError as e:
            if not e.benign:
                raise
            skipped += 1
            continue
        by_variant[variant.id].append(subject_id)

    successes: Dict[str, int] = {}
    for variant_id, subjects in by_variant.items():
        rate = success_rates.get(variant_id, 0.0)
        n = len(subjects)
        if exact:
            outcomes = np.zeros(n)
            outcomes[rng.permutation(n)[: int(round(rate * n))]] = 1.0
        else:
            outcomes = (rng.random(n) < rate).astype(float)

        for subject_id, value in zip(subjects, outcomes):
            controller.record_metric_event(experiment_id, subject_id, metric_id, float(value))
        successes[variant_id] = int(outcomes.sum())

    summary = {
        "experiment_id": experiment_id,
        "n_assigned": sum(len(s) for s in by_variant.values()),
        "n_skipped": skipped,
        "counts": {vid: len(s) for vid, s in by_variant.items()},
        "successes": successes,
        "random_seed": random_seed,
    }
    logger.info(f"Simulation complete: {summary}")
    return summary
