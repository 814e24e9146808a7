"""
Stream evaluation utilities for the Windowed Replacement Ensemble.

Provides a synthetic drifting stream, prequential (test-then-train)
evaluation and a side-by-side comparison of ensemble configurations.
"""

from typing import Optional, List, Iterable, Iterator, Tuple

import numpy as np
import pandas as pd
from sklearn.datasets import make_classification
from sklearn.metrics import accuracy_score, f1_score
from joblib import Parallel, delayed

from base_learners import ArrayLike, Instance
from windowed_ensemble import WindowedReplacementEnsemble


def simulate_data_stream(
    n_chunks: int = 50,
    chunk_size: int = 100,
    n_features: int = 10,
    n_classes: int = 3,
    drift_points: Optional[List[int]] = None,
    noise_level: float = 0.1,
    random_state: int = 42,
) -> Iterator[Tuple[ArrayLike, ArrayLike]]:
    """Simulate a data stream with abrupt concept drift.

    Args:
        n_chunks: Number of chunks
        chunk_size: Samples per chunk
        n_features: Number of features
        n_classes: Number of classes
        drift_points: Chunks where a new concept starts
        noise_level: Fraction of labels flipped at random
        random_state: Base seed of the generated concepts

    Yields:
        Tuple of (X_chunk, y_chunk)
    """
    if drift_points is None:
        drift_points = [n_chunks // 3, 2 * n_chunks // 3]

    boundaries = (
        [0] + sorted(p for p in set(drift_points) if 0 < p < n_chunks) + [n_chunks]
    )

    for concept, (start, stop) in enumerate(zip(boundaries[:-1], boundaries[1:])):
        X, y = make_classification(
            n_samples=(stop - start) * chunk_size,
            n_features=n_features,
            n_informative=max(2, n_features // 2),
            n_redundant=max(0, n_features // 4),
            n_classes=n_classes,
            n_clusters_per_class=1,
            flip_y=noise_level,
            random_state=random_state + concept * 1000,
        )

        for offset in range(stop - start):
            chunk = slice(offset * chunk_size, (offset + 1) * chunk_size)
            yield X[chunk], y[chunk]


def prequential_evaluation(
    ensemble: WindowedReplacementEnsemble,
    stream: Iterable[Tuple[ArrayLike, ArrayLike]],
    verbose: int = 0,
) -> pd.DataFrame:
    """Test-then-train evaluation over a chunked stream.

    Every instance is first predicted and then used for training, so the
    ensemble is never scored on data it has already learned from.

    Args:
        ensemble: Ensemble to evaluate (trained in place)
        stream: Iterable of (X_chunk, y_chunk)
        verbose: Print a line per chunk when > 0

    Returns:
        DataFrame with one row per chunk
    """
    history = []

    for chunk_idx, (X, y) in enumerate(stream):
        y_pred = np.zeros(len(y), dtype=int)

        for i, (x_i, y_i) in enumerate(zip(X, y)):
            instance = Instance(x=x_i, y=int(y_i))
            votes = ensemble.get_votes_for_instance(instance)
            y_pred[i] = int(np.argmax(votes)) if len(votes) > 0 else 0
            ensemble.train_on_instance(instance)

        record = {
            "chunk": chunk_idx,
            "n_samples": ensemble.n_instances_seen_,
            "accuracy": accuracy_score(y, y_pred),
            "f1_score": f1_score(y, y_pred, average="weighted", zero_division=0),
            "ensemble_size": len(ensemble.slots_),
            "n_replacements": ensemble.n_replacements_,
        }
        history.append(record)

        if verbose > 0:
            print(
                f"  Chunk #{chunk_idx}: Acc={record['accuracy']:.4f}, "
                f"F1={record['f1_score']:.4f}, size={record['ensemble_size']}"
            )

    return pd.DataFrame(history)


def _evaluate_configuration(config: dict, stream_params: dict) -> dict:
    name = config.pop("name")
    ensemble = WindowedReplacementEnsemble(**config)
    history = prequential_evaluation(
        ensemble, simulate_data_stream(**stream_params)
    )

    return {
        "Configuration": name,
        "Accuracy": history["accuracy"].mean(),
        "Accuracy Std": history["accuracy"].std(),
        "F1 Score": history["f1_score"].mean(),
        "Replacements": ensemble.n_replacements_,
        "Final Size": len(ensemble.slots_),
        **config,
    }


def compare_ensemble_configurations(
    configurations: Optional[List[dict]] = None,
    stream_params: Optional[dict] = None,
    n_jobs: int = -1,
) -> pd.DataFrame:
    """Compare ensemble configurations on the same simulated stream.

    Each configuration runs in its own process; every ensemble still
    consumes its stream strictly sequentially.

    Args:
        configurations: List of dicts with a 'name' key plus EnsembleConfig
            fields
        stream_params: Keyword arguments for simulate_data_stream
        n_jobs: Number of parallel jobs (-1 for all cores)

    Returns:
        DataFrame with one row per configuration
    """
    if configurations is None:
        configurations = [
            {"name": "Default Configuration"},
            {"name": "Global Accounting", "performance_accounting": "global"},
            {"name": "No Look-Ahead Refresh", "look_ahead_refresh": False},
            {"name": "Weighted Training", "weighted_training": True},
            {"name": "Randomized Trees", "randomize_hyperparameters": True},
        ]

    if stream_params is None:
        stream_params = {"n_chunks": 30, "chunk_size": 100}

    results = Parallel(n_jobs=n_jobs, verbose=0)(
        delayed(_evaluate_configuration)(dict(config), stream_params)
        for config in configurations
    )

    return pd.DataFrame(results)
