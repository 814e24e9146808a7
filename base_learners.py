"""
Base Learners for the Windowed Replacement Ensemble.

This module defines the capability every ensemble member must offer and the
adapters that plug incremental learners into the ensemble:
1. HoeffdingTreeLearner wraps river's incremental decision tree (default)
2. SklearnIncrementalLearner wraps any scikit-learn estimator with partial_fit

Votes are numpy vectors indexed by the integer class label, so a member that
has only seen classes {0, 2} returns a vector of length 3.

"""

from typing import Optional, Callable, Dict, Any, Sequence, Union
from dataclasses import dataclass
import copy
import inspect
import random
import warnings

import numpy as np
from sklearn.base import ClassifierMixin, clone
from sklearn.linear_model import SGDClassifier, Perceptron
from river.tree import HoeffdingTreeClassifier


# ============================================================================
# TYPE DEFINITIONS
# ============================================================================

ArrayLike = np.ndarray


@dataclass
class Instance:
    """A single stream instance.

    Attributes:
        x: Feature vector
        y: True class label (integer index), None when only predicting
        weight: Instance weight used for training
    """

    x: ArrayLike
    y: Optional[int] = None
    weight: float = 1.0


# ============================================================================
# LEARNER CAPABILITY
# ============================================================================


class BaseLearner:
    """Capability required from any ensemble member."""

    def train(self, instance: Instance) -> None:
        """Update the learner with one labelled instance."""
        raise NotImplementedError

    def predict(self, instance: Instance) -> ArrayLike:
        """Return per-class scores indexed by class label."""
        raise NotImplementedError

    def copy(self) -> "BaseLearner":
        """Return an independent deep clone, learned state included."""
        raise NotImplementedError

    def reset(self) -> None:
        """Return to the untrained state."""
        raise NotImplementedError

    def training_weight_seen(self) -> float:
        """Total instance weight absorbed since the last reset."""
        raise NotImplementedError

    def set_seed(self, seed: int) -> None:
        """Seed the learner's internal randomness, if it has any."""
        raise NotImplementedError


def _votes_from_dict(proba: Dict[Any, float]) -> ArrayLike:
    """Turn a {label: score} mapping into a label-indexed vector."""
    if not proba:
        return np.zeros(0)

    votes = np.zeros(int(max(proba)) + 1)
    for label, score in proba.items():
        votes[int(label)] = score
    return votes


# ============================================================================
# RIVER ADAPTER
# ============================================================================


class HoeffdingTreeLearner(BaseLearner):
    """Incremental decision tree backed by river's HoeffdingTreeClassifier.

    Args:
        seed: Seed forwarded to the tree when it accepts one
        **params: Hyperparameters for HoeffdingTreeClassifier
    """

    def __init__(self, seed: Optional[int] = None, **params):
        self.params = params
        self.seed = seed
        self.model = HoeffdingTreeClassifier(**params)
        self.reset()

    def _seed_params(self) -> Optional[Dict[str, int]]:
        # HoeffdingTreeClassifier is deterministic; other river trees take a seed
        if self.seed is None:
            return None
        if "seed" not in inspect.signature(type(self.model)).parameters:
            return None
        return {"seed": self.seed}

    def _to_features(self, x: ArrayLike) -> Dict[int, float]:
        return {i: float(v) for i, v in enumerate(np.asarray(x).ravel())}

    def train(self, instance: Instance) -> None:
        self.model.learn_one(
            self._to_features(instance.x), int(instance.y), w=instance.weight
        )
        self._weight_seen += instance.weight

    def predict(self, instance: Instance) -> ArrayLike:
        if self._weight_seen == 0:
            return np.zeros(0)
        return _votes_from_dict(
            self.model.predict_proba_one(self._to_features(instance.x))
        )

    def copy(self) -> "HoeffdingTreeLearner":
        return copy.deepcopy(self)

    def reset(self) -> None:
        self.model = self.model.clone(self._seed_params())
        self._weight_seen = 0.0

    def training_weight_seen(self) -> float:
        return self._weight_seen

    def set_seed(self, seed: int) -> None:
        """Record the seed; it takes effect at the next reset."""
        self.seed = seed


# ============================================================================
# SCIKIT-LEARN ADAPTER
# ============================================================================


class SklearnIncrementalLearner(BaseLearner):
    """Wrap a scikit-learn estimator that supports ``partial_fit``.

    Parameters
    ----------
    estimator : ClassifierMixin
        Unfitted estimator used as a prototype
    classes : sequence of int
        Every class label the stream can produce. scikit-learn needs the
        full list on the first ``partial_fit`` call.
    seed : int, optional
        Forwarded as ``random_state`` when the estimator accepts one
    """

    def __init__(
        self,
        estimator: ClassifierMixin,
        classes: Sequence[int],
        seed: Optional[int] = None,
    ):
        if classes is None or len(classes) == 0:
            raise ValueError(
                "classes must be provided for scikit-learn learners"
            )

        if not hasattr(estimator, "partial_fit"):
            warnings.warn(
                f"{type(estimator).__name__} does not support partial_fit. "
                "It cannot be trained one instance at a time."
            )

        self.prototype = clone(estimator)
        self.classes = np.asarray(sorted(int(c) for c in classes))
        self.n_classes = int(self.classes.max()) + 1
        self.seed = seed
        self.reset()
        if seed is not None:
            self.set_seed(seed)

    def train(self, instance: Instance) -> None:
        X = np.asarray(instance.x, dtype=float).reshape(1, -1)
        y = np.array([int(instance.y)])
        self.estimator.partial_fit(
            X, y, classes=self.classes, sample_weight=np.array([instance.weight])
        )
        self._weight_seen += instance.weight

    def predict(self, instance: Instance) -> ArrayLike:
        if self._weight_seen == 0:
            return np.zeros(0)

        X = np.asarray(instance.x, dtype=float).reshape(1, -1)
        # SGDClassifier only exposes predict_proba for probabilistic losses
        if hasattr(self.estimator, "predict_proba"):
            scores = self.estimator.predict_proba(X)[0]
        else:
            scores = self._softmax_decision(X)

        votes = np.zeros(self.n_classes)
        votes[self.estimator.classes_.astype(int)] = scores
        return votes

    def _softmax_decision(self, X: ArrayLike) -> ArrayLike:
        decision = self.estimator.decision_function(X)
        if decision.ndim == 1 or decision.shape[1] == 1:
            # Binary classification
            margin = np.ravel(decision)[0]
            decision = np.array([-margin, margin])
        else:
            decision = decision[0]
        exp = np.exp(decision - decision.max())
        return exp / exp.sum()

    def copy(self) -> "SklearnIncrementalLearner":
        return copy.deepcopy(self)

    def reset(self) -> None:
        self.estimator = clone(self.prototype)
        self._weight_seen = 0.0

    def training_weight_seen(self) -> float:
        return self._weight_seen

    def set_seed(self, seed: int) -> None:
        self.seed = seed
        if "random_state" in self.prototype.get_params():
            self.prototype.set_params(random_state=seed)
            self.estimator.set_params(random_state=seed)


# ============================================================================
# HYPERPARAMETER RANDOMIZATION
# ============================================================================


def _grid_choice(rng: random.Random, low: float, high: float, step: float) -> float:
    """Pick a value from the grid low, low + step, ..., high."""
    n_values = int(round((high - low) / step)) + 1
    return low + rng.randrange(n_values) * step


def random_hoeffding_params(rng: random.Random) -> Dict[str, Any]:
    """Draw grace period, split confidence and tie threshold for a new tree."""
    return {
        "grace_period": int(_grid_choice(rng, 10, 200, 10)),
        "delta": round(_grid_choice(rng, 0.05, 1.0, 0.05), 2),
        "tau": round(_grid_choice(rng, 0.05, 1.0, 0.05), 2),
    }


# ============================================================================
# LEARNER FACTORY
# ============================================================================


class LearnerFactory:
    """Factory for creating base learners by name."""

    _learners: Dict[str, Callable[..., ClassifierMixin]] = {
        "hoeffding_tree": HoeffdingTreeClassifier,
        "perceptron": Perceptron,
        "sgd": lambda **params: SGDClassifier(
            **{"loss": "log_loss", **params}
        ),
    }

    @classmethod
    def available(cls) -> list:
        return list(cls._learners)

    @classmethod
    def create(
        cls,
        name: str,
        seed: Optional[int] = None,
        classes: Optional[Sequence[int]] = None,
        **params,
    ) -> BaseLearner:
        """Create a base learner.

        Args:
            name: Registered learner name
            seed: Seed for the learner's randomness
            classes: All class labels (required by scikit-learn learners)
            **params: Hyperparameters for the wrapped model

        Returns:
            BaseLearner instance

        Raises:
            ValueError: If name is not recognized
        """
        if name not in cls._learners:
            valid_names = ", ".join(cls._learners.keys())
            raise ValueError(
                f"Unknown base learner: {name}. Valid learners: {valid_names}"
            )

        if name == "hoeffding_tree":
            return HoeffdingTreeLearner(seed=seed, **params)

        return SklearnIncrementalLearner(
            cls._learners[name](**params), classes=classes, seed=seed
        )


LearnerSpec = Union[str, BaseLearner, Callable[[], BaseLearner]]
