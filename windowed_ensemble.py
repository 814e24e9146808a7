"""
Windowed Replacement Ensemble for Data Streams.

This module implements an online ensemble for multi-class stream
classification that:
1. Trains a fixed-size pool of incremental learners with online bagging
2. Tracks a running accuracy estimate for every member
3. Grows a candidate model per window and swaps it in for the weakest
   member when it performs better
4. Predicts with votes weighted by each member's running accuracy

Key Features:
- Single pass over an unbounded stream, one instance at a time
- Reproducible: one seeded generator drives every Poisson draw
- Pluggable base learners (river Hoeffding tree, scikit-learn partial_fit)
- scikit-learn style batch surface (partial_fit / predict / predict_proba)

"""

from typing import Optional, List, Dict, Any, Callable
from dataclasses import dataclass, field, replace
import random
import warnings

import numpy as np
import pandas as pd
from sklearn.base import BaseEstimator, ClassifierMixin

from base_learners import (
    ArrayLike,
    BaseLearner,
    Instance,
    LearnerFactory,
    LearnerSpec,
    random_hoeffding_params,
)
from ensemble_components import (
    BaggingSampler,
    CandidateManager,
    EnsembleSlot,
    PerformanceAccounting,
    PerformanceTracker,
    VoteAggregator,
    instance_accuracy,
)


# ============================================================================
# CONFIGURATION
# ============================================================================


@dataclass
class EnsembleConfig:
    """Configuration for the Windowed Replacement Ensemble.

    Attributes:
        base_learner: Registered learner name, a BaseLearner prototype, or a
            zero-argument callable returning a fresh BaseLearner
        window_size: Accumulated training weight between candidate challenges
        ensemble_size: Maximum number of members in the pool
        seed: Seed for the bagging generator and the candidates
        poisson_lambda: Mean of the online bagging Poisson distribution
        performance_accounting: 'per_slot' running means or one 'global'
            correct/total counter shared by all slots
        look_ahead_refresh: After training a member, re-score it on the same
            instance and adopt that score when it is higher
        weighted_training: Train with weight k instead of using k as a gate
        randomize_hyperparameters: Draw random Hoeffding tree hyperparameters
            for every new candidate
        classes: All class labels (required by scikit-learn learners)
        learner_params: Extra hyperparameters for named learners
        verbose: Verbosity level (0=silent, 1=info, 2=debug)
    """

    base_learner: LearnerSpec = "hoeffding_tree"
    window_size: int = 1000
    ensemble_size: int = 10
    seed: int = 1
    poisson_lambda: float = 1.0
    performance_accounting: PerformanceAccounting = "per_slot"
    look_ahead_refresh: bool = True
    weighted_training: bool = False
    randomize_hyperparameters: bool = False
    classes: Optional[List[int]] = None
    learner_params: Dict[str, Any] = field(default_factory=dict)
    verbose: int = 0


# ============================================================================
# ENSEMBLE MANAGER
# ============================================================================


class WindowedReplacementEnsemble(ClassifierMixin, BaseEstimator):
    """
    Online bagging ensemble with windowed candidate replacement.

    For every training instance the ensemble:
    1. Detects a window boundary (the cumulative training weight absorbed by
       members enters a new multiple of ``window_size``); the live candidate
       then fills a free slot or challenges the weakest member, and a fresh
       candidate is spawned
    2. Bootstraps an empty pool with the candidate as its only member
    3. Otherwise draws ``k ~ Poisson(poisson_lambda)`` per member and, for
       ``k > 0``, scores the member on the instance before training it
    4. Test-then-trains the candidate on the instance

    The ensemble keeps mutable state without internal locking; callers
    sharing one instance across threads must serialize all calls.

    Parameters
    ----------
    config : EnsembleConfig, optional
        Configuration object
    **kwargs : dict
        Configuration parameters (used if config is None)

    Attributes
    ----------
    slots_ : list of EnsembleSlot
        Members and their running accuracy estimates, in insertion order
    challenge_history_ : list of dict
        One record per candidate challenge
    n_instances_seen_ : int
        Training instances consumed
    weight_seen_ : float
        Cumulative training weight absorbed by members; never decreases
    n_boundaries_ : int
        Window boundaries detected
    n_challenges_ : int
        Boundaries at which a live candidate was offered to the pool
    n_additions_ : int
        Candidates added to a pool with free capacity
    n_replacements_ : int
        Challenges won by the candidate

    Examples
    --------
    >>> ensemble = WindowedReplacementEnsemble(
    ...     ensemble_size=5, window_size=500, seed=42
    ... )
    >>> for X_chunk, y_chunk in data_stream:
    ...     y_pred = ensemble.predict(X_chunk)
    ...     ensemble.partial_fit(X_chunk, y_chunk)
    """

    def __init__(self, config: Optional[EnsembleConfig] = None, **kwargs):
        self.config = config or EnsembleConfig(**kwargs)
        self._validate_config()

        self.slots_: List[EnsembleSlot] = []
        self.challenge_history_: List[dict] = []

        self.reset()

    def _validate_config(self):
        """Validate configuration."""
        if self.config.window_size < 1:
            raise ValueError("window_size must be at least 1")

        if self.config.ensemble_size < 1:
            raise ValueError("ensemble_size must be at least 1")

        if self.config.poisson_lambda <= 0:
            raise ValueError("poisson_lambda must be positive")

        if isinstance(self.config.seed, bool) or not isinstance(
            self.config.seed, (int, np.integer)
        ):
            raise ValueError("seed must be an integer")

        if self.config.performance_accounting not in ("per_slot", "global"):
            raise ValueError(
                "performance_accounting must be 'per_slot' or 'global'"
            )

        if (
            self.config.randomize_hyperparameters
            and self.config.base_learner != "hoeffding_tree"
        ):
            warnings.warn(
                "randomize_hyperparameters only applies to 'hoeffding_tree'. "
                "Candidates will use fixed hyperparameters."
            )

        # Surface learner errors (unknown name, missing classes) at setup
        test_learner = self._build_learner_factory()()
        if not isinstance(test_learner, BaseLearner):
            raise ValueError(
                f"base_learner must produce a BaseLearner, "
                f"got {type(test_learner).__name__}"
            )

    def _build_learner_factory(self) -> Callable[[], BaseLearner]:
        """Resolve the configured base learner into a factory."""
        base_learner = self.config.base_learner

        if isinstance(base_learner, BaseLearner):
            return base_learner.copy

        if isinstance(base_learner, str):
            randomize = (
                self.config.randomize_hyperparameters
                and base_learner == "hoeffding_tree"
            )
            hyperparameter_rng = random.Random(self.config.seed)

            def factory() -> BaseLearner:
                params = dict(self.config.learner_params)
                if randomize:
                    params.update(random_hoeffding_params(hyperparameter_rng))
                return LearnerFactory.create(
                    base_learner,
                    seed=self.config.seed,
                    classes=self.config.classes,
                    **params,
                )

            return factory

        if callable(base_learner):
            return base_learner

        raise ValueError(
            f"Unsupported base_learner: {base_learner!r}. Use a registered "
            f"name ({', '.join(LearnerFactory.available())}), a BaseLearner "
            "or a callable."
        )

    def reset(self) -> "WindowedReplacementEnsemble":
        """Reset ensemble to initial state."""
        self.slots_ = []
        self.rng_ = random.Random(self.config.seed)
        self.sampler_ = BaggingSampler(lam=self.config.poisson_lambda)
        self.tracker_ = PerformanceTracker(self.config.performance_accounting)
        self.candidates_ = CandidateManager(
            self._build_learner_factory(),
            window_size=self.config.window_size,
            seed=self.config.seed,
        )

        self.n_instances_seen_ = 0
        self.weight_seen_ = 0.0
        self.n_boundaries_ = 0
        self.n_challenges_ = 0
        self.n_replacements_ = 0
        self.n_additions_ = 0
        self.n_refreshes_ = 0
        self.n_classes_seen_ = (
            int(max(self.config.classes)) + 1 if self.config.classes else 0
        )
        self.challenge_history_ = []
        return self

    # ------------------------------------------------------------------
    # Per-instance interface
    # ------------------------------------------------------------------

    def get_weight_seen_by_model(self) -> float:
        """Training weight absorbed by the current members.

        Unlike ``weight_seen_`` this drops when a heavily trained member is
        replaced.
        """
        return sum(slot.model.training_weight_seen() for slot in self.slots_)

    def train_on_instance(self, instance: Instance) -> "WindowedReplacementEnsemble":
        """Consume one labelled instance from the stream.

        Parameters
        ----------
        instance : Instance
            Feature vector, integer class label and weight

        Returns
        -------
        self : WindowedReplacementEnsemble
        """
        if instance.y is None:
            raise ValueError("Training instances must carry a class label")

        self.n_instances_seen_ += 1
        self.n_classes_seen_ = max(self.n_classes_seen_, int(instance.y) + 1)

        if self.candidates_.is_boundary(self.weight_seen_):
            self._handle_window_boundary(instance, self.weight_seen_)

        if not self.slots_:
            self._bootstrap(instance)
            return self

        self._train_members(instance)
        self.candidates_.observe(instance)
        return self

    def _handle_window_boundary(self, instance: Instance, weight_seen: float):
        """Offer the live candidate to the pool, then spawn a new one."""
        self.n_boundaries_ += 1

        if self.candidates_.candidate is not None and self.slots_:
            event = self.candidates_.challenge(
                self.slots_, self.config.ensemble_size, instance
            )
            event.update(
                instance=self.n_instances_seen_,
                weight_seen=weight_seen,
                ensemble_size=len(self.slots_),
            )
            self.challenge_history_.append(event)
            self.n_challenges_ += 1

            if event["added"]:
                self.n_additions_ += 1
            elif event["replaced"]:
                self.n_replacements_ += 1

            if self.config.verbose > 0:
                if event["added"]:
                    outcome = f"added as slot {event['position']}"
                elif event["replaced"]:
                    outcome = f"replaced slot {event['position']}"
                else:
                    outcome = "discarded"
                print(
                    f"  Window boundary at weight {weight_seen:g}: candidate "
                    f"{event['candidate_score']:.3f} vs slot "
                    f"{event['weakest_slot']} {event['weakest_score']:.3f} "
                    f"-> {outcome}"
                )

        self.candidates_.spawn()

    def _bootstrap(self, instance: Instance):
        """Seed an empty pool with the live candidate."""
        model = self.candidates_.candidate
        model.train(instance)
        self.weight_seen_ += instance.weight
        score = instance_accuracy(model, instance)

        slot = self.candidates_.release()
        slot.score = score
        self.slots_.append(slot)
        self.candidates_.spawn()

        if self.config.verbose > 0:
            print(f"  Bootstrapped ensemble with one member (score={score:.3f})")

    def _train_members(self, instance: Instance):
        """Online bagging update of every member."""
        for i, slot in enumerate(self.slots_):
            k = self.sampler_.draw(self.rng_)
            if k == 0:
                continue

            weight = instance.weight
            if self.config.weighted_training:
                weight *= k

            accuracy = instance_accuracy(slot.model, instance)
            self.tracker_.update(slot, accuracy, weight)

            slot.model.train(replace(instance, weight=weight))
            self.weight_seen_ += weight

            if not self.config.look_ahead_refresh:
                continue

            base_performance = instance_accuracy(slot.model, instance)
            if base_performance > slot.score:
                self.slots_[i] = EnsembleSlot(
                    model=slot.model.copy(), score=base_performance
                )
                self.n_refreshes_ += 1

                if self.config.verbose > 1:
                    print(
                        f"    Slot {i}: refreshed score "
                        f"{slot.score:.3f} -> {base_performance:.3f}"
                    )

    def get_votes_for_instance(self, instance: Instance) -> ArrayLike:
        """Performance-weighted vote vector for one instance.

        Has no side effects. An empty pool yields a zero vector.
        """
        return VoteAggregator.combine(self.slots_, instance, self.n_classes_seen_)

    # ------------------------------------------------------------------
    # Batch interface
    # ------------------------------------------------------------------

    def partial_fit(
        self,
        X: ArrayLike,
        y: ArrayLike,
        classes: Optional[ArrayLike] = None,
        sample_weight: Optional[ArrayLike] = None,
    ) -> "WindowedReplacementEnsemble":
        """
        Incrementally fit the ensemble on a batch of samples, in order.

        Parameters
        ----------
        X : array-like of shape (n_samples, n_features)
            Training data
        y : array-like of shape (n_samples,)
            Integer class labels
        classes : array-like, optional
            All possible class labels
        sample_weight : array-like of shape (n_samples,), optional
            Instance weights, 1.0 by default

        Returns
        -------
        self : WindowedReplacementEnsemble
        """
        X = np.asarray(X)
        y = np.asarray(y)

        if len(X) != len(y):
            raise ValueError("X and y must have the same number of samples")

        if classes is not None:
            self.n_classes_seen_ = max(
                self.n_classes_seen_, int(np.max(classes)) + 1
            )

        if sample_weight is None:
            sample_weight = np.ones(len(X))

        for x_i, y_i, w_i in zip(X, y, sample_weight):
            self.train_on_instance(Instance(x=x_i, y=int(y_i), weight=float(w_i)))

        return self

    def predict_proba(self, X: ArrayLike) -> ArrayLike:
        """
        Predict class probabilities from the normalized vote vectors.

        Parameters
        ----------
        X : array-like of shape (n_samples, n_features)
            Test samples

        Returns
        -------
        proba : array of shape (n_samples, n_classes)
            Class probabilities (uniform where every vote is zero)
        """
        if not self.slots_:
            raise ValueError("Ensemble not fitted. Call partial_fit first.")

        votes = [
            self.get_votes_for_instance(Instance(x=x_i)) for x_i in np.asarray(X)
        ]
        n_classes = max([self.n_classes_seen_] + [len(v) for v in votes])

        proba = np.zeros((len(votes), n_classes))
        for i, v in enumerate(votes):
            proba[i, : len(v)] = v

        row_sums = proba.sum(axis=1)
        voted = row_sums > 0
        proba[voted] /= row_sums[voted, np.newaxis]
        proba[~voted] = 1.0 / n_classes
        return proba

    def predict(self, X: ArrayLike) -> ArrayLike:
        """
        Predict class labels (largest vote, lowest label on ties).

        Parameters
        ----------
        X : array-like of shape (n_samples, n_features)
            Test samples

        Returns
        -------
        y_pred : array of shape (n_samples,)
            Predicted labels
        """
        return np.argmax(self.predict_proba(X), axis=1)

    # ------------------------------------------------------------------
    # Monitoring
    # ------------------------------------------------------------------

    def get_model_measurements(self) -> Dict[str, float]:
        """Scalar measurements for monitoring."""
        return {"ensemble size": len(self.slots_)}

    def get_performance_summary(self) -> pd.DataFrame:
        """Per-slot scores and training weights.

        Returns:
            DataFrame with one row per ensemble slot
        """
        return pd.DataFrame(
            [
                {
                    "slot": i,
                    "score": slot.score,
                    "training_weight": slot.model.training_weight_seen(),
                }
                for i, slot in enumerate(self.slots_)
            ],
            columns=["slot", "score", "training_weight"],
        )

    def get_challenge_summary(self) -> pd.DataFrame:
        """Candidate challenges over time.

        Returns:
            DataFrame with one row per challenge
        """
        if not self.challenge_history_:
            return pd.DataFrame()

        return pd.DataFrame(self.challenge_history_)
