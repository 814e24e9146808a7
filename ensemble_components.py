"""
Building blocks of the Windowed Replacement Ensemble.

This module holds the pieces the ensemble manager orchestrates:
1. EnsembleSlot pairs a member model with its running performance score
2. BaggingSampler draws online-bagging replication counts
3. PerformanceTracker keeps the per-slot running accuracy estimates
4. CandidateManager grows a fresh model per window and lets it challenge
   the weakest member at window boundaries
5. VoteAggregator sums member votes weighted by their scores

"""

from typing import Optional, List, Callable, Literal
from dataclasses import dataclass
import random

import numpy as np
from river.utils.random import poisson

from base_learners import ArrayLike, BaseLearner, Instance


# ============================================================================
# TYPE DEFINITIONS
# ============================================================================

PerformanceAccounting = Literal["per_slot", "global"]


@dataclass
class EnsembleSlot:
    """An ensemble member and its running accuracy estimate.

    Attributes:
        model: Member model, owned exclusively by this slot
        score: Running accuracy estimate in [0, 1]
    """

    model: BaseLearner
    score: float = 0.0


def predicted_class(votes: ArrayLike) -> Optional[int]:
    """Arg-max of a vote vector, lowest index on ties, None when empty."""
    if len(votes) == 0:
        return None
    return int(np.argmax(votes))


def instance_accuracy(model: BaseLearner, instance: Instance) -> float:
    """1.0 if the model's predicted class equals the true label, else 0.0."""
    prediction = predicted_class(model.predict(instance))
    return 1.0 if prediction is not None and prediction == instance.y else 0.0


# ============================================================================
# BAGGING SAMPLER
# ============================================================================


class BaggingSampler:
    """Online bagging replication counts.

    Each (member, instance) pair gets ``k ~ Poisson(lam)``. The generator is
    passed in on every draw so that the owner controls its lifecycle.

    Args:
        lam: Mean of the Poisson distribution
    """

    def __init__(self, lam: float = 1.0):
        if lam <= 0:
            raise ValueError("lam must be positive")
        self.lam = lam

    def draw(self, rng: random.Random) -> int:
        return poisson(self.lam, rng)


# ============================================================================
# PERFORMANCE TRACKER
# ============================================================================


class PerformanceTracker:
    """Running accuracy estimates for ensemble slots.

    With ``"per_slot"`` accounting every slot keeps an online mean over the
    instances its model was trained on::

        score_new = (score_old * n + accuracy) / (n + 1)

    where ``n`` is the training weight the model has absorbed so far. For an
    observation that trains with weight ``w`` the mean becomes
    ``(score_old * n + accuracy * w) / (n + w)``. With
    ``"global"`` accounting a single correct/total counter is shared by all
    slots and each updated slot receives the global ratio.

    Args:
        accounting: "per_slot" or "global"
    """

    _policies = ("per_slot", "global")

    def __init__(self, accounting: PerformanceAccounting = "per_slot"):
        if accounting not in self._policies:
            valid = ", ".join(self._policies)
            raise ValueError(
                f"Unknown performance accounting: {accounting}. Valid: {valid}"
            )
        self.accounting = accounting
        self.reset()

    def reset(self):
        """Reset the shared counters."""
        self.n_correct = 0.0
        self.n_observed = 0

    @staticmethod
    def running_mean(
        score: float, n: float, accuracy: float, weight: float = 1.0
    ) -> float:
        """Fold one weighted observation into a mean over weight n."""
        if n <= 0:
            return accuracy
        return (score * n + accuracy * weight) / (n + weight)

    def update(self, slot: EnsembleSlot, accuracy: float, weight: float = 1.0) -> float:
        """Fold a pre-training accuracy observation into the slot's score.

        Args:
            slot: Slot whose model produced the observation
            accuracy: 1.0 for a correct prediction, 0.0 otherwise
            weight: Training weight the model is about to absorb

        Returns:
            The updated score
        """
        if self.accounting == "global":
            self.n_correct += accuracy
            self.n_observed += 1
            slot.score = self.n_correct / self.n_observed
        else:
            slot.score = self.running_mean(
                slot.score, slot.model.training_weight_seen(), accuracy, weight
            )
        return slot.score


# ============================================================================
# CANDIDATE LIFECYCLE
# ============================================================================


class CandidateManager:
    """Grows one candidate model per window and lets it challenge the pool.

    The candidate is in the *growing* state between window boundaries, where
    every instance is first used to test it (folding the outcome into its
    running score) and then to train it. When the ensemble's cumulative
    training weight enters a new window (``floor(weight / window_size)``
    increases) the candidate joins a pool that still has free capacity, or
    *challenges* the weakest slot of a full pool. A fresh candidate is
    spawned after every boundary.

    Args:
        learner_factory: Callable returning a fresh, untrained learner
        window_size: Training weight between two boundaries
        seed: Base seed; candidate ``i`` is seeded with ``seed + i``
    """

    def __init__(
        self,
        learner_factory: Callable[[], BaseLearner],
        window_size: int = 1000,
        seed: int = 1,
    ):
        if window_size < 1:
            raise ValueError("window_size must be at least 1")
        self.learner_factory = learner_factory
        self.window_size = window_size
        self.seed = seed
        self.reset()

    def reset(self):
        """Drop the candidate and forget past boundaries."""
        self.candidate: Optional[BaseLearner] = None
        self.score = 0.0
        self.n_created = 0
        self._last_window: Optional[int] = None

    def is_boundary(self, weight_seen: float) -> bool:
        """True when a non-decreasing weight counter enters a new window.

        The first call always fires (window 0). A counter that jumps over
        several windows at once fires a single boundary.
        """
        window = int(weight_seen // self.window_size)
        if self._last_window is not None and window <= self._last_window:
            return False
        self._last_window = window
        return True

    def spawn(self) -> BaseLearner:
        """Replace the current candidate with a fresh, seeded one."""
        candidate = self.learner_factory()
        candidate.set_seed(self.seed + self.n_created)
        candidate.reset()
        self.candidate = candidate
        self.score = 0.0
        self.n_created += 1
        return candidate

    def evaluate(self, instance: Instance) -> float:
        """Fold the candidate's accuracy on this instance into its score."""
        accuracy = instance_accuracy(self.candidate, instance)
        self.score = PerformanceTracker.running_mean(
            self.score,
            self.candidate.training_weight_seen(),
            accuracy,
            instance.weight,
        )
        return self.score

    def observe(self, instance: Instance):
        """Test-then-train the candidate on one instance."""
        self.evaluate(instance)
        self.candidate.train(instance)

    def release(self) -> EnsembleSlot:
        """Hand the candidate over as a new slot; the manager forgets it."""
        slot = EnsembleSlot(model=self.candidate, score=self.score)
        self.candidate = None
        self.score = 0.0
        return slot

    def challenge(
        self, slots: List[EnsembleSlot], capacity: int, instance: Instance
    ) -> dict:
        """Add the candidate to the pool or let it challenge the weakest slot.

        While the pool is below capacity the candidate is appended without
        a contest. In a full pool it replaces the weakest slot (first
        minimum from the left) only when its score is strictly higher, and
        is discarded otherwise.

        Args:
            slots: Current ensemble slots, modified in place
            capacity: Maximum number of slots
            instance: Instance at the window boundary

        Returns:
            Dictionary describing the challenge
        """
        candidate_score = self.evaluate(instance)

        weakest_idx = 0
        for i in range(1, len(slots)):
            if slots[i].score < slots[weakest_idx].score:
                weakest_idx = i
        weakest_score = slots[weakest_idx].score

        added = len(slots) < capacity
        replaced = not added and candidate_score > weakest_score
        position = weakest_idx
        if added:
            position = len(slots)
            slots.append(self.release())
        elif replaced:
            slots[weakest_idx] = self.release()
        else:
            self.candidate = None
            self.score = 0.0

        return {
            "candidate_score": candidate_score,
            "weakest_slot": weakest_idx,
            "weakest_score": weakest_score,
            "added": added,
            "replaced": replaced,
            "position": position,
        }


# ============================================================================
# VOTE AGGREGATION
# ============================================================================


class VoteAggregator:
    """Performance-weighted sum of member votes."""

    @staticmethod
    def combine(
        slots: List[EnsembleSlot], instance: Instance, n_classes: int = 0
    ) -> ArrayLike:
        """Combine member votes into one unnormalized vector.

        Each member's vote vector is scaled by its slot score, or by 0.0 if
        the member has not been trained yet, and added element-wise. The
        result grows to the longest vote vector seen; shorter vectors count
        as zero for the missing classes.

        Args:
            slots: Ensemble slots
            instance: Instance to vote on
            n_classes: Minimum length of the result

        Returns:
            Vote vector indexed by class label
        """
        combined = np.zeros(n_classes)

        for slot in slots:
            votes = np.asarray(slot.model.predict(instance), dtype=float)
            weight = slot.score if slot.model.training_weight_seen() > 0 else 0.0

            if len(votes) > len(combined):
                combined = np.pad(combined, (0, len(votes) - len(combined)))
            combined[: len(votes)] += votes * weight

        return combined
