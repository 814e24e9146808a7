"""
Tests for the base learner adapters and factory.
"""

import random
import unittest

import numpy as np
from sklearn.ensemble import RandomForestClassifier
from sklearn.linear_model import Perceptron, SGDClassifier

from base_learners import (
    HoeffdingTreeLearner,
    Instance,
    LearnerFactory,
    SklearnIncrementalLearner,
    _votes_from_dict,
    random_hoeffding_params,
)


def labelled(n=30, n_features=4, n_classes=3, seed=0):
    rng = np.random.RandomState(seed)
    X = rng.randn(n, n_features)
    y = np.arange(n) % n_classes
    # Separable by the first feature
    X[:, 0] += 3 * y
    return [Instance(x=x_i, y=int(y_i)) for x_i, y_i in zip(X, y)]


class TestVotesFromDict(unittest.TestCase):
    """Test label-indexed vote vectors."""

    def test_sparse_labels(self):
        """Missing labels should be zero-filled."""
        votes = _votes_from_dict({0: 0.25, 2: 0.75})
        np.testing.assert_array_equal(votes, [0.25, 0.0, 0.75])

    def test_empty(self):
        """An empty mapping should give an empty vector."""
        self.assertEqual(len(_votes_from_dict({})), 0)


class TestHoeffdingTreeLearner(unittest.TestCase):
    """Test the river Hoeffding tree adapter."""

    def setUp(self):
        self.learner = HoeffdingTreeLearner(grace_period=20)

    def test_untrained_predicts_nothing(self):
        """An untrained tree should return an empty vector."""
        votes = self.learner.predict(Instance(x=np.zeros(4)))

        self.assertEqual(len(votes), 0)
        self.assertEqual(self.learner.training_weight_seen(), 0)

    def test_training_accumulates_weight(self):
        """Training weight should add up instance weights."""
        self.learner.train(Instance(x=np.zeros(4), y=1, weight=2.0))
        self.learner.train(Instance(x=np.ones(4), y=0))

        self.assertEqual(self.learner.training_weight_seen(), 3.0)

    def test_votes_indexed_by_label(self):
        """Votes should be indexed by class label."""
        for _ in range(5):
            self.learner.train(Instance(x=np.ones(4), y=2))

        votes = self.learner.predict(Instance(x=np.ones(4)))

        self.assertEqual(len(votes), 3)
        self.assertEqual(int(np.argmax(votes)), 2)

    def test_copy_is_independent(self):
        """Training a copy should not affect the original."""
        for instance in labelled(n=10):
            self.learner.train(instance)

        clone = self.learner.copy()
        for instance in labelled(n=10, seed=1):
            clone.train(instance)

        self.assertEqual(self.learner.training_weight_seen(), 10)
        self.assertEqual(clone.training_weight_seen(), 20)

    def test_reset_keeps_hyperparameters(self):
        """Reset should forget learned state but keep hyperparameters."""
        for instance in labelled(n=10):
            self.learner.train(instance)

        self.learner.reset()

        self.assertEqual(self.learner.training_weight_seen(), 0)
        self.assertEqual(len(self.learner.predict(Instance(x=np.zeros(4)))), 0)
        self.assertEqual(self.learner.model.grace_period, 20)

    def test_set_seed(self):
        """Seeding should be recorded even for a deterministic tree."""
        self.learner.set_seed(7)
        self.assertEqual(self.learner.seed, 7)

    def test_set_seed_keeps_learned_state(self):
        """Seeding a trained tree should not forget what it learned."""
        for _ in range(5):
            self.learner.train(Instance(x=np.ones(4), y=2))
        model = self.learner.model

        self.learner.set_seed(11)

        self.assertIs(self.learner.model, model)
        self.assertEqual(self.learner.training_weight_seen(), 5)
        votes = self.learner.predict(Instance(x=np.ones(4)))
        self.assertEqual(int(np.argmax(votes)), 2)

        self.learner.reset()
        self.assertEqual(self.learner.seed, 11)
        self.assertEqual(self.learner.training_weight_seen(), 0)


class TestSklearnIncrementalLearner(unittest.TestCase):
    """Test the scikit-learn partial_fit adapter."""

    def test_requires_classes(self):
        """scikit-learn learners need the full class list up front."""
        with self.assertRaises(ValueError):
            SklearnIncrementalLearner(SGDClassifier(), classes=None)

        with self.assertRaises(ValueError):
            SklearnIncrementalLearner(SGDClassifier(), classes=[])

    def test_warns_without_partial_fit(self):
        """Estimators without partial_fit should trigger a warning."""
        with self.assertWarns(UserWarning):
            SklearnIncrementalLearner(RandomForestClassifier(), classes=[0, 1])

    def test_probabilistic_votes(self):
        """SGD with log loss should vote with class probabilities."""
        learner = SklearnIncrementalLearner(
            SGDClassifier(loss="log_loss"), classes=[0, 1, 2], seed=0
        )
        for instance in labelled():
            learner.train(instance)

        votes = learner.predict(labelled(n=1)[0])

        self.assertEqual(len(votes), 3)
        self.assertAlmostEqual(votes.sum(), 1.0)
        self.assertEqual(learner.training_weight_seen(), 30)

    def test_decision_function_votes(self):
        """Perceptron margins should be turned into a distribution."""
        learner = SklearnIncrementalLearner(Perceptron(), classes=[0, 1, 2])
        for instance in labelled():
            learner.train(instance)

        votes = learner.predict(labelled(n=1)[0])

        self.assertEqual(len(votes), 3)
        self.assertAlmostEqual(votes.sum(), 1.0)
        self.assertTrue(np.all(votes >= 0))

    def test_binary_decision_function(self):
        """A single binary margin should give two votes."""
        learner = SklearnIncrementalLearner(Perceptron(), classes=[0, 1])
        for instance in labelled(n_classes=2):
            learner.train(instance)

        votes = learner.predict(labelled(n=1, n_classes=2)[0])

        self.assertEqual(len(votes), 2)
        self.assertAlmostEqual(votes.sum(), 1.0)

    def test_sparse_class_labels(self):
        """Votes should be indexed by label, not by position."""
        learner = SklearnIncrementalLearner(
            SGDClassifier(loss="log_loss"), classes=[0, 3]
        )
        learner.train(Instance(x=np.zeros(2), y=3))

        votes = learner.predict(Instance(x=np.zeros(2)))

        self.assertEqual(len(votes), 4)
        self.assertEqual(votes[1], 0.0)
        self.assertEqual(votes[2], 0.0)

    def test_reset_and_copy(self):
        """Reset should return to an unfitted estimator; copies are independent."""
        learner = SklearnIncrementalLearner(SGDClassifier(), classes=[0, 1, 2])
        for instance in labelled(n=6):
            learner.train(instance)

        clone = learner.copy()
        learner.reset()

        self.assertEqual(learner.training_weight_seen(), 0)
        self.assertEqual(len(learner.predict(Instance(x=np.zeros(4)))), 0)
        self.assertEqual(clone.training_weight_seen(), 6)
        self.assertEqual(len(clone.predict(Instance(x=np.zeros(4)))), 3)

    def test_set_seed(self):
        """Seeds should be forwarded as random_state."""
        learner = SklearnIncrementalLearner(SGDClassifier(), classes=[0, 1])
        learner.set_seed(13)

        self.assertEqual(learner.estimator.random_state, 13)

        learner.reset()
        self.assertEqual(learner.estimator.random_state, 13)


class TestRandomHoeffdingParams(unittest.TestCase):
    """Test hyperparameter randomization."""

    def test_values_on_grid(self):
        """Drawn values should lie on the documented grids."""
        rng = random.Random(0)

        for _ in range(200):
            params = random_hoeffding_params(rng)
            self.assertIn(params["grace_period"], range(10, 201, 10))
            self.assertGreaterEqual(params["delta"], 0.05)
            self.assertLessEqual(params["delta"], 1.0)
            self.assertGreaterEqual(params["tau"], 0.05)
            self.assertLessEqual(params["tau"], 1.0)

    def test_reproducible(self):
        """The same generator seed gives the same draws."""
        draws_a = [random_hoeffding_params(random.Random(3)) for _ in range(3)]
        draws_b = [random_hoeffding_params(random.Random(3)) for _ in range(3)]

        self.assertEqual(draws_a, draws_b)


class TestLearnerFactory(unittest.TestCase):
    """Test learner creation by name."""

    def test_available(self):
        """All registered learners should be listed."""
        self.assertEqual(
            set(LearnerFactory.available()), {"hoeffding_tree", "perceptron", "sgd"}
        )

    def test_create(self):
        """Names should map to the matching adapters."""
        tree = LearnerFactory.create("hoeffding_tree", seed=1, grace_period=50)
        sgd = LearnerFactory.create("sgd", seed=1, classes=[0, 1])
        perceptron = LearnerFactory.create("perceptron", classes=[0, 1])

        self.assertIsInstance(tree, HoeffdingTreeLearner)
        self.assertEqual(tree.model.grace_period, 50)
        self.assertIsInstance(sgd, SklearnIncrementalLearner)
        self.assertEqual(sgd.estimator.loss, "log_loss")
        self.assertIsInstance(perceptron.estimator, Perceptron)

    def test_unknown_name(self):
        """Unknown names should raise with the valid choices."""
        with self.assertRaises(ValueError) as ctx:
            LearnerFactory.create("svm")

        self.assertIn("hoeffding_tree", str(ctx.exception))


if __name__ == "__main__":
    unittest.main()
