"""Tests for similarity fusion and best-template matching."""

import numpy as np
import pytest

from faceunlock.recognize.errors import DimensionMismatch
from faceunlock.recognize.matcher import (
    DEFAULT_MATCH_THRESHOLD,
    TemplateMatcher,
    cosine_similarity,
    euclidean_similarity,
    is_match,
    pearson_similarity,
    similarity,
)
from faceunlock.recognize.types import Template


ALICE = np.array([1, 1, 1, 1, 0, 0, 0, 0, 0, 0, 0, 0], dtype=np.float64)


def _template(identity_id, features, step=1):
    return Template(identity_id=identity_id, pose_step=step, features=np.asarray(features, dtype=np.float64))


class TestMetrics:
    def test_self_similarity_is_one(self):
        assert similarity(ALICE, ALICE) == pytest.approx(1.0)

    def test_self_similarity_is_maximal(self):
        rng = np.random.default_rng(0)
        a = rng.random(12)
        self_score = similarity(a, a)
        for _ in range(20):
            assert similarity(a, rng.random(12)) <= self_score

    def test_tiny_noise_keeps_score(self):
        rng = np.random.default_rng(1)
        a = rng.random(12)
        noisy = a + rng.uniform(-1e-9, 1e-9, size=12)
        assert abs(similarity(a, noisy) - similarity(a, a)) <= 1e-6

    def test_cosine_zero_vector(self):
        assert cosine_similarity(np.zeros(12), ALICE) == 0.0

    def test_cosine_clipped_at_zero(self):
        assert cosine_similarity(ALICE, -ALICE) == 0.0

    def test_euclidean(self):
        a = np.zeros(12)
        b = np.zeros(12)
        b[0] = 3.0
        assert euclidean_similarity(a, b) == pytest.approx(0.25)

    def test_pearson_zero_variance(self):
        assert pearson_similarity(np.full(12, 2.0), ALICE) == 0.0

    def test_pearson_anticorrelated(self):
        assert pearson_similarity(ALICE, 1.0 - ALICE) == pytest.approx(0.0)

    def test_weights(self):
        b = np.roll(ALICE, 2)
        expected = (
            0.5 * cosine_similarity(ALICE, b)
            + 0.3 * euclidean_similarity(ALICE, b)
            + 0.2 * pearson_similarity(ALICE, b)
        )
        assert similarity(ALICE, b) == pytest.approx(expected)

    def test_dimension_mismatch(self):
        with pytest.raises(DimensionMismatch):
            similarity(np.ones(12), np.ones(11))

    def test_is_match_is_strict(self):
        assert not is_match(DEFAULT_MATCH_THRESHOLD)
        assert is_match(DEFAULT_MATCH_THRESHOLD + 1e-6)


class TestTemplateMatcher:
    def test_best_match(self):
        other = np.array([0, 0, 0, 0, 1, 1, 1, 1, 0, 0, 0, 0], dtype=np.float64)
        m = TemplateMatcher([_template("bob", other), _template("alice", ALICE)])
        mr = m.match(ALICE)
        assert mr.identity_id == "alice"
        assert mr.template_index == 1
        assert mr.templates_compared == 2
        assert mr.confidence == pytest.approx(1.0)
        assert mr.is_match

    def test_tie_keeps_first(self):
        m = TemplateMatcher([_template("a", ALICE), _template("b", ALICE)])
        mr = m.match(ALICE)
        assert mr.identity_id == "a"
        assert mr.template_index == 0

    def test_all_templates_scored(self):
        templates = [_template("alice", ALICE, step=s) for s in range(1, 5) for _ in range(10)]
        m = TemplateMatcher(templates)
        mr = m.match(ALICE)
        assert len(m) == 40
        assert mr.templates_compared == 40
        assert mr.scores.shape == (40,)

    def test_below_threshold(self):
        m = TemplateMatcher([_template("alice", ALICE)], match_threshold=0.75)
        mr = m.match(np.full(12, -1.0))
        assert mr.identity_id == "alice"
        assert mr.confidence < 0.75
        assert not mr.is_match

    def test_empty(self):
        mr = TemplateMatcher([]).match(ALICE)
        assert mr.identity_id is None
        assert mr.confidence == 0.0
        assert not mr.is_match

    def test_dimension_mismatch(self):
        m = TemplateMatcher([_template("alice", ALICE)])
        with pytest.raises(DimensionMismatch):
            m.match(np.ones(5))

    def test_reload(self):
        m = TemplateMatcher([])
        m.reload([_template("alice", ALICE)])
        assert m.match(ALICE).is_match

    def test_reload_mixed_lengths(self):
        m = TemplateMatcher([_template("alice", ALICE)])
        with pytest.raises(DimensionMismatch) as exc:
            m.reload([_template("alice", ALICE), _template("bob", np.ones(5))])
        assert (exc.value.len_a, exc.value.len_b) == (12, 5)
        assert len(m) == 1
        assert m.match(ALICE).is_match
