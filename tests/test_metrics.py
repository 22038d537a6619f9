import random

from smartreply.models import GeneratedReply
from smartreply.services.metrics import SCORE_WEIGHTS, estimate_metrics


def replies_with(*confidences):
    return [GeneratedReply(tone='casual', text='ok', confidence=c) for c in confidences]


def test_empty_batch_scores_zero():
    assert estimate_metrics([]) == {name: 0.0 for name in SCORE_WEIGHTS}


def test_scores_stay_in_range():
    rng = random.Random(1)
    for _ in range(50):
        metrics = estimate_metrics(replies_with(1.0, 1.0, 1.0), rng)
        assert all(0.0 <= value <= 100.0 for value in metrics.values())
        assert metrics['accuracy'] == 100.0


def test_scores_follow_mean_confidence():
    metrics = estimate_metrics(replies_with(0.5, 0.5, 0.5), random.Random(3))
    for name, (scale, jitter) in SCORE_WEIGHTS.items():
        assert 0.5 * scale <= metrics[name] <= 0.5 * scale + jitter


def test_seeded_rng_is_reproducible():
    replies = replies_with(0.9, 0.8, 0.7)
    assert estimate_metrics(replies, random.Random(42)) == estimate_metrics(replies, random.Random(42))


def test_values_are_rounded():
    metrics = estimate_metrics(replies_with(0.33, 0.41, 0.59), random.Random(5))
    assert all(round(value, 2) == value for value in metrics.values())
