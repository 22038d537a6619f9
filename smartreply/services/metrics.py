"""
Display metrics for a batch of generated replies.

These numbers are a placeholder for the dashboard, not a measurement: no
reply is compared against ground truth. Each score is the batch's mean
confidence scaled by a fixed factor plus random jitter.
"""

import random
from typing import Dict, Optional, Sequence

from smartreply.models import GeneratedReply

# score name -> (scale applied to mean confidence, max jitter)
SCORE_WEIGHTS = {
    'accuracy': (100, 10),
    'precision_score': (95, 15),
    'recall_score': (90, 20),
    'f1_score': (92, 12),
}


def estimate_metrics(
    replies: Sequence[GeneratedReply],
    rng: Optional[random.Random] = None
) -> Dict[str, float]:
    if not replies:
        return {name: 0.0 for name in SCORE_WEIGHTS}

    rng = rng or random.Random()
    mean_confidence = sum(reply.confidence for reply in replies) / len(replies)

    return {
        name: round(_clamp(mean_confidence * scale + rng.random() * jitter), 2)
        for name, (scale, jitter) in SCORE_WEIGHTS.items()
    }


def _clamp(value: float, low: float = 0.0, high: float = 100.0) -> float:
    return max(low, min(high, value))
