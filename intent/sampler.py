"""
AI-usage samplers.

Decide per request whether the Intent Layer calls a model at all or answers
with the deterministic extractor. The random sampler is a traffic-shaping
policy; tests inject FixedSampler.
"""

import os
import random


class RandomSampler:
    """Use the model with probability ``probability`` (INTENT_AI_PROBABILITY, default 0.9)."""

    def __init__(self, probability: float | None = None, rng: random.Random | None = None):
        if probability is None:
            probability = float(os.getenv("INTENT_AI_PROBABILITY", "0.9"))
        self.probability = max(0.0, min(1.0, probability))
        self._rng = rng or random.Random()

    def should_use_ai(self, text: str) -> bool:
        return self._rng.random() < self.probability


class FixedSampler:
    """Always (or never) use the model."""

    def __init__(self, use_ai: bool = True):
        self.use_ai = use_ai

    def should_use_ai(self, text: str) -> bool:
        return self.use_ai
