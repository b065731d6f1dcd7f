"""Perceptual-hash duplicate image suppression."""

from mealforge.services.dedupe.perceptual_hash import compute_fingerprint, hamming_distance
from mealforge.services.dedupe.store import DedupeResult, PerceptualHashStore

__all__ = ["compute_fingerprint", "hamming_distance", "DedupeResult", "PerceptualHashStore"]
