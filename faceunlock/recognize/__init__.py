"""Observations, feature vectors, similarity matching and template storage."""
