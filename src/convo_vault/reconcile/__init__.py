"""Drift detection between the local archive and a live provider."""
