"""Drift detection: similarity, rules and orchestration."""
