"""Utility helpers for StillMind."""
