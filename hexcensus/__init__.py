"""Aerial/camera-trap census comparison package exports."""

from . import camera_calendar, compare, config, detections, grid, pipeline, rai, species  # noqa: F401

__all__ = ["camera_calendar", "compare", "config", "detections", "grid", "pipeline", "rai", "species"]
