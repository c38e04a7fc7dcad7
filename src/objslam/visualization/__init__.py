"""Visualization."""

from .rerun_visualizer import MapVisualizer

__all__ = ["MapVisualizer"]
