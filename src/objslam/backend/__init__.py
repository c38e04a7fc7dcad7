"""Local bundle adjustment backend with object landmarks."""

from .graph_builder import (
    CHI2_MONO,
    CHI2_STEREO,
    LocalProblem,
    ReprojectionEdge,
    VariableIds,
    build_local_problem,
)
from .local_ba import LocalBAConfig, LocalBAResult, LocalBundleAdjustment
from .local_mapping import LocalMapping, LocalMappingStats
from .local_window import LocalWindow, select_local_window
from .optimizer import FactorGraph, OptimizationSummary

__all__ = [
    # Window selection
    "LocalWindow",
    "select_local_window",
    # Graph construction
    "VariableIds",
    "LocalProblem",
    "ReprojectionEdge",
    "build_local_problem",
    "CHI2_MONO",
    "CHI2_STEREO",
    # Local BA
    "LocalBundleAdjustment",
    "LocalBAConfig",
    "LocalBAResult",
    # Local Mapping
    "LocalMapping",
    "LocalMappingStats",
    # Solver
    "FactorGraph",
    "OptimizationSummary",
]
