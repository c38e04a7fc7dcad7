"""Factor graph optimization."""

from .factor_graph import FactorGraph, OptimizationSummary
from .factors import (
    CameraCuboidFactor,
    Factor,
    HuberKernel,
    MonoReprojectionFactor,
    StereoReprojectionFactor,
    quality_information,
)
from .variables import (
    CuboidVariable,
    PointVariable,
    PoseVariable,
    Variable,
    VariableKind,
)

__all__ = [
    "FactorGraph",
    "OptimizationSummary",
    # Factors
    "Factor",
    "HuberKernel",
    "MonoReprojectionFactor",
    "StereoReprojectionFactor",
    "CameraCuboidFactor",
    "quality_information",
    # Variables
    "Variable",
    "VariableKind",
    "PoseVariable",
    "PointVariable",
    "CuboidVariable",
]
