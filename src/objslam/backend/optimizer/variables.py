"""Optimization variables of the factor graph.

Each variable kind knows how to pack its estimate into a flat parameter
vector and how to rebuild an estimate from one, so the solver can treat
all of them uniformly while callers recover typed estimates.
"""

from __future__ import annotations

from enum import Enum
from typing import ClassVar

import numpy as np

from ...geometry import SE3, Cuboid


class VariableKind(Enum):
    """Tag identifying what a variable's estimate is."""

    POSE = "pose"
    POINT = "point"
    CUBOID = "cuboid"


class Variable:
    """Base class for graph variables.

    Attributes:
        id: Unique integer id within the graph
        fixed: If True the estimate is held constant
        marginalized: Hint that the variable should be eliminated first
    """

    kind: ClassVar[VariableKind]
    dimension: ClassVar[int]

    def __init__(self, var_id: int, estimate, fixed: bool = False,
                 marginalized: bool = False) -> None:
        self.id = var_id
        self.estimate = estimate
        self.fixed = fixed
        self.marginalized = marginalized

    def to_vector(self) -> np.ndarray:
        raise NotImplementedError

    def estimate_from_vector(self, vec: np.ndarray):
        raise NotImplementedError

    def set_from_vector(self, vec: np.ndarray) -> None:
        """Replace the estimate with the one encoded by ``vec``."""
        self.estimate = self.estimate_from_vector(vec)

    def __repr__(self) -> str:
        flags = []
        if self.fixed:
            flags.append("fixed")
        if self.marginalized:
            flags.append("marginalized")
        suffix = f", {', '.join(flags)}" if flags else ""
        return f"{type(self).__name__}(id={self.id}{suffix})"


class PoseVariable(Variable):
    """Camera pose T_camera_world, parameterized as ``[rvec, t]``."""

    kind = VariableKind.POSE
    dimension = 6

    def __init__(self, var_id: int, estimate: SE3, fixed: bool = False) -> None:
        super().__init__(var_id, estimate.copy(), fixed=fixed)

    def to_vector(self) -> np.ndarray:
        return self.estimate.log()

    def estimate_from_vector(self, vec: np.ndarray) -> SE3:
        return SE3.exp(vec)


class PointVariable(Variable):
    """3D point in world coordinates."""

    kind = VariableKind.POINT
    dimension = 3

    def __init__(self, var_id: int, estimate: np.ndarray, fixed: bool = False,
                 marginalized: bool = False) -> None:
        estimate = np.asarray(estimate, dtype=np.float64).flatten().copy()
        super().__init__(var_id, estimate, fixed=fixed, marginalized=marginalized)

    def to_vector(self) -> np.ndarray:
        return self.estimate.copy()

    def estimate_from_vector(self, vec: np.ndarray) -> np.ndarray:
        return np.asarray(vec, dtype=np.float64).copy()


class CuboidVariable(Variable):
    """Object cuboid in world coordinates (9 parameters)."""

    kind = VariableKind.CUBOID
    dimension = 9

    def __init__(self, var_id: int, estimate: Cuboid, fixed: bool = False) -> None:
        super().__init__(var_id, estimate.copy(), fixed=fixed)

    def to_vector(self) -> np.ndarray:
        return self.estimate.to_vector()

    def estimate_from_vector(self, vec: np.ndarray) -> Cuboid:
        return Cuboid.from_vector(vec)
