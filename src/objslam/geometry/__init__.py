"""Rigid transforms and object boxes."""

from .cuboid import Cuboid
from .pose import SE3

__all__ = [
    "SE3",
    "Cuboid",
]
