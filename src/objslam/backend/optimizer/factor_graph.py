"""Sparse factor graph solved with scipy.optimize.least_squares.

The graph holds pose, point and cuboid variables and the factors linking
them. Each call to :meth:`FactorGraph.optimize` runs a trust-region
least-squares solve over the factors of one "level" and the free
variables those factors touch:

    minimize sum_f rho_f(e_f^T * Omega_f * e_f)

Robust kernels are folded into the residual vector (the whitened error
is rescaled so its squared norm equals rho), and the Jacobian is
estimated by finite differences over a sparsity pattern in which every
factor row block only depends on the columns of its own variables.
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np
from scipy.optimize import least_squares
from scipy.sparse import lil_matrix

from ...geometry import SE3, Cuboid
from .factors import Factor
from .variables import (
    CuboidVariable,
    PointVariable,
    PoseVariable,
    Variable,
    VariableKind,
)


@dataclass
class OptimizationSummary:
    """Outcome of one optimize() call."""

    ran: bool
    initial_cost: float = 0.0
    final_cost: float = 0.0
    evaluations: int = 0
    num_active_factors: int = 0
    num_free_variables: int = 0
    message: str = ""


class FactorGraph:
    """Container of variables and factors with a least-squares solver."""

    def __init__(
        self, ftol: float = 1e-8, xtol: float = 1e-8, step_trials: int = 2
    ) -> None:
        """Initialize an empty graph.

        Args:
            ftol: Relative cost tolerance for convergence
            xtol: Relative parameter tolerance for convergence
            step_trials: Residual evaluations allowed per iteration, so a
                rejected trust-region step doesn't use up an iteration
        """
        if step_trials < 1:
            raise ValueError(f"step_trials must be >= 1, got {step_trials}")
        self._ftol = ftol
        self._xtol = xtol
        self._step_trials = step_trials
        self._variables: dict[int, Variable] = {}
        self._factors: list[Factor] = []

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    def add_variable(self, variable: Variable) -> Variable:
        """Add a variable.

        Raises:
            ValueError: If the id is already used by another variable
        """
        if variable.id in self._variables:
            raise ValueError(
                f"Variable id {variable.id} already used by "
                f"{self._variables[variable.id]!r}"
            )
        self._variables[variable.id] = variable
        return variable

    def add_pose(self, var_id: int, pose_cw: SE3, fixed: bool = False) -> PoseVariable:
        """Add a camera pose variable (T_camera_world)."""
        return self.add_variable(PoseVariable(var_id, pose_cw, fixed=fixed))

    def add_point(
        self,
        var_id: int,
        position: np.ndarray,
        fixed: bool = False,
        marginalized: bool = False,
    ) -> PointVariable:
        """Add a 3D point variable."""
        return self.add_variable(
            PointVariable(var_id, position, fixed=fixed, marginalized=marginalized)
        )

    def add_cuboid(self, var_id: int, cuboid: Cuboid, fixed: bool = False) -> CuboidVariable:
        """Add an object cuboid variable."""
        return self.add_variable(CuboidVariable(var_id, cuboid, fixed=fixed))

    def add_factor(self, factor: Factor) -> Factor:
        """Add a factor whose variables are all part of this graph.

        Raises:
            ValueError: If the factor references a foreign variable
        """
        for variable in factor.variables:
            if self._variables.get(variable.id) is not variable:
                raise ValueError(
                    f"{type(factor).__name__} references {variable!r}, "
                    "which is not in the graph"
                )
        self._factors.append(factor)
        return factor

    # ------------------------------------------------------------------
    # Access
    # ------------------------------------------------------------------

    def variable(self, var_id: int) -> Variable:
        """Return a variable by id (KeyError if missing)."""
        return self._variables[var_id]

    def _typed(self, var_id: int, kind: VariableKind) -> Variable:
        variable = self._variables[var_id]
        if variable.kind is not kind:
            raise TypeError(
                f"Variable {var_id} is a {variable.kind.value}, not a {kind.value}"
            )
        return variable

    def pose_estimate(self, var_id: int) -> SE3:
        """Return a copy of a pose estimate (T_camera_world)."""
        return self._typed(var_id, VariableKind.POSE).estimate.copy()

    def point_estimate(self, var_id: int) -> np.ndarray:
        """Return a copy of a point estimate."""
        return self._typed(var_id, VariableKind.POINT).estimate.copy()

    def cuboid_estimate(self, var_id: int) -> Cuboid:
        """Return a copy of a cuboid estimate."""
        return self._typed(var_id, VariableKind.CUBOID).estimate.copy()

    @property
    def variables(self) -> list[Variable]:
        """Return all variables in insertion order."""
        return list(self._variables.values())

    @property
    def factors(self) -> list[Factor]:
        """Return all factors in insertion order."""
        return list(self._factors)

    @property
    def num_variables(self) -> int:
        return len(self._variables)

    @property
    def num_factors(self) -> int:
        return len(self._factors)

    def total_chi2(self, level: int | None = None) -> float:
        """Return the sum of factor chi2 values (optionally for one level)."""
        return float(
            sum(f.chi2() for f in self._factors if level is None or f.level == level)
        )

    # ------------------------------------------------------------------
    # Optimization
    # ------------------------------------------------------------------

    def optimize(self, iterations: int, level: int = 0) -> OptimizationSummary:
        """Optimize the free variables touched by the factors of ``level``.

        Args:
            iterations: Iteration budget for the solver. Each iteration may
                spend up to ``step_trials`` residual evaluations.
            level: Only factors whose level equals this are considered

        Returns:
            OptimizationSummary. ``ran`` is False when there was nothing to
            optimize or the solver failed; estimates are then unchanged.
        """
        active = [f for f in self._factors if f.level == level]
        if iterations <= 0 or len(active) == 0:
            return OptimizationSummary(ran=False, message="No active factors")

        free = self._collect_free_variables(active)
        if len(free) == 0:
            return OptimizationSummary(
                ran=False,
                num_active_factors=len(active),
                message="No free variables",
            )

        # Parameter layout: var_id -> (offset, dimension)
        layout: dict[int, tuple[int, int]] = {}
        offset = 0
        for variable in free:
            layout[variable.id] = (offset, variable.dimension)
            offset += variable.dimension

        x0 = np.concatenate([v.to_vector() for v in free])
        sparsity = self._build_sparsity_matrix(active, layout, offset)

        def residuals(x: np.ndarray) -> np.ndarray:
            trial = {
                v.id: v.estimate_from_vector(x[s : s + d])
                for v, (s, d) in zip(free, layout.values())
            }
            out = []
            for factor in active:
                estimates = [trial.get(v.id, v.estimate) for v in factor.variables]
                out.append(factor.weighted_residual(*estimates))
            return np.concatenate(out)

        initial_residuals = residuals(x0)
        initial_cost = 0.5 * float(initial_residuals @ initial_residuals)

        try:
            result = least_squares(
                fun=residuals,
                x0=x0,
                jac_sparsity=sparsity,
                method="trf",  # 'lm' doesn't support jac_sparsity
                x_scale="jac",  # radians, meters and cuboid extents differ in scale
                ftol=self._ftol,
                xtol=self._xtol,
                max_nfev=iterations * self._step_trials + 1,
                verbose=0,
            )
        except (ValueError, np.linalg.LinAlgError) as e:
            return OptimizationSummary(
                ran=False,
                initial_cost=initial_cost,
                final_cost=initial_cost,
                num_active_factors=len(active),
                num_free_variables=len(free),
                message=f"Optimization failed: {e}",
            )

        for variable in free:
            s, d = layout[variable.id]
            variable.set_from_vector(result.x[s : s + d])

        return OptimizationSummary(
            ran=True,
            initial_cost=initial_cost,
            final_cost=0.5 * float(result.fun @ result.fun),
            evaluations=int(result.nfev),
            num_active_factors=len(active),
            num_free_variables=len(free),
            message=str(result.message),
        )

    def _collect_free_variables(self, active: list[Factor]) -> list[Variable]:
        """Return free variables touched by ``active``, marginalized ones last."""
        seen: set[int] = set()
        free: list[Variable] = []
        for factor in active:
            for variable in factor.variables:
                if variable.fixed or variable.id in seen:
                    continue
                seen.add(variable.id)
                free.append(variable)
        return [v for v in free if not v.marginalized] + [
            v for v in free if v.marginalized
        ]

    def _build_sparsity_matrix(
        self,
        active: list[Factor],
        layout: dict[int, tuple[int, int]],
        n_params: int,
    ) -> lil_matrix:
        """Build sparse Jacobian structure for the active factors.

        Each factor's rows only depend on the columns of its free variables.
        """
        n_residuals = sum(f.dimension for f in active)
        sparsity = lil_matrix((n_residuals, n_params), dtype=int)

        row = 0
        for factor in active:
            for variable in factor.variables:
                if variable.id not in layout:
                    continue
                col, dim = layout[variable.id]
                sparsity[row : row + factor.dimension, col : col + dim] = 1
            row += factor.dimension

        return sparsity
