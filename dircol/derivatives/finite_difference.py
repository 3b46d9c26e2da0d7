"""
Colored finite-difference derivatives of the transcribed problem.

First derivatives use one perturbation per color (two for central
differences). The Lagrangian Hessian uses second differences of the whole
function vector, weighted by the constraint multipliers and the objective
scale, with one evaluation per color, one per doubled color step and one per
pair of colors that meet in some row.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from itertools import combinations

import numpy as np
from scipy.sparse import coo_matrix

from ..dc_types import FloatArray, IntArray
from ..exceptions import DataIntegrityError, DynamicsEvaluationError
from ..input_validation import validate_choice, validate_positive_integer
from ..transcription.engine import PointEvaluation, TranscriptionEngine
from ..utils.constants import (
    DEFAULT_DERIVATIVE_MODE,
    DEFAULT_HESSIAN_MODE,
    HESSIAN_STEP_FACTOR,
    JACOBIAN_STEP_FACTOR,
    SUPPORTED_DERIVATIVE_MODES,
    SUPPORTED_HESSIAN_MODES,
)
from .cache import EvaluationCache
from .coloring import color_columns
from .sparsity import compute_hessian_sparsity, compute_jacobian_sparsity


__all__ = ["DerivativeEngine", "DerivativeOptions"]

logger = logging.getLogger(__name__)

PerturbationResult = FloatArray | DynamicsEvaluationError


@dataclass
class DerivativeOptions:
    """Finite-difference configuration.

    Attributes:
        mode: "forward" or "central" differences for first derivatives
        num_workers: Threads used for perturbation batches; 1 evaluates serially
        hessian: "exact" for finite-difference Hessians, "limited-memory" to
            let the solver build a quasi-Newton approximation
    """

    mode: str = DEFAULT_DERIVATIVE_MODE
    num_workers: int = 1
    hessian: str = DEFAULT_HESSIAN_MODE

    def __post_init__(self) -> None:
        validate_choice(self.mode, "mode", SUPPORTED_DERIVATIVE_MODES)
        validate_positive_integer(self.num_workers, "num_workers")
        validate_choice(self.hessian, "hessian", SUPPORTED_HESSIAN_MODES)


@dataclass
class FunctionValues:
    evaluation: PointEvaluation
    values: FloatArray


class DerivativeEngine:
    """Sparse derivatives of a transcription by colored finite differences."""

    def __init__(self, engine: TranscriptionEngine, options: DerivativeOptions | None = None) -> None:
        self.engine = engine
        self.options = options or DerivativeOptions()
        self.num_variables = engine.variable_count()
        self.num_constraints = engine.constraint_count()
        self.num_objective_terms = engine.objective_term_count()

        self.function_sparsity = compute_jacobian_sparsity(engine.layout)
        self.jacobian_sparsity = self.function_sparsity.restrict_rows(self.num_constraints)
        self.hessian_sparsity = compute_hessian_sparsity(engine.layout)
        self.coloring = color_columns(self.function_sparsity)

        self._hessian_keys = (
            self.hessian_sparsity.rows * self.num_variables + self.hessian_sparsity.cols
        )
        self._color_pairs = self._co_occurring_pairs()
        self.cache = EvaluationCache()
        self._executor: ThreadPoolExecutor | None = None

        logger.debug(
            "Derivative engine: %d colors, %d color pairs, mode=%s, workers=%d",
            self.coloring.num_colors,
            len(self._color_pairs),
            self.options.mode,
            self.options.num_workers,
        )

    def _co_occurring_pairs(self) -> list[tuple[int, int]]:
        present = (self.coloring.row_columns >= 0).astype(np.int64)
        meets = present @ present.T
        return [
            (a, b)
            for a, b in combinations(range(self.coloring.num_colors), 2)
            if meets[a, b] > 0
        ]

    # ------------------------------------------------------------------
    # Worker pool
    # ------------------------------------------------------------------

    def _pool(self) -> ThreadPoolExecutor | None:
        if self.options.num_workers <= 1:
            return None
        if self._executor is None:
            self._executor = ThreadPoolExecutor(
                max_workers=self.options.num_workers, thread_name_prefix="dircol-fd"
            )
        return self._executor

    def close(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None

    def __enter__(self) -> DerivativeEngine:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Function values
    # ------------------------------------------------------------------

    def base(self, variables: FloatArray) -> FunctionValues:
        """Oracle outputs and function vector at ``variables`` (cached)."""

        def compute() -> FunctionValues:
            evaluation = self.engine.evaluate(variables)
            return FunctionValues(evaluation, self.engine.assemble(evaluation))

        return self.cache.get(variables, "base", compute)

    def function_values(self, variables: FloatArray) -> FloatArray:
        return self.base(variables).values

    def constraints(self, variables: FloatArray) -> FloatArray:
        return self.function_values(variables)[: self.num_constraints]

    def objective(self, variables: FloatArray) -> float:
        return float(np.sum(self.function_values(variables)[self.num_constraints :]))

    def _evaluate_perturbations(
        self, variables: FloatArray, base: FunctionValues, directions: list[FloatArray]
    ) -> list[PerturbationResult]:
        engine = self.engine

        def task(direction: FloatArray) -> PerturbationResult:
            try:
                evaluation = engine.evaluate(variables + direction, base.evaluation)
            except DynamicsEvaluationError as error:
                return error
            return engine.assemble(evaluation)

        pool = self._pool()
        if pool is None or len(directions) < 2:
            return [task(direction) for direction in directions]
        return list(pool.map(task, directions))

    def _direction(self, color: int, steps: FloatArray, scale: float = 1.0) -> FloatArray:
        direction = np.zeros(self.num_variables, dtype=np.float64)
        columns = self.coloring.columns[color]
        direction[columns] = scale * steps[columns]
        return direction

    # ------------------------------------------------------------------
    # First derivatives
    # ------------------------------------------------------------------

    def evaluate_jacobian(self, variables: FloatArray) -> FloatArray:
        """Function-vector Jacobian values aligned with ``function_sparsity``."""
        return self.cache.get(variables, "jacobian", lambda: self._compute_jacobian(variables))

    def _compute_jacobian(self, variables: FloatArray) -> FloatArray:
        base = self.base(variables)
        steps = JACOBIAN_STEP_FACTOR * np.maximum(1.0, np.abs(variables))
        num_colors = self.coloring.num_colors
        central = self.options.mode == "central"

        forward = self._evaluate_perturbations(
            variables, base, [self._direction(c, steps) for c in range(num_colors)]
        )
        backward: list[PerturbationResult | None] = [None] * num_colors
        if central:
            backward = list(
                self._evaluate_perturbations(
                    variables, base, [self._direction(c, steps, -1.0) for c in range(num_colors)]
                )
            )
        else:
            failed = [
                c for c in range(num_colors) if isinstance(forward[c], DynamicsEvaluationError)
            ]
            if failed:
                logger.debug("Retrying %d forward perturbations backward", len(failed))
                retried = self._evaluate_perturbations(
                    variables, base, [self._direction(c, steps, -1.0) for c in failed]
                )
                for color, result in zip(failed, retried, strict=True):
                    backward[color] = result

        differences = np.empty((num_colors, len(base.values)), dtype=np.float64)
        for color in range(num_colors):
            plus, minus = forward[color], backward[color]
            plus_ok = not isinstance(plus, DynamicsEvaluationError)
            minus_ok = minus is not None and not isinstance(minus, DynamicsEvaluationError)
            if central and plus_ok and minus_ok:
                differences[color] = 0.5 * (plus - minus)
            elif plus_ok:
                differences[color] = plus - base.values
            elif minus_ok:
                differences[color] = base.values - minus
            else:
                raise minus if isinstance(minus, DynamicsEvaluationError) else plus

        pattern = self.function_sparsity
        color_of_entry = self.coloring.colors[pattern.cols]
        return differences[color_of_entry, pattern.rows] / steps[pattern.cols]

    def constraint_jacobian(self, variables: FloatArray) -> FloatArray:
        """Values aligned with ``jacobian_sparsity``."""
        return self.evaluate_jacobian(variables)[: self.jacobian_sparsity.nnz]

    def objective_gradient(self, variables: FloatArray) -> FloatArray:
        """Dense gradient: sum of the objective-term rows of the Jacobian."""
        values = self.evaluate_jacobian(variables)
        start = self.jacobian_sparsity.nnz
        return np.bincount(
            self.function_sparsity.cols[start:],
            weights=values[start:],
            minlength=self.num_variables,
        ).astype(np.float64)

    # ------------------------------------------------------------------
    # Second derivatives
    # ------------------------------------------------------------------

    def evaluate_hessian(
        self, variables: FloatArray, multipliers: FloatArray, objective_scale: float
    ) -> FloatArray:
        """Lower-triangular Lagrangian Hessian values aligned with ``hessian_sparsity``.

        The Lagrangian is ``objective_scale * objective + multipliers @ constraints``.
        """
        multipliers = np.asarray(multipliers, dtype=np.float64)
        if multipliers.shape != (self.num_constraints,):
            raise DataIntegrityError(
                f"{multipliers.size} multipliers for {self.num_constraints} constraints"
            )
        key = ("hessian", multipliers.tobytes(), float(objective_scale))
        return self.cache.get(
            variables, key, lambda: self._compute_hessian(variables, multipliers, objective_scale)
        )

    def _hessian_positions(self, rows: IntArray, cols: IntArray) -> IntArray:
        keys = rows * self.num_variables + cols
        positions = np.searchsorted(self._hessian_keys, keys)
        positions = np.minimum(positions, len(self._hessian_keys) - 1)
        if not np.array_equal(self._hessian_keys[positions], keys):
            raise DataIntegrityError("Second-difference entry outside the Hessian pattern")
        return positions

    def _single_color_values(
        self,
        variables: FloatArray,
        base: FunctionValues,
        steps: FloatArray,
        colors: list[int],
        sign: float,
    ) -> list[tuple[PerturbationResult, PerturbationResult]]:
        directions = []
        for color in colors:
            directions.append(self._direction(color, steps, sign))
            directions.append(self._direction(color, steps, 2.0 * sign))
        results = self._evaluate_perturbations(variables, base, directions)
        return [(results[2 * i], results[2 * i + 1]) for i in range(len(colors))]

    def _compute_hessian(
        self, variables: FloatArray, multipliers: FloatArray, objective_scale: float
    ) -> FloatArray:
        base = self.base(variables)
        f0 = base.values
        steps = HESSIAN_STEP_FACTOR * np.maximum(1.0, np.abs(variables))
        num_colors = self.coloring.num_colors
        row_columns = self.coloring.row_columns
        weights = np.concatenate(
            [multipliers, np.full(self.num_objective_terms, float(objective_scale))]
        )
        active = weights != 0.0
        values = np.zeros(self.hessian_sparsity.nnz, dtype=np.float64)

        signs = np.ones(num_colors)
        singles = self._single_color_values(variables, base, steps, list(range(num_colors)), 1.0)
        failed = [
            c
            for c, pair in enumerate(singles)
            if any(isinstance(r, DynamicsEvaluationError) for r in pair)
        ]
        if failed:
            logger.debug("Retrying %d Hessian color steps in the negative direction", len(failed))
            retried = self._single_color_values(variables, base, steps, failed, -1.0)
            for color, pair in zip(failed, retried, strict=True):
                for result in pair:
                    if isinstance(result, DynamicsEvaluationError):
                        raise result
                singles[color] = pair
                signs[color] = -1.0

        for color in range(num_colors):
            rows = np.flatnonzero((row_columns[color] >= 0) & active)
            if rows.size == 0:
                continue
            cols = row_columns[color, rows]
            single, double = singles[color]
            second = (double[rows] - 2.0 * single[rows] + f0[rows]) / steps[cols] ** 2
            np.add.at(values, self._hessian_positions(cols, cols), weights[rows] * second)

        if self._color_pairs:
            directions = [
                self._direction(a, steps, signs[a]) + self._direction(b, steps, signs[b])
                for a, b in self._color_pairs
            ]
            mixed_results = self._evaluate_perturbations(variables, base, directions)
            for (a, b), f_ab in zip(self._color_pairs, mixed_results, strict=True):
                rows = np.flatnonzero((row_columns[a] >= 0) & (row_columns[b] >= 0) & active)
                if rows.size == 0:
                    continue
                if isinstance(f_ab, DynamicsEvaluationError):
                    raise f_ab
                i = row_columns[a, rows]
                j = row_columns[b, rows]
                mixed = (f_ab[rows] - singles[a][0][rows] - singles[b][0][rows] + f0[rows]) / (
                    signs[a] * signs[b] * steps[i] * steps[j]
                )
                positions = self._hessian_positions(np.maximum(i, j), np.minimum(i, j))
                np.add.at(values, positions, weights[rows] * mixed)

        return values

    def hessian_matrix(
        self, variables: FloatArray, multipliers: FloatArray, objective_scale: float
    ) -> coo_matrix:
        """Lower-triangular Hessian as a scipy COO matrix."""
        return self.hessian_sparsity.to_coo(
            self.evaluate_hessian(variables, multipliers, objective_scale)
        )
