"""
Normalized time mesh and monotonic refinement.
"""

from __future__ import annotations

import heapq
import logging

import numpy as np

from .dc_types import FloatArray, NumericArrayLike
from .exceptions import ConfigurationError
from .input_validation import validate_mesh_points, validate_positive_integer
from .utils.constants import DEFAULT_MAX_MESH_POINTS, MESH_TOLERANCE
from .utils.coordinates import normalized_to_time


logger = logging.getLogger(__name__)


class Mesh:
    """Ordered partition of the normalized horizon [0, 1].

    Instances are immutable: ``refine`` returns a new mesh.
    """

    __slots__ = ("_points",)

    def __init__(self, normalized_times: NumericArrayLike) -> None:
        points = np.array(normalized_times, dtype=np.float64)
        validate_mesh_points(points)
        points.setflags(write=False)
        self._points = points

    @classmethod
    def build(cls, normalized_times: NumericArrayLike) -> Mesh:
        """Validate and build a mesh; raises InvalidMeshError on bad input."""
        return cls(normalized_times)

    @classmethod
    def uniform(cls, num_points: int) -> Mesh:
        validate_positive_integer(num_points, "num_points", min_value=2)
        points = np.linspace(0.0, 1.0, num_points)
        points[-1] = 1.0
        return cls(points)

    @property
    def points(self) -> FloatArray:
        return self._points

    @property
    def num_points(self) -> int:
        return len(self._points)

    @property
    def num_intervals(self) -> int:
        return len(self._points) - 1

    @property
    def interval_lengths(self) -> FloatArray:
        return np.diff(self._points)

    def times(self, initial_time: float, final_time: float) -> FloatArray:
        """Physical times of the mesh points for a given horizon."""
        return normalized_to_time(self._points, initial_time, final_time)

    def contains(self, other: Mesh) -> bool:
        """True if every point of ``other`` is also a point of this mesh."""
        indices = np.searchsorted(self._points, other.points)
        indices = np.clip(indices, 0, self.num_points - 1)
        return bool(np.all(np.abs(self._points[indices] - other.points) <= MESH_TOLERANCE))

    def refine(
        self,
        error_per_interval: NumericArrayLike,
        tolerance: float,
        max_points: int = DEFAULT_MAX_MESH_POINTS,
        order: int = 2,
    ) -> Mesh:
        """Bisect the worst intervals until predicted errors meet tolerance.

        The interval with the largest predicted error is bisected first; each
        half inherits ``error / 2**(order + 1)`` as its predicted error. This
        repeats until every predicted error is within tolerance or the mesh
        would exceed ``max_points``. An interval with an infinite estimate is
        bisected once. Existing points are never removed and intervals already
        within tolerance are never split.

        Args:
            error_per_interval: Estimated local error for each interval
            tolerance: Target error per interval
            max_points: Upper limit on the number of mesh points
            order: Convergence order of the scheme's local error indicator

        Returns:
            New mesh containing every point of this mesh.
        """
        errors = np.asarray(error_per_interval, dtype=np.float64).ravel()
        if errors.shape != (self.num_intervals,):
            raise ConfigurationError(
                f"Expected {self.num_intervals} interval errors, got {errors.size}"
            )
        if np.any(np.isnan(errors)):
            raise ConfigurationError("Interval error estimates contain NaN")
        if tolerance <= 0:
            raise ConfigurationError(f"Refinement tolerance must be positive, got {tolerance}")

        reduction = 2.0 ** (order + 1)
        new_points: list[float] = []
        num_points = self.num_points

        # Max-heap on predicted error; ties broken by left endpoint for determinism
        heap: list[tuple[float, float, float]] = [
            (-float(err), float(left), float(right))
            for err, left, right in zip(errors, self._points[:-1], self._points[1:], strict=True)
            if err > tolerance
        ]
        heapq.heapify(heap)

        while heap and num_points < max_points:
            negative_error, left, right = heapq.heappop(heap)
            midpoint = 0.5 * (left + right)
            if midpoint - left <= MESH_TOLERANCE:
                logger.debug("Interval [%.3e, %.3e] too small to bisect", left, right)
                continue
            new_points.append(midpoint)
            num_points += 1
            # Failed estimates (inf) are bisected once per pass
            child_error = -negative_error / reduction if np.isfinite(negative_error) else 0.0
            if child_error > tolerance:
                heapq.heappush(heap, (-child_error, left, midpoint))
                heapq.heappush(heap, (-child_error, midpoint, right))

        if heap:
            logger.debug("Mesh refinement capped at %d points", max_points)

        refined = np.sort(np.concatenate([self._points, np.array(new_points, dtype=np.float64)]))
        logger.debug(
            "Refined mesh: %d -> %d points (%d violating intervals)",
            self.num_points,
            len(refined),
            int(np.sum(errors > tolerance)),
        )
        return Mesh(refined)

    def __len__(self) -> int:
        return self.num_points

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Mesh):
            return NotImplemented
        return bool(np.array_equal(self._points, other._points))

    def __hash__(self) -> int:
        return hash(self._points.tobytes())

    def __repr__(self) -> str:
        return f"Mesh(num_points={self.num_points})"
