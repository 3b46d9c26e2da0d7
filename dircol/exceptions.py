import logging

import numpy as np


# Library logger - no configuration, user controls output
logger = logging.getLogger(__name__)


class DircolBaseError(Exception):
    """
    Base class for all dircol-specific errors.

    All dircol exceptions inherit from this class, allowing users to catch
    any dircol-specific error with a single except clause.

    Args:
        message: The error message describing what went wrong
        context: Optional additional context about where the error occurred
    """

    def __init__(self, message: str, context: str | None = None) -> None:
        self.message = message
        self.context = context

        # Library logs at DEBUG level - user can promote if needed
        logger.debug("dircol exception: %s", self._format_message())
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        """Format the error message with optional context."""
        if self.context:
            return f"{self.message} (Context: {self.context})"
        return self.message


class ConfigurationError(DircolBaseError):
    """
    Raised when a problem definition, mesh, bound or option is malformed.

    Configuration errors are always raised before any dynamics oracle call or
    external solver invocation.

    Examples:
        - Lower bound greater than upper bound
        - Negative variable counts
        - Unknown collocation scheme or derivative mode
    """

    pass


class InvalidMeshError(ConfigurationError):
    """
    Raised when normalized mesh points are not a valid partition of [0, 1].

    A valid mesh has at least two finite points, is strictly increasing, and
    starts exactly at 0 and ends exactly at 1.
    """

    pass


class DataIntegrityError(DircolBaseError):
    """
    Raised when internal data corruption or inconsistency is detected.

    Examples:
        - Oracle output with the wrong shape
        - Variable vector length not matching the engine layout
        - Illegal solver adapter state transition
    """

    pass


class DynamicsEvaluationError(DircolBaseError):
    """
    Raised when the dynamics oracle fails at a specific trial point.

    The oracle either raised an arithmetic/domain error or returned a
    non-finite value. The error records where the failure happened so the
    solver adapter can reject the trial point and report the recovery.

    Args:
        message: Description of the failure
        function: Name of the oracle function that failed
        mesh_index: Mesh point (or interval) index, None for endpoint functions
        time: Physical time of the evaluation
        state: State vector passed to the oracle
        control: Control vector passed to the oracle
        parameters: Static parameter vector passed to the oracle
    """

    def __init__(
        self,
        message: str,
        function: str,
        mesh_index: int | None = None,
        time: float | None = None,
        state: np.ndarray | None = None,
        control: np.ndarray | None = None,
        parameters: np.ndarray | None = None,
    ) -> None:
        self.function = function
        self.mesh_index = mesh_index
        self.time = time
        self.state = None if state is None else np.array(state, dtype=np.float64)
        self.control = None if control is None else np.array(control, dtype=np.float64)
        self.parameters = None if parameters is None else np.array(parameters, dtype=np.float64)

        location = f"{function}"
        if mesh_index is not None:
            location += f" at mesh index {mesh_index}"
        if time is not None:
            location += f", t={time:.6g}"
        super().__init__(message, location)


class SolverDivergenceError(DircolBaseError):
    """
    Raised on demand when the external NLP solver reported a failure.

    The solve itself never raises this error: the failure is recorded as a
    terminal status on the Solution, whose last iterate stays available for
    diagnostics. Call ``Solution.raise_for_status()`` to turn it into an
    exception.
    """

    def __init__(self, message: str, status: int | None = None) -> None:
        self.status = status
        super().__init__(message, None if status is None else f"solver status {status}")


class MaxRefinementsExceeded(DircolBaseError):
    """
    Mesh refinement stopped before the error tolerance was met.

    Non-fatal: the adaptive solver attaches an instance to its result and logs
    a warning, and the last solution is still returned.
    """

    def __init__(self, max_refinements: int, max_error: float, tolerance: float) -> None:
        self.max_refinements = max_refinements
        self.max_error = max_error
        self.tolerance = tolerance
        super().__init__(
            f"Mesh refinement budget of {max_refinements} exhausted with max error "
            f"{max_error:.3e} above tolerance {tolerance:.1e}"
        )
