"""
Single NLP solve on a fixed mesh: transcription, IPOPT, reconstruction.
"""

import logging
from typing import Any

from .derivatives import DerivativeOptions
from .mesh import Mesh
from .nlp import NLPAdapter, SolveContext
from .nlp.ipopt_solver import IpoptSolver
from .oracle import DynamicsOracle
from .problem import ProblemDefinition
from .solution import Solution, reconstruct
from .transcription import TrajectoryGuess, TranscriptionEngine


__all__ = ["solve_on_mesh"]

logger = logging.getLogger(__name__)


def solve_on_mesh(
    problem: ProblemDefinition,
    oracle: DynamicsOracle,
    mesh: Mesh,
    scheme: str,
    nlp_options: dict[str, Any] | None = None,
    derivative_options: DerivativeOptions | None = None,
    initial_guess: TrajectoryGuess | None = None,
    context: SolveContext | None = None,
) -> Solution:
    engine = TranscriptionEngine(problem, mesh, oracle, scheme)
    adapter = NLPAdapter(engine, derivative_options, initial_guess)
    adapter.configure()

    logger.debug(
        "Solving on %d-point mesh with %s scheme (%d colors)",
        mesh.num_points,
        scheme,
        adapter.derivatives.coloring.num_colors,
    )
    raw_solution = IpoptSolver(nlp_options).solve(adapter, context)
    trajectory = reconstruct(raw_solution, engine)
    return Solution(raw_solution, trajectory)
