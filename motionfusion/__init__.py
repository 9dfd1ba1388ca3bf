"""Deformation graphs, rigid RANSAC, keypoint tracking and sparse solvers for RGB-D fusion."""

__version__ = "0.1.0"

__all__ = [
    "cholesky",
    "deformation_graph",
    "deformation_solver",
    "gnuplot",
    "parse",
    "point_tracker",
    "ransac",
    "uniform",
]