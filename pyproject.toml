[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "motionfusion"
version = "0.1.0"
description = "Geometry and tracking utilities for dense RGB-D fusion: deformation graphs, rigid RANSAC, keypoint tracking and sparse solvers"
requires-python = ">=3.10"
keywords = ["rgb-d", "slam", "deformation graph", "ransac", "point tracking", "3d reconstruction"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Science/Research",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Scientific/Engineering :: Image Processing",
]
dependencies = [
    "numpy",
    "scipy",
    "pillow",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["motionfusion"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
ignore_missing_imports = true
