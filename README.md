# motionfusion

Building blocks for dense RGB-D reconstruction, written on top of NumPy, SciPy and Pillow.

## What is inside

- `motionfusion.deformation_graph`: an embedded deformation graph (`DeformationGraph`,
  `GraphNode`, `VertexWeight`, `Constraint`, `sort_by_node_id`). Nodes are created from
  time-ordered sample positions with `initialise_graph` and linked to their `k` neighbours
  in time. `k` must lie between 1 and 19. `append_vertices` and `set_poses_seq` bind vertices
  and 4x4 poses to their `k` nearest nodes, searching among the nodes closest in time.
  `add_constraint` pins a vertex to a position. `add_relative_constraint` ties a vertex to
  another vertex. A new constraint on a vertex replaces the old one.
  `compute_vertex_position`, `apply_graph_to_vertices` and `apply_graph_to_poses` apply the
  graph. `apply_graph_to_poses` returns deformed copies. `apply_graph_to_vertices`
  overwrites the shared vertex list in place.
- `motionfusion.deformation_solver`: Gauss-Newton optimisation of a deformation graph.
  `optimise_graph_sparse(graph, fern_match, last_deform_time)` runs at most three steps
  over the nodes sampled after `last_deform_time` and returns an `OptimisationResult`
  (`optimised`, `error`, `mean_constraint_error`). The residual, sparse Jacobian and
  update step are available separately as `sparse_residual`, `sparse_jacobian` and
  `apply_delta`.
- `motionfusion.cholesky`: `CholeskyDecomp` solves the normal equations `J^T J x = J^T r`
  of a sparse least-squares problem. On the first run it computes a reverse Cuthill-McKee
  ordering and reuses it for later solves until `free_factor` is called. The normal matrix
  must be positive definite; if it is not, SciPy raises `LinAlgError`.
- `motionfusion.ransac`: `RigidRANSAC` (configured directly or by `RansacConfig`, with an
  optional seed) estimates the 3D rigid transform that maps one point set onto another.
  It returns a `RansacResult` with a 4x4 matrix, the mean inlier error and an inlier mask.
  `fit_rigid`, `residual_distances` and `sort_correspondences` are available on their own.
- `motionfusion.point_tracker`: `PointTracker` matches keypoint descriptors frame to frame.
  It uses cross-checked nearest neighbours under the L2 norm. Each frame appends a
  `Keypoint` or `None` to every track. Keypoints are back-projected with `CameraIntrinsics`
  and a depth image. `prune` drops short, stale tracks. `draw_tracks` draws the tracks in
  colour over a greyscale copy of an image.
- `motionfusion.uniform`: typed shader uniform values (`Uniform`, `UniformType`, and
  `uniform`, which infers the type from a value). The module also describes the surfel
  vertex record as a NumPy dtype (`VERTEX_DTYPE`, `VERTEX_SIZE`).
- `motionfusion.parse`: command-line helpers. `find_arg` returns the index of the last
  occurrence of a flag. `arg_value` reads the value after the flag as `str`, `int` or
  `float`. `base_dir` returns the part of an executable path before `/build/`.
- `motionfusion.gnuplot`: `GnuplotPipe` is a context manager that sends commands and
  buffered inline data to a `gnuplot` process.

## Installing

```
pip install .
```

The `test` extra adds pytest:

```
pip install ".[test]"
pytest
```

## Example: rigid RANSAC

```python
import numpy as np
from motionfusion.ransac import RigidRANSAC

p1 = np.random.default_rng(0).normal(size=(50, 3)).astype(np.float32)
p0 = p1 + np.array([0.1, -0.2, 0.3], dtype=np.float32)

ransac = RigidRANSAC(iterations=100, inlier_threshold=0.01, inlier_fraction=0.5, seed=1)
result = ransac.estimate(p0, p1, None)
print(result.transformation, result.error)
```

## Example: setting up a deformation graph

```python
import numpy as np
from motionfusion.deformation_graph import DeformationGraph

vertices = [np.array([x, 0.0, 0.0]) for x in np.linspace(0.0, 1.0, 20)]
graph = DeformationGraph(4, vertices)
graph.initialise_graph(vertices[::2], list(range(0, 20, 2)))
graph.append_vertices(list(range(20)), len(vertices))
graph.add_constraint(19, [1.0, 0.2, 0.0])
print(graph.non_relative_constraint_error())  # 0.2 before any optimisation
```

To pull the graph towards the constraint, call
`motionfusion.deformation_solver.optimise_graph_sparse(graph, False, last_deform_time)`.

## Example: gnuplot

```python
from motionfusion.gnuplot import GnuplotPipe

with GnuplotPipe(persist=True) as gp:
    gp.send_line("plot '-' with lines", False)
    for x in range(10):
        gp.send_line(f"{x} {x * x}", True)
    gp.send_end_of_data(1)
```

`GnuplotPipe` needs the `gnuplot` program on the `PATH`. If the program cannot be started,
`is_open` is false and every command is dropped.

## What this package does not do

This is a library only. It has no command-line program, no viewer or GUI, and no
camera input. It does not run a full reconstruction loop: there is no GPU rendering and
no surfel map, and there is no frame-to-model odometry. `motionfusion.uniform` only
describes uniform values and the vertex layout; it does not talk to OpenGL.