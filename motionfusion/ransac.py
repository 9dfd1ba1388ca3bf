"""Robust estimation of a rigid transformation between two point sets."""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np

# Minimum number of correspondences that determine a rigid transform.
MIN_POINTS = 3


@dataclass(frozen=True)
class RansacConfig:
    iterations: int
    inlier_threshold: float
    inlier_fraction: float


@dataclass
class RansacResult:
    """Best transformation found, its mean inlier error and inlier mask.

    ``transformation`` maps points of the second set onto the first as a 4x4
    homogeneous matrix. When no hypothesis had enough inliers, ``error`` is
    infinite and ``inlier`` is None.
    """

    transformation: np.ndarray
    error: float
    inlier: np.ndarray | None


def _as_points(points) -> np.ndarray:
    array = np.asarray(points, dtype=np.float32)
    if array.ndim != 2 or array.shape[1] != 3:
        raise ValueError(f"expected an array of 3D points, got shape {array.shape}")
    return array


def _check_pair(p0: np.ndarray, p1: np.ndarray) -> None:
    if p0.shape[0] != p1.shape[0]:
        raise ValueError(f"point sets differ in size: {p0.shape[0]} and {p1.shape[0]}")


def _sort_order(p0: np.ndarray, p1: np.ndarray) -> list[int]:
    keys = [
        (hash((tuple(float(x) for x in a), tuple(float(x) for x in b))), index)
        for index, (a, b) in enumerate(zip(p0, p1))
    ]
    return [index for _, index in sorted(keys)]


def sort_correspondences(p0, p1) -> tuple[np.ndarray, np.ndarray]:
    """Reorder correspondences by a hash of each pair, independent of input order."""
    p0 = _as_points(p0)
    p1 = _as_points(p1)
    _check_pair(p0, p1)
    order = _sort_order(p0, p1)
    return p0[order], p1[order]


def fit_rigid(p0, p1, mask=None) -> np.ndarray:
    """Least-squares rigid transform T with ``T * p1 ~ p0`` over the selected rows."""
    p0 = _as_points(p0)
    p1 = _as_points(p1)
    _check_pair(p0, p1)
    if mask is not None:
        selection = np.asarray(mask, dtype=bool)
        if selection.shape != (p0.shape[0],):
            raise ValueError("mask must hold one flag per correspondence")
        p0 = p0[selection]
        p1 = p1[selection]
    if p0.shape[0] == 0:
        raise ValueError("no correspondences selected")

    p0_mean = p0.mean(axis=0)
    p1_mean = p1.mean(axis=0)
    covariance = (p0 - p0_mean).T @ (p1 - p1_mean)
    if not np.all(np.isfinite(covariance)):
        raise ValueError("correspondences contain non-finite values")

    u, _, vh = np.linalg.svd(covariance)
    v = vh.T
    correction = np.diag([1.0, 1.0, np.linalg.det(u) * np.linalg.det(v)])
    rotation = u @ correction @ v.T
    transform = np.eye(4, dtype=np.float32)
    transform[:3, :3] = rotation
    transform[:3, 3] = p0_mean - rotation @ p1_mean
    return transform


def residual_distances(transform, p0, p1) -> np.ndarray:
    """Distance of each point in ``p0`` from its transformed partner in ``p1``."""
    p0 = _as_points(p0)
    p1 = _as_points(p1)
    _check_pair(p0, p1)
    matrix = np.asarray(transform, dtype=np.float32)
    moved = p1 @ matrix[:3, :3].T + matrix[:3, 3]
    return np.linalg.norm(p0 - moved, axis=1)


class RigidRANSAC:
    """RANSAC over minimal three-point samples, refined on all inliers."""

    def __init__(
        self,
        iterations: int,
        inlier_threshold: float,
        inlier_fraction: float,
        seed: int | None = None,
    ) -> None:
        self.config = RansacConfig(iterations, inlier_threshold, inlier_fraction)
        self._rng = np.random.default_rng(seed)

    @classmethod
    def from_config(cls, config: RansacConfig, seed: int | None = None) -> RigidRANSAC:
        return cls(config.iterations, config.inlier_threshold, config.inlier_fraction, seed)

    def estimate(self, p0, p1, mask=None) -> RansacResult:
        """Estimate the transform mapping ``p1`` onto ``p0``.

        ``mask`` restricts which correspondences may be sampled or counted as
        inliers. The returned inlier mask follows the order of the input.
        """
        p0 = _as_points(p0)
        p1 = _as_points(p1)
        _check_pair(p0, p1)
        count = p0.shape[0]
        if count < MIN_POINTS:
            raise ValueError(f"need at least {MIN_POINTS} correspondences, got {count}")
        if mask is not None:
            mask = np.asarray(mask, dtype=bool)
            if mask.shape != (count,):
                raise ValueError("mask must hold one flag per correspondence")
            if mask.sum() < MIN_POINTS:
                raise ValueError(f"mask selects fewer than {MIN_POINTS} correspondences")

        order = np.asarray(_sort_order(p0, p1), dtype=np.intp)
        p0s, p1s = p0[order], p1[order]
        masks = None if mask is None else mask[order]

        best_transform = fit_rigid(p0s, p1s, masks)
        best_error = float("inf")
        best_inliers: np.ndarray | None = None
        required = max(int(round(self.config.inlier_fraction * count)), MIN_POINTS)

        for _ in range(self.config.iterations):
            candidates = self._rng.permutation(count)
            if masks is not None:
                candidates = candidates[masks[candidates]]
            sample = np.zeros(count, dtype=bool)
            sample[candidates[:MIN_POINTS]] = True

            transform = fit_rigid(p0s, p1s, sample)
            inliers = residual_distances(transform, p0s, p1s) < self.config.inlier_threshold
            if masks is not None:
                inliers &= masks
            num_inliers = int(inliers.sum())
            if num_inliers <= required:
                continue

            refined = fit_rigid(p0s, p1s, inliers)
            error = float(residual_distances(refined, p0s, p1s)[inliers].sum() / num_inliers)
            if error < best_error:
                best_error = error
                best_transform = refined
                best_inliers = inliers

        inlier_mask = None
        if best_inliers is not None:
            inlier_mask = np.empty(count, dtype=bool)
            inlier_mask[order] = best_inliers
        return RansacResult(best_transform, best_error, inlier_mask)