"""Tracking of feature keypoints over time by descriptor matching."""

from __future__ import annotations

import random
from dataclasses import dataclass, field

import numpy as np
from PIL import Image, ImageDraw

_FLOAT32_EPS = float(np.finfo(np.float32).eps)


@dataclass(frozen=True)
class CameraIntrinsics:
    fx: float = 1.0
    fy: float = 1.0
    cx: float = 0.0
    cy: float = 0.0


@dataclass(eq=False)
class Keypoint:
    """A keypoint: time (ns), pixel position, 3D camera position and descriptor."""

    timestamp: int
    xy: tuple[int, int]
    coordinate: np.ndarray
    descriptor: np.ndarray = field(repr=False)


Track = list  # list of Keypoint or None, one entry per frame


class PointTracker:
    """Keeps one track per feature; each frame adds a keypoint or None to every track."""

    def __init__(self, intrinsics: CameraIntrinsics | None = None) -> None:
        self.intrinsics = intrinsics if intrinsics is not None else CameraIntrinsics()
        self._tracks: list[list[Keypoint | None]] = []
        self._descriptor_size: int | None = None

    @property
    def tracks(self) -> list[list[Keypoint | None]]:
        return self._tracks

    def _keypoint(self, coordinate, descriptor, timestamp: int, depth: np.ndarray) -> Keypoint:
        rows, cols = depth.shape[:2]
        x = int(np.rint(float(coordinate[0]) * cols))
        y = int(np.rint(float(coordinate[1]) * rows))
        if not (0 <= x < cols and 0 <= y < rows):
            raise IndexError(f"keypoint ({x}, {y}) lies outside the depth image")
        z = float(depth[y, x])
        intr = self.intrinsics
        if z > 0:
            position = np.array([z * (x - intr.cx) / intr.fx, z * (y - intr.cy) / intr.fy, z])
        else:
            position = np.full(3, np.nan)
        return Keypoint(timestamp, (x, y), position, np.asarray(descriptor, dtype=float).copy())

    def add_keypoints(
        self,
        coordinates,
        descriptors,
        timestamp: int,
        depth,
        min_feature_distance: float = 0.0,
        history: int = 0,
    ) -> None:
        """Add the keypoints of a new frame.

        ``coordinates`` are normalised image positions (x, y) in [0, 1).
        Keypoints are matched to the last active keypoint of each track (seen
        within ``history`` frames, or ever when 0) by mutual nearest neighbour
        on the descriptors; unmatched ones start new tracks. A positive
        ``min_feature_distance`` rejects matches farther apart than it.
        """
        coordinates = np.asarray(coordinates, dtype=float).reshape(-1, 2)
        descriptors = np.asarray(descriptors, dtype=float)
        if descriptors.ndim != 2:
            descriptors = descriptors.reshape(len(coordinates), -1)
        depth = np.asarray(depth)
        if coordinates.shape[0] != descriptors.shape[0]:
            raise ValueError("coordinates and descriptors differ in count")
        if self._tracks and descriptors.shape[0] and descriptors.shape[1] != self._descriptor_size:
            raise ValueError(
                f"descriptors have {descriptors.shape[1]} columns, tracks use {self._descriptor_size}"
            )

        if not self._tracks:
            self._tracks = [
                [self._keypoint(xy, desc, timestamp, depth)]
                for xy, desc in zip(coordinates, descriptors)
            ]
            if self._tracks:
                self._descriptor_size = descriptors.shape[1]
            return

        active = self.last_active_keypoints(history)
        for track in self._tracks:
            track.append(None)
        if descriptors.shape[0] == 0:
            return

        valid = [i for i, kp in enumerate(active) if kp is not None]
        unmatched = set(range(coordinates.shape[0]))
        for query, train, distance in self._match(descriptors, [active[i] for i in valid]):
            if min_feature_distance < _FLOAT32_EPS or distance <= min_feature_distance:
                self._tracks[valid[train]][-1] = self._keypoint(
                    coordinates[query], descriptors[query], timestamp, depth
                )
                unmatched.discard(query)

        length = len(self._tracks[0])
        for index in sorted(unmatched):
            track: list[Keypoint | None] = [None] * length
            track[-1] = self._keypoint(coordinates[index], descriptors[index], timestamp, depth)
            self._tracks.append(track)

    @staticmethod
    def _match(descriptors: np.ndarray, previous: list[Keypoint]):
        """Cross-checked brute-force L2 matches as (query, train, distance)."""
        if not previous:
            return []
        current = descriptors.astype(np.float32)
        train = np.stack([kp.descriptor for kp in previous]).astype(np.float32)
        diff = current[:, None, :] - train[None, :, :]
        distances = np.sqrt((diff * diff).sum(axis=2))
        best_train = distances.argmin(axis=1)
        best_query = distances.argmin(axis=0)
        return [
            (query, int(j), float(distances[query, j]))
            for query, j in enumerate(best_train)
            if best_query[j] == query
        ]

    def draw_tracks(self, image, length: int = 0) -> np.ndarray:
        """Draw the tracks in colour over a greyscale copy of ``image``.

        Only the last ``length`` frames of each track are drawn, or all when 0.
        """
        array = np.asarray(image, dtype=np.uint8)
        canvas = Image.fromarray(array)
        if canvas.mode != "L":
            canvas = canvas.convert("L")
        canvas = canvas.convert("RGB")
        draw = ImageDraw.Draw(canvas)

        for index, track in enumerate(self._tracks):
            rng = random.Random(index)
            colour = tuple(int(rng.random() * 255) for _ in range(3))
            start = len(track) - length if 0 < length < len(track) else 0
            segment = track[start:]
            for a, b in zip(segment, segment[1:]):
                if a is not None and b is not None:
                    draw.line([a.xy, b.xy], fill=colour, width=2)
        return np.asarray(canvas)

    def prune(self, min_kps: int, min_time: int) -> None:
        """Drop tracks with fewer than ``min_kps`` keypoints last seen before ``min_time``."""
        kept = []
        for track in self._tracks:
            present = [kp for kp in track if kp is not None]
            last_stamp = present[-1].timestamp if present else 0
            if len(present) < min_kps and last_stamp < min_time:
                continue
            kept.append(track)
        self._tracks = kept

    def last_active_keypoints(self, history: int = 0) -> list[Keypoint | None]:
        """Latest keypoint of each track within the last ``history`` frames (all when 0)."""
        active = []
        for track in self._tracks:
            window = track[-history:] if history else track
            active.append(next((kp for kp in reversed(window) if kp is not None), None))
        return active