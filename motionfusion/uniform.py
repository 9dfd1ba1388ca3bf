"""Typed shader uniform values and the interleaved surfel vertex layout."""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Any

import numpy as np

_INT32_MIN = -(2**31)
_INT32_MAX = 2**31 - 1
_UINT32_MAX = 2**32 - 1


class UniformType(enum.Enum):
    """Kinds of value a shader uniform can carry."""

    INT = 0
    UINT = 1
    FLOAT = 2
    VEC2 = 3
    VEC3 = 4
    VEC4 = 5
    MAT4 = 6
    NONE = 7


_SHAPE_TYPES = {
    (2,): UniformType.VEC2,
    (3,): UniformType.VEC3,
    (4,): UniformType.VEC4,
    (4, 4): UniformType.MAT4,
}


@dataclass(frozen=True)
class Uniform:
    """A named uniform value together with its type."""

    name: str
    type: UniformType
    value: Any

    @property
    def components(self) -> tuple:
        """The scalars handed to the shader, matrices in column-major order."""
        if self.type in (UniformType.INT, UniformType.UINT):
            return (int(self.value),)
        if self.type is UniformType.FLOAT:
            return (float(self.value),)
        if self.type in (UniformType.VEC2, UniformType.VEC3, UniformType.VEC4):
            return tuple(float(x) for x in self.value)
        if self.type is UniformType.MAT4:
            matrix = np.asarray(self.value, dtype=np.float32)
            return tuple(float(x) for x in matrix.ravel(order="F"))
        raise TypeError(f"uniform type {self.type.name} is not implemented")


def uniform(name: str, value: Any) -> Uniform:
    """Build a uniform, choosing its type from the value given."""
    if isinstance(value, (bool, np.bool_)):
        return Uniform(name, UniformType.INT, int(value))
    if isinstance(value, np.unsignedinteger):
        number = int(value)
        if number > _UINT32_MAX:
            raise OverflowError(f"{number} does not fit an unsigned 32-bit uniform")
        return Uniform(name, UniformType.UINT, number)
    if isinstance(value, (int, np.integer)):
        number = int(value)
        if not _INT32_MIN <= number <= _INT32_MAX:
            raise OverflowError(f"{number} does not fit a 32-bit uniform")
        return Uniform(name, UniformType.INT, number)
    if isinstance(value, (float, np.floating)):
        return Uniform(name, UniformType.FLOAT, float(value))
    if isinstance(value, (str, bytes)):
        raise TypeError(f"unsupported uniform value {value!r}")
    try:
        array = np.asarray(value, dtype=np.float32)
    except (TypeError, ValueError) as exc:
        raise TypeError(f"unsupported uniform value {value!r}") from exc
    kind = _SHAPE_TYPES.get(array.shape)
    if kind is None:
        raise TypeError(f"unsupported uniform shape {array.shape}")
    if kind is UniformType.MAT4:
        stored = tuple(tuple(float(x) for x in row) for row in array)
    else:
        stored = tuple(float(x) for x in array)
    return Uniform(name, kind, stored)


# One surfel as written by transform feedback: three vec4 attributes.
#   location 0: position (vec3), confidence
#   location 1: color (24-bit integer stored in a float), unused, init time, timestamp
#   location 2: normal (vec3), radius
VERTEX_DTYPE = np.dtype(
    [
        ("position", "<f4", (3,)),
        ("confidence", "<f4"),
        ("color", "<f4"),
        ("unused", "<f4"),
        ("init_time", "<f4"),
        ("timestamp", "<f4"),
        ("normal", "<f4", (3,)),
        ("radius", "<f4"),
    ]
)

VERTEX_SIZE = VERTEX_DTYPE.itemsize