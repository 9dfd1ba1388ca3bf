import numpy as np
import pytest

from motionfusion.uniform import UniformType, uniform


def test_int_uniform():
    u = uniform("gSampler", 1)
    assert u.type is UniformType.INT
    assert u.components == (1,)


def test_bool_becomes_int():
    u = uniform("passthrough", True)
    assert u.type is UniformType.INT
    assert u.value == 1


def test_unsigned_uniform():
    u = uniform("count", np.uint32(7))
    assert u.type is UniformType.UINT
    assert u.components == (7,)


def test_float_uniform():
    u = uniform("maxDepth", 2.5)
    assert u.type is UniformType.FLOAT
    assert u.components == (2.5,)


@pytest.mark.parametrize(
    "value, kind",
    [
        ([1.0, 2.0], UniformType.VEC2),
        ([1.0, 2.0, 3.0], UniformType.VEC3),
        ([1.0, 2.0, 3.0, 4.0], UniformType.VEC4),
    ],
)
def test_vector_uniforms(value, kind):
    u = uniform("cam", np.array(value))
    assert u.type is kind
    assert u.components == tuple(value)


def test_matrix_components_are_column_major():
    matrix = np.arange(16, dtype=float).reshape(4, 4)
    u = uniform("pose", matrix)
    assert u.type is UniformType.MAT4
    assert u.components[:4] == (0.0, 4.0, 8.0, 12.0)
    assert len(u.components) == 16


def test_uniforms_compare_by_value():
    assert uniform("cam", [1.0, 2.0, 3.0]) == uniform("cam", (1.0, 2.0, 3.0))


def test_unsupported_shape_raises():
    with pytest.raises(TypeError):
        uniform("bad", [1.0, 2.0, 3.0, 4.0, 5.0])


def test_string_raises():
    with pytest.raises(TypeError):
        uniform("bad", "text")


def test_int_overflow_raises():
    with pytest.raises(OverflowError):
        uniform("big", 2**40)