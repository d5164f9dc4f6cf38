from __future__ import annotations

import pytest

from fglin.core.errors import KeyNotFound, TypeMismatch
from fglin.core.values import Values
from fglin.slam.manifold import LieVector, Point2, Pose2


def _values() -> Values:
    values = Values()
    values.insert("x2", Pose2(1.0, 0.0, 0.5))
    values.insert("l1", Point2(2.0, 3.0))
    values.insert("v", LieVector([1.0, 2.0, 3.0, 4.0]))
    return values


def test_insert_and_at():
    values = _values()

    assert len(values) == 3
    assert values.at("l1").equals(Point2(2.0, 3.0))
    assert values.at("x2", Pose2).equals(Pose2(1.0, 0.0, 0.5))
    assert "l1" in values
    assert values.contains("v")
    assert not values.contains("x1")


def test_duplicate_insert_rejected():
    values = _values()
    with pytest.raises(ValueError):
        values.insert("l1", Point2(0.0, 0.0))


def test_at_missing_and_wrong_type():
    values = _values()

    with pytest.raises(KeyNotFound) as excinfo:
        values.at("x1")
    assert excinfo.value.key == "x1"
    # also catchable as a builtin
    with pytest.raises(KeyError):
        values.at("x1")

    with pytest.raises(TypeMismatch) as excinfo:
        values.at("l1", Pose2)
    assert excinfo.value.expected is Pose2
    assert excinfo.value.actual is Point2


def test_update():
    values = _values()

    values.update("l1", Point2(-1.0, -1.0))
    assert values.at("l1").equals(Point2(-1.0, -1.0))

    with pytest.raises(TypeMismatch):
        values.update("l1", Pose2(0.0, 0.0, 0.0))
    with pytest.raises(KeyNotFound):
        values.update("x1", Point2(0.0, 0.0))


def test_keys_sorted_and_dims():
    values = _values()

    assert values.keys() == ("l1", "v", "x2")
    assert list(values) == ["l1", "v", "x2"]
    assert values.dims() == {"l1": 2, "v": 4, "x2": 3}


def test_tuple_keys():
    values = Values()
    values.insert(("x", 2), Point2(0.0, 0.0))
    values.insert(("x", 1), Point2(1.0, 0.0))

    assert values.keys() == (("x", 1), ("x", 2))


def test_equals():
    a, b = _values(), _values()
    assert a.equals(b)

    b.update("l1", Point2(2.0, 3.0 + 1e-6))
    assert not a.equals(b)
    assert a.equals(b, tol=1e-5)

    c = Values()
    c.insert("l1", Point2(2.0, 3.0))
    assert not a.equals(c)
