import math

import pytest

from mcp_chat.servers.calculator import convert, evaluate


@pytest.mark.parametrize("expression, expected", [
    ("2 + 2", 4),
    ("-3 ** 2", -9),
    ("sqrt(16) * pi", 4 * math.pi),
    ("max(1, 7, 3) // 2", 3),
])
def test_evaluate(expression, expected):
    assert evaluate(expression) == pytest.approx(expected)


@pytest.mark.parametrize("expression", [
    "__import__('os')",
    "open('x')",
    "(1).real",
    "'a' * 3",
])
def test_evaluate_rejects_non_arithmetic(expression):
    with pytest.raises(ValueError):
        evaluate(expression)


@pytest.mark.parametrize("value, source, target, expected", [
    (10, "km", "miles", 6.2137119),
    (1, "lb", "g", 453.59237),
    (100, "celsius", "fahrenheit", 212),
    (0, "K", "C", -273.15),
])
def test_convert(value, source, target, expected):
    assert convert(value, source, target) == pytest.approx(expected)


def test_convert_across_dimensions():
    with pytest.raises(ValueError, match="Cannot convert km to kg"):
        convert(1, "km", "kg")
