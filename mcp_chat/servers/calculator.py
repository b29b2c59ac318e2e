"""
Calculator MCP tool server.

Two tools, both raising on bad input so the client sees isError results:
  - calculate: arithmetic over a whitelisted set of math names
  - convert_units: length, mass and temperature conversions

    echo '{"jsonrpc":"2.0","id":1,"method":"tools/call","params":{"name":"calculate","arguments":{"expression":"sqrt(2)*pi"}}}' \\
        | python mcp_chat/servers/calculator.py
"""

import ast
import math
import operator
import os
import sys

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__)))))

from mcp_chat.server import StdioToolServer, ToolHandler

_BINARY = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.FloorDiv: operator.floordiv,
    ast.Mod: operator.mod,
    ast.Pow: operator.pow,
}
_UNARY = {ast.UAdd: operator.pos, ast.USub: operator.neg}

_FUNCTIONS = {
    "sqrt": math.sqrt,
    "log": math.log,
    "log10": math.log10,
    "exp": math.exp,
    "sin": math.sin,
    "cos": math.cos,
    "tan": math.tan,
    "abs": abs,
    "round": round,
    "min": min,
    "max": max,
}
_CONSTANTS = {"pi": math.pi, "e": math.e, "tau": math.tau}


def evaluate(expression: str) -> float:
    """Evaluate an arithmetic expression without eval()."""
    tree = ast.parse(expression, mode="eval")
    return _eval_node(tree.body)


def _eval_node(node):
    if isinstance(node, ast.Constant) and isinstance(node.value, (int, float)):
        return node.value
    if isinstance(node, ast.Name) and node.id in _CONSTANTS:
        return _CONSTANTS[node.id]
    if isinstance(node, ast.BinOp) and type(node.op) in _BINARY:
        return _BINARY[type(node.op)](_eval_node(node.left), _eval_node(node.right))
    if isinstance(node, ast.UnaryOp) and type(node.op) in _UNARY:
        return _UNARY[type(node.op)](_eval_node(node.operand))
    if (
        isinstance(node, ast.Call)
        and isinstance(node.func, ast.Name)
        and node.func.id in _FUNCTIONS
        and not node.keywords
    ):
        return _FUNCTIONS[node.func.id](*(_eval_node(arg) for arg in node.args))
    raise ValueError(f"Unsupported expression element: {ast.dump(node)[:60]}")


class CalculateTool(ToolHandler):
    name = "calculate"
    description = (
        "Evaluate an arithmetic expression. Operators: + - * / // % **. "
        f"Functions: {', '.join(sorted(_FUNCTIONS))}. Constants: pi, e, tau."
    )
    parameters = {
        "expression": {
            "type": "string",
            "description": "Expression to evaluate, e.g. 'sqrt(2) * pi / 3'",
        },
    }
    required = ["expression"]

    def handle(self, params: dict) -> dict:
        expression = (params.get("expression") or "").strip()
        if not expression:
            raise ValueError("No expression provided")
        return {"expression": expression, "result": evaluate(expression)}


# Factors to each dimension's base unit (metre, kilogram)
_LINEAR_UNITS = {
    "length": {"m": 1.0, "km": 1000.0, "cm": 0.01, "mm": 0.001, "ft": 0.3048, "in": 0.0254, "mi": 1609.344},
    "mass": {"kg": 1.0, "g": 0.001, "lb": 0.45359237, "oz": 0.028349523125},
}
_ALIASES = {"miles": "mi", "mile": "mi", "meters": "m", "feet": "ft", "inches": "in", "pounds": "lb", "grams": "g"}

_TO_KELVIN = {
    "c": lambda v: v + 273.15,
    "f": lambda v: (v - 32) * 5 / 9 + 273.15,
    "k": lambda v: v,
}
_FROM_KELVIN = {
    "c": lambda v: v - 273.15,
    "f": lambda v: (v - 273.15) * 9 / 5 + 32,
    "k": lambda v: v,
}
_TEMPERATURE_ALIASES = {"celsius": "c", "fahrenheit": "f", "kelvin": "k"}


def convert(value: float, from_unit: str, to_unit: str) -> float:
    source = from_unit.strip().lower()
    target = to_unit.strip().lower()

    source_t = _TEMPERATURE_ALIASES.get(source, source)
    target_t = _TEMPERATURE_ALIASES.get(target, target)
    if source_t in _TO_KELVIN and target_t in _FROM_KELVIN:
        return _FROM_KELVIN[target_t](_TO_KELVIN[source_t](value))

    source = _ALIASES.get(source, source)
    target = _ALIASES.get(target, target)
    for units in _LINEAR_UNITS.values():
        if source in units and target in units:
            return value * units[source] / units[target]
    raise ValueError(f"Cannot convert {from_unit} to {to_unit}")


class ConvertUnitsTool(ToolHandler):
    name = "convert_units"
    description = "Convert a value between units of length, mass or temperature."
    parameters = {
        "value": {"type": "number", "description": "The value to convert"},
        "from_unit": {"type": "string", "description": "Source unit, e.g. 'km', 'lb', 'celsius'"},
        "to_unit": {"type": "string", "description": "Target unit, e.g. 'miles', 'kg', 'fahrenheit'"},
    }
    required = ["value", "from_unit", "to_unit"]

    def handle(self, params: dict) -> dict:
        value = params.get("value")
        if not isinstance(value, (int, float)):
            raise ValueError("value must be a number")
        result = convert(value, params.get("from_unit", ""), params.get("to_unit", ""))
        return {"value": value, "from": params["from_unit"], "to": params["to_unit"], "result": round(result, 6)}


if __name__ == "__main__":
    server = StdioToolServer("calculator")
    server.register(CalculateTool())
    server.register(ConvertUnitsTool())
    server.run()
