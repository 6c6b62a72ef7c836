"""
Arithmetic calculator tool.

Expressions are evaluated by walking a restricted ``ast`` tree: numbers, the
four basic operators, modulo, bounded powers and unary signs. Nothing else
is accepted, so user text can never reach ``eval``.
"""

import ast
import math
import operator
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Literal, Optional

import structlog


logger = structlog.get_logger(__name__)

CalculationType = Literal["basic", "financial", "premium", "return", "coverage"]

MAX_EXPONENT = 100
MAX_EXPRESSION_LENGTH = 200

_BINARY_OPERATORS: Dict[type, Callable[[Any, Any], Any]] = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.Mod: operator.mod,
    ast.Pow: operator.pow,
}
_UNARY_OPERATORS: Dict[type, Callable[[Any], Any]] = {
    ast.UAdd: operator.pos,
    ast.USub: operator.neg,
}

_SAFE_CHARACTERS = re.compile(r"^[0-9+\-*/%().\s]+$")
_THOUSANDS_SEPARATOR = re.compile(r"(?<=\d),(?=\d{3}(?!\d))")
_PERCENT_OF = re.compile(
    r"(\d+(?:\.\d+)?)\s*(?:%|percent)\s+of\s+(?:n\$|\$|r)?\s*(\d+(?:\.\d+)?)",
    re.IGNORECASE,
)
_EXPRESSION_CANDIDATE = re.compile(r"[\d(][\d\s+\-*/%().]*")

_TYPE_PATTERNS = (
    ("premium", re.compile(r"premium|monthly payment|payment", re.IGNORECASE)),
    ("return", re.compile(r"return|interest|yield|profit", re.IGNORECASE)),
    ("coverage", re.compile(r"coverage|benefit|sum assured", re.IGNORECASE)),
    ("financial", re.compile(r"financial|investment|loan|mortgage", re.IGNORECASE)),
)

_VARIABLE_PATTERNS = (
    ("premium", re.compile(r"premium\s+(?:of|is|:)?\s*(?:n\$|\$)?(\d+(?:\.\d+)?)", re.IGNORECASE)),
    ("monthly_income", re.compile(r"(?:monthly\s+)?income\s+(?:of|is|:)?\s*(?:n\$|\$)?(\d+(?:\.\d+)?)", re.IGNORECASE)),
    ("coverage_amount", re.compile(r"coverage\s+(?:of|is|:)?\s*(?:n\$|\$)?(\d+(?:\.\d+)?)", re.IGNORECASE)),
    ("coverage_multiplier", re.compile(r"(\d+(?:\.\d+)?)\s*(?:x|times)\s+(?:my\s+)?(?:monthly\s+)?income", re.IGNORECASE)),
)


class CalculationError(ValueError):
    pass


@dataclass
class CalculationRequest:
    """Expression extracted from free text"""
    expression: str
    calculation_type: CalculationType = "basic"
    variables: Dict[str, float] = field(default_factory=dict)

    def to_arguments(self) -> Dict[str, Any]:
        return {
            "expression": self.expression,
            "calculation_type": self.calculation_type,
            "variables": dict(self.variables),
        }


def format_number(value: float) -> str:
    value = float(value)
    if value.is_integer():
        return str(int(value))
    return repr(value)


def _normalise(value: float) -> float:
    if isinstance(value, float):
        if value.is_integer():
            return int(value)
        return round(value, 10)
    return value


def _detect_type(text: str) -> CalculationType:
    for calculation_type, pattern in _TYPE_PATTERNS:
        if pattern.search(text):
            return calculation_type
    return "basic"


def _extract_variables(text: str) -> Dict[str, float]:
    variables = {}
    for name, pattern in _VARIABLE_PATTERNS:
        match = pattern.search(text)
        if match:
            variables[name] = float(match.group(1))
    return variables


def _parse(expression: str) -> ast.Expression:
    if len(expression) > MAX_EXPRESSION_LENGTH:
        raise CalculationError("Expression too long")
    if not _SAFE_CHARACTERS.match(expression):
        raise CalculationError("Invalid expression")
    try:
        return ast.parse(expression.strip(), mode="eval")
    except SyntaxError as exc:
        raise CalculationError("Invalid expression") from exc


def _is_arithmetic(expression: str) -> bool:
    """True for a parseable expression with at least one binary operation"""

    try:
        tree = _parse(expression)
    except CalculationError:
        return False
    has_operation = False
    for node in ast.walk(tree):
        if isinstance(node, ast.BinOp):
            if type(node.op) not in _BINARY_OPERATORS:
                return False
            has_operation = True
        elif isinstance(node, ast.UnaryOp):
            if type(node.op) not in _UNARY_OPERATORS:
                return False
        elif isinstance(node, ast.Constant):
            if isinstance(node.value, bool) or not isinstance(node.value, (int, float)):
                return False
        elif not isinstance(node, (ast.Expression, ast.operator, ast.unaryop)):
            return False
    return has_operation


def _longest_expression(text: str) -> Optional[str]:
    candidates: List[str] = []
    for raw in _EXPRESSION_CANDIDATE.findall(text):
        candidate = raw.strip().rstrip("+-*/%(. ").strip()
        if candidate:
            candidates.append(candidate)
    for candidate in sorted(candidates, key=len, reverse=True):
        if _is_arithmetic(candidate):
            return candidate
    return None


def extract_calculation(text: str) -> Optional[CalculationRequest]:
    """Pull a calculable expression out of a user message.

    "Calculate 15% of 2000" becomes ``2000 * 0.15``; otherwise the longest
    parseable arithmetic run in the text is used. Returns None when nothing
    calculable is found, in which case the calculator is not run.
    """

    if not text:
        return None

    normalised = _THOUSANDS_SEPARATOR.sub("", text)
    calculation_type = _detect_type(normalised)
    variables = _extract_variables(normalised)

    percent = _PERCENT_OF.search(normalised)
    if percent:
        rate = float(percent.group(1)) / 100
        base = float(percent.group(2))
        expression = f"{format_number(base)} * {format_number(rate)}"
        return CalculationRequest(expression, calculation_type, variables)

    expression = _longest_expression(normalised)
    if expression is not None:
        return CalculationRequest(expression, calculation_type, variables)

    if "monthly_income" in variables and "coverage_multiplier" in variables:
        return CalculationRequest("monthly_income * coverage_multiplier", "coverage", variables)

    return None


def _evaluate_node(node: ast.AST) -> float:
    if isinstance(node, ast.Expression):
        return _evaluate_node(node.body)

    if isinstance(node, ast.Constant):
        if isinstance(node.value, bool) or not isinstance(node.value, (int, float)):
            raise CalculationError("Unsupported value")
        return node.value

    if isinstance(node, ast.BinOp) and type(node.op) in _BINARY_OPERATORS:
        left = _evaluate_node(node.left)
        right = _evaluate_node(node.right)
        if isinstance(node.op, ast.Pow) and abs(right) > MAX_EXPONENT:
            raise CalculationError("Exponent too large")
        try:
            return _BINARY_OPERATORS[type(node.op)](left, right)
        except ZeroDivisionError as exc:
            raise CalculationError("Division by zero") from exc
        except OverflowError as exc:
            raise CalculationError("Result too large") from exc

    if isinstance(node, ast.UnaryOp) and type(node.op) in _UNARY_OPERATORS:
        return _UNARY_OPERATORS[type(node.op)](_evaluate_node(node.operand))

    raise CalculationError("Unsupported expression")


def evaluate_arithmetic(expression: str) -> float:
    result = _evaluate_node(_parse(expression))
    try:
        finite = not isinstance(result, complex) and math.isfinite(result)
    except OverflowError:
        finite = False
    if not finite:
        raise CalculationError("Invalid calculation result")
    return _normalise(result)


def calculate(
    expression: str,
    calculation_type: CalculationType = "basic",
    variables: Optional[Dict[str, float]] = None
) -> Dict[str, Any]:
    """Evaluate an expression, returning a result or an error payload.

    Named variables are substituted before evaluation. ``return`` and
    ``coverage`` calculations use the well-known formulas when their inputs
    are present (``current_value``/``initial_value`` and
    ``monthly_income``/``coverage_multiplier``).
    """

    variables = dict(variables or {})
    processed = expression
    for name, value in variables.items():
        processed = re.sub(rf"\b{re.escape(name)}\b", format_number(value), processed)

    try:
        if calculation_type == "return" and variables.get("current_value") and variables.get("initial_value"):
            initial = variables["initial_value"]
            result = _normalise((variables["current_value"] - initial) / initial * 100)
        elif calculation_type == "coverage" and variables.get("monthly_income") and variables.get("coverage_multiplier"):
            result = _normalise(variables["monthly_income"] * variables["coverage_multiplier"])
        else:
            result = evaluate_arithmetic(processed)
    except CalculationError as exc:
        logger.info("calculation_failed", expression=expression, reason=str(exc))
        return {"error": "Failed to calculate", "message": str(exc)}

    return {
        "result": result,
        "formula": processed,
        "expression": processed,
        "calculation_type": calculation_type,
        "variables": variables,
    }
