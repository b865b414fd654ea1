"""
Payroll Engine - Formula Evaluator

Evaluates admin-authored payroll formulas such as
``overtime_hours * base_salary / 30 / 8 * overtime_multiplier``.

Evaluation is substitution followed by plain arithmetic:
  1. Every variable name appearing as a whole word is replaced by its
     numeric value, longest names first so ``overtime_rate`` never eats
     into ``overtime_rate_per_hour``.
  2. The substituted text must match ``[0-9+\\-*/.() ]+``; anything else
     (a leftover identifier, a call, an operator outside the set) rejects
     the formula.
  3. The remaining text is parsed into a restricted AST: numbers,
     parentheses, unary +/- and binary + - * /. Nothing else is evaluated.

The evaluator never raises. A rejected or failing formula evaluates to 0
and the reason is carried on ``FormulaEvaluation.warning`` so callers can
surface diagnostics without changing the numeric result.
"""

import ast
import logging
import re
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Mapping, Optional

from app.services.payroll_engine.records import ZERO, money, to_decimal
from app.utils.error_handling import FormulaValidationException

logger = logging.getLogger(__name__)


SAFE_EXPRESSION = re.compile(r"^[0-9+\-*/.() ]+$")

_BINARY_OPERATORS = {
    ast.Add: lambda left, right: left + right,
    ast.Sub: lambda left, right: left - right,
    ast.Mult: lambda left, right: left * right,
    ast.Div: lambda left, right: left / right,
}


@dataclass(frozen=True)
class FormulaEvaluation:
    """Outcome of one evaluation."""
    value: Decimal
    expression: str
    substituted_expression: str
    warning: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.warning is None


def _format_number(value: Decimal) -> str:
    # Fixed-point only; exponent notation would fail the character gate
    return format(value, "f")


def substitute_variables(expression: str, variables: Mapping[str, Any]) -> str:
    """Replace whole-word variable names with their values, longest first."""
    substituted = expression
    for name in sorted(variables, key=len, reverse=True):
        value = variables[name]
        if value is None:
            continue
        number = _format_number(to_decimal(value))
        substituted = re.sub(rf"\b{re.escape(name)}\b", number, substituted)
    return substituted


def _evaluate_node(node: ast.AST, source: str) -> Decimal:
    if isinstance(node, ast.Constant) and isinstance(node.value, (int, float)) \
            and not isinstance(node.value, bool):
        # Read the literal text so 0.1 stays exactly 0.1
        segment = ast.get_source_segment(source, node) or str(node.value)
        return Decimal(segment)

    if isinstance(node, ast.UnaryOp) and isinstance(node.op, (ast.UAdd, ast.USub)):
        operand = _evaluate_node(node.operand, source)
        return operand if isinstance(node.op, ast.UAdd) else -operand

    if isinstance(node, ast.BinOp):
        operator = _BINARY_OPERATORS.get(type(node.op))
        if operator is None:
            raise FormulaValidationException(
                source, f"Disallowed operator: {type(node.op).__name__}"
            )
        return operator(_evaluate_node(node.left, source), _evaluate_node(node.right, source))

    raise FormulaValidationException(source, f"Disallowed element: {type(node).__name__}")


class FormulaEvaluator:
    """Substitution evaluator for payroll formulas."""

    def evaluate(self, expression: str, variables: Optional[Mapping[str, Any]] = None) -> Decimal:
        """Evaluate and return the value only (0 on any failure)."""
        return self.evaluate_detailed(expression, variables).value

    def evaluate_detailed(
        self,
        expression: str,
        variables: Optional[Mapping[str, Any]] = None,
    ) -> FormulaEvaluation:
        variables = variables or {}
        substituted = expression or ""
        try:
            substituted = substitute_variables(expression or "", variables)
            if not SAFE_EXPRESSION.match(substituted):
                raise FormulaValidationException(
                    expression, "Invalid characters in formula expression"
                )

            try:
                tree = ast.parse(substituted.strip(), mode="eval")
            except SyntaxError as e:
                raise FormulaValidationException(expression, f"Syntax error: {e.msg}")

            result = _evaluate_node(tree.body, substituted.strip())
            if not result.is_finite():
                raise FormulaValidationException(expression, "Result is not a finite number")

            return FormulaEvaluation(
                value=money(result),
                expression=expression,
                substituted_expression=substituted,
            )
        except FormulaValidationException as e:
            reason = e.reason
        except (ArithmeticError, InvalidOperation, ValueError, RecursionError) as e:
            reason = f"Formula evaluation failed: {e.__class__.__name__}"

        logger.warning(f"Formula evaluated to 0: {reason} ({expression!r})")
        return FormulaEvaluation(
            value=money(ZERO),
            expression=expression,
            substituted_expression=substituted,
            warning=reason,
        )


# ===========================================
# FORMULA VALIDATION
# ===========================================

# Test context used when an administrator validates a formula
DEFAULT_TEST_VARIABLES: Dict[str, Decimal] = {
    "base_salary": Decimal("50000"),
    "days_present": Decimal("26"),
    "overtime_hours": Decimal("10"),
    "working_days_per_month": Decimal("26"),
    "hours_per_day": Decimal("8"),
    "overtime_multiplier": Decimal("2.0"),
    "pf_rate": Decimal("12"),
    "esi_rate": Decimal("0.75"),
    "advances": Decimal("5000"),
    "gross_salary": Decimal("55000"),
    "total_deductions": Decimal("12000"),
    "basic_allowance": Decimal("1000"),
    "transport_allowance": Decimal("2000"),
    "meal_allowance": Decimal("1500"),
    "other_deductions": Decimal("0"),
    "hra_amount": Decimal("8000"),
    "other_conv_amount": Decimal("3000"),
}

# Accepted result range per formula type (inclusive)
RESULT_RANGES: Dict[str, tuple] = {
    "gross_salary": (Decimal("0"), Decimal("1000000")),
    "deductions": (Decimal("0"), Decimal("100000")),
    "net_salary": (Decimal("0"), Decimal("1000000")),
    "allowances": (Decimal("0"), Decimal("100000")),
}

HIGH_RESULT_THRESHOLD = Decimal("1000000")


@dataclass(frozen=True)
class FormulaValidationResult:
    valid: bool
    test_result: Decimal
    test_variables: Dict[str, Decimal]
    warnings: List[str] = field(default_factory=list)
    suggestions: List[str] = field(default_factory=list)
    error: Optional[str] = None


def validate_formula(
    expression: str,
    formula_type: str,
    test_variables: Optional[Mapping[str, Any]] = None,
    evaluator: Optional[FormulaEvaluator] = None,
) -> FormulaValidationResult:
    """
    Dry-run a formula against representative values.

    The result is valid when the formula evaluates cleanly and, for the
    formula types with a known range, lands inside it.
    """
    evaluator = evaluator or FormulaEvaluator()
    context = dict(DEFAULT_TEST_VARIABLES)
    context.update({name: to_decimal(value) for name, value in (test_variables or {}).items()})

    evaluation = evaluator.evaluate_detailed(expression, context)
    if not evaluation.succeeded:
        return FormulaValidationResult(
            valid=False,
            test_result=money(ZERO),
            test_variables=context,
            error=evaluation.warning,
        )

    result = evaluation.value
    bounds = RESULT_RANGES.get(formula_type)
    valid = bounds is None or bounds[0] <= result <= bounds[1]

    warnings = []
    if result < 0:
        warnings.append("Formula produces negative result")
    if result > HIGH_RESULT_THRESHOLD:
        warnings.append("Formula produces unusually high result")

    suggestions = []
    if formula_type == "gross_salary" and "base_salary" not in expression:
        suggestions.append("Consider including base_salary in gross salary calculation")
    if formula_type == "net_salary" and "gross_salary" not in expression:
        suggestions.append("Net salary calculation should typically start with gross_salary")

    return FormulaValidationResult(
        valid=valid,
        test_result=result,
        test_variables=context,
        warnings=warnings,
        suggestions=suggestions,
    )
