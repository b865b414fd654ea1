"""
Payroll Engine - Variable Resolver

Builds the flat name -> value mapping a formula is evaluated against.
Layers are applied in order and later layers win:

    system_default       active catalog variables' default values
    employee_override    overrides whose effective window contains the date
    employee_field       base_salary, hra_amount, other_conv_amount and
                         overtime_rate_per_hour (when set)
    calculation_context  figures derived by the calculator for this run
    custom               caller-supplied values

A variable no layer supplies is simply absent.
"""

import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from app.services.payroll_engine.records import (
    EmployeeRecord,
    FormulaVariableRecord,
    VariableOverrideRecord,
    to_decimal,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class VariableContext:
    """Inputs shared by all resolution layers."""
    employee: EmployeeRecord
    on_date: date
    catalog: Sequence[FormulaVariableRecord] = ()
    overrides: Sequence[VariableOverrideRecord] = ()
    context_variables: Mapping[str, Any] = field(default_factory=dict)
    custom_variables: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ResolvedVariables:
    values: Dict[str, Decimal]
    sources: Dict[str, str]

    def get(self, name: str, default: Optional[Decimal] = None) -> Optional[Decimal]:
        return self.values.get(name, default)

    def __contains__(self, name: str) -> bool:
        return name in self.values


Layer = Callable[[VariableContext], Dict[str, Decimal]]


def _numeric(values: Mapping[str, Any]) -> Dict[str, Decimal]:
    return {name: to_decimal(value) for name, value in values.items() if value is not None}


def system_defaults(ctx: VariableContext) -> Dict[str, Decimal]:
    return {
        variable.name: to_decimal(variable.default_value)
        for variable in ctx.catalog
        if variable.active and variable.default_value is not None
    }


def employee_overrides(ctx: VariableContext) -> Dict[str, Decimal]:
    values = {}
    for variable in ctx.catalog:
        if not variable.active:
            continue
        effective = [
            override for override in ctx.overrides
            if override.variable_id == variable.id
            and override.employee_id == ctx.employee.id
            and override.is_effective_on(ctx.on_date)
        ]
        if not effective:
            continue
        if len(effective) > 1:
            logger.warning(
                f"{len(effective)} overrides of {variable.name} effective on "
                f"{ctx.on_date} for employee {ctx.employee.id}; using the latest"
            )
        chosen = max(effective, key=lambda override: override.effective_from)
        values[variable.name] = to_decimal(chosen.override_value)
    return values


def employee_fields(ctx: VariableContext) -> Dict[str, Decimal]:
    employee = ctx.employee
    values = {
        "base_salary": to_decimal(employee.base_salary),
        "hra_amount": to_decimal(employee.hra_amount),
        "other_conv_amount": to_decimal(employee.other_conv_amount),
    }
    if employee.overtime_rate_per_hour is not None:
        values["overtime_rate_per_hour"] = to_decimal(employee.overtime_rate_per_hour)
    return values


def calculation_context(ctx: VariableContext) -> Dict[str, Decimal]:
    return _numeric(ctx.context_variables)


def custom_variables(ctx: VariableContext) -> Dict[str, Decimal]:
    return _numeric(ctx.custom_variables)


DEFAULT_LAYERS: Tuple[Tuple[str, Layer], ...] = (
    ("system_default", system_defaults),
    ("employee_override", employee_overrides),
    ("employee_field", employee_fields),
    ("calculation_context", calculation_context),
    ("custom", custom_variables),
)


class VariableResolver:
    """Applies resolution layers in order; later layers win."""

    def __init__(self, layers: Sequence[Tuple[str, Layer]] = DEFAULT_LAYERS):
        self.layers: List[Tuple[str, Layer]] = list(layers)

    def resolve(self, ctx: VariableContext) -> ResolvedVariables:
        values: Dict[str, Decimal] = {}
        sources: Dict[str, str] = {}
        for layer_name, layer in self.layers:
            for name, value in layer(ctx).items():
                values[name] = value
                sources[name] = layer_name
        return ResolvedVariables(values=values, sources=sources)
