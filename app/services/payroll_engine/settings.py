"""
Payroll Engine - Statutory Settings

PF/ESI rates and the Sunday overtime multiplier are effective-dated rows.
The row with the latest ``effective_from`` on or before the requested date
wins; fields left empty on that row fall back to configured defaults.
"""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Iterable, Optional

from app.config import settings as app_settings
from app.services.payroll_engine.records import SettingsRecord, to_decimal


@dataclass(frozen=True)
class PayrollSettings:
    """Statutory settings in force on a date."""
    pf_rate: Decimal
    esi_rate: Decimal
    sunday_overtime_multiplier: Decimal
    pf_cap: Decimal
    esi_wage_ceiling: Decimal
    effective_from: Optional[date] = None

    @classmethod
    def defaults(cls) -> "PayrollSettings":
        return cls(
            pf_rate=app_settings.payroll_default_pf_rate,
            esi_rate=app_settings.payroll_default_esi_rate,
            sunday_overtime_multiplier=app_settings.payroll_default_sunday_multiplier,
            pf_cap=app_settings.payroll_pf_cap,
            esi_wage_ceiling=app_settings.payroll_esi_wage_ceiling,
        )


def settings_as_of(rows: Iterable[SettingsRecord], on: date) -> PayrollSettings:
    """Pick the settings row in force on ``on``."""
    defaults = PayrollSettings.defaults()
    candidates = [row for row in rows if row.effective_from <= on]
    if not candidates:
        return defaults

    current = max(candidates, key=lambda row: row.effective_from)
    return PayrollSettings(
        pf_rate=to_decimal(current.pf_rate, defaults.pf_rate),
        esi_rate=to_decimal(current.esi_rate, defaults.esi_rate),
        sunday_overtime_multiplier=to_decimal(
            current.sunday_overtime_multiplier, defaults.sunday_overtime_multiplier
        ),
        pf_cap=defaults.pf_cap,
        esi_wage_ceiling=defaults.esi_wage_ceiling,
        effective_from=current.effective_from,
    )
