"""
Overtime calculation.

Pure functions over ``{employee_id, date, hours}`` rows; no database access so
the same code backs both the payroll preview and the committed calculation.

For each employee, over the whole period:
    standard_hours = min(sum(min(day_hours, daily_threshold)), weekly_threshold)
    overtime_hours = total_hours - standard_hours
    gross_pay      = standard_hours * standard_rate + overtime_hours * overtime_rate

The daily view (sum of hours over the daily threshold) and the weekly view
(total over the weekly threshold) are reported alongside for auditing; neither
is added on top of ``overtime_hours``.
"""
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, Iterable, List, Optional, Union

Number = Union[Decimal, int, float, str, None]

HOURS_QUANT = Decimal("0.01")
MONEY_QUANT = Decimal("0.01")
ZERO = Decimal("0")


@dataclass(frozen=True)
class OvertimeRules:
    daily_threshold: Decimal = Decimal("8")
    weekly_threshold: Decimal = Decimal("40")
    overtime_multiplier: Decimal = Decimal("1.5")
    default_standard_rate: Decimal = Decimal("10.00")

    def overtime_rate_for(self, standard_rate: Decimal) -> Decimal:
        return quantize_money(to_decimal(standard_rate) * self.overtime_multiplier)


@dataclass(frozen=True)
class HoursRow:
    employee_id: int
    date: date
    hours: Number = None


@dataclass
class DailyHours:
    date: date
    hours: Decimal
    within_daily_threshold: Decimal
    over_daily_threshold: Decimal


@dataclass
class EmployeeOvertime:
    employee_id: int
    total_hours: Decimal
    standard_hours: Decimal
    overtime_hours: Decimal
    daily_overtime_hours: Decimal
    weekly_overtime_hours: Decimal
    standard_rate: Decimal
    overtime_rate: Decimal
    gross_pay: Decimal
    record_count: int = 0
    days: List[DailyHours] = field(default_factory=list)


def to_decimal(value: Number) -> Decimal:
    """None and empty values count as zero hours."""
    if value is None or value == "":
        return ZERO
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def quantize_hours(value: Decimal) -> Decimal:
    return value.quantize(HOURS_QUANT, rounding=ROUND_HALF_UP)


def quantize_money(value: Decimal) -> Decimal:
    return value.quantize(MONEY_QUANT, rounding=ROUND_HALF_UP)


def calculate_employee_overtime(
    rows: Iterable[HoursRow],
    standard_rate: Number = None,
    overtime_rate: Number = None,
    rules: OvertimeRules = OvertimeRules(),
    employee_id: Optional[int] = None,
) -> EmployeeOvertime:
    """
    Split one employee's hours into standard and overtime and price them.

    Args:
        rows: The employee's attendance rows (several rows on one day are summed)
        standard_rate: Hourly rate; defaults to ``rules.default_standard_rate``
        overtime_rate: Overtime hourly rate; defaults to standard rate times the multiplier
        rules: Thresholds and multiplier
        employee_id: Used when ``rows`` is empty

    Returns:
        EmployeeOvertime with totals and the per-day breakdown
    """
    rows = list(rows)
    if employee_id is None:
        if not rows:
            raise ValueError("employee_id is required when there are no rows")
        employee_id = rows[0].employee_id

    std_rate = to_decimal(standard_rate) if standard_rate is not None else rules.default_standard_rate
    ot_rate = to_decimal(overtime_rate) if overtime_rate is not None else rules.overtime_rate_for(std_rate)

    per_day: Dict[date, Decimal] = OrderedDict()
    for row in sorted(rows, key=lambda r: r.date):
        per_day[row.date] = per_day.get(row.date, ZERO) + to_decimal(row.hours)

    days: List[DailyHours] = []
    total = ZERO
    within_daily = ZERO
    daily_overtime = ZERO
    for day, hours in per_day.items():
        capped = min(hours, rules.daily_threshold)
        over = max(ZERO, hours - rules.daily_threshold)
        days.append(DailyHours(date=day, hours=hours, within_daily_threshold=capped, over_daily_threshold=over))
        total += hours
        within_daily += capped
        daily_overtime += over

    standard = min(within_daily, rules.weekly_threshold)
    overtime = total - standard
    weekly_overtime = max(ZERO, total - rules.weekly_threshold)
    gross = standard * std_rate + overtime * ot_rate

    return EmployeeOvertime(
        employee_id=employee_id,
        total_hours=quantize_hours(total),
        standard_hours=quantize_hours(standard),
        overtime_hours=quantize_hours(overtime),
        daily_overtime_hours=quantize_hours(daily_overtime),
        weekly_overtime_hours=quantize_hours(weekly_overtime),
        standard_rate=std_rate,
        overtime_rate=ot_rate,
        gross_pay=quantize_money(gross),
        record_count=len(rows),
        days=days,
    )


def calculate_overtime(
    rows: Iterable[HoursRow],
    rates: Optional[Dict[int, Number]] = None,
    rules: OvertimeRules = OvertimeRules(),
) -> List[EmployeeOvertime]:
    """
    Group rows by employee and run ``calculate_employee_overtime`` for each.

    Args:
        rows: Attendance rows for any number of employees
        rates: Standard hourly rate per employee id; missing ids use the default rate
        rules: Thresholds and multiplier

    Returns:
        One EmployeeOvertime per employee, ordered by employee id
    """
    grouped: Dict[int, List[HoursRow]] = {}
    for row in rows:
        grouped.setdefault(row.employee_id, []).append(row)

    rates = rates or {}
    return [
        calculate_employee_overtime(grouped[employee_id], standard_rate=rates.get(employee_id), rules=rules)
        for employee_id in sorted(grouped)
    ]
