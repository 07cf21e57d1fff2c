from dataclasses import dataclass
from datetime import date, timedelta

MAX_ANCHOR_DAY = 28


@dataclass(frozen=True)
class Cycle:
    start: date
    year: int
    month: int


def _check_anchor(anchor_day: int) -> None:
    if not 1 <= anchor_day <= MAX_ANCHOR_DAY:
        raise ValueError(
            f"Budget anchor day must be between 1 and {MAX_ANCHOR_DAY}, got {anchor_day}"
        )


def add_months(base: date, months: int) -> date:
    total_months = base.month - 1 + months
    year = base.year + total_months // 12
    month = total_months % 12 + 1
    if month == 12:
        next_month = date(year + 1, 1, 1)
    else:
        next_month = date(year, month + 1, 1)
    dim = (next_month - date(year, month, 1)).days
    return date(year, month, min(base.day, dim))


def cycle_start(reference: date, anchor_day: int) -> date:
    _check_anchor(anchor_day)
    if reference.day >= anchor_day:
        return date(reference.year, reference.month, anchor_day)
    if reference.month == 1:
        return date(reference.year - 1, 12, anchor_day)
    return date(reference.year, reference.month - 1, anchor_day)


def prior_cycle_start(start: date, anchor_day: int) -> date:
    _check_anchor(anchor_day)
    return add_months(start.replace(day=anchor_day), -1)


def storage_key(start: date, anchor_day: int) -> tuple[int, int]:
    # a mid-month cycle is stored under the month holding most of its days
    _check_anchor(anchor_day)
    if anchor_day == 1:
        return start.year, start.month
    shifted = add_months(start, 1)
    return shifted.year, shifted.month


def historical_cycles(
    first_transaction: date, anchor_day: int, budget_start: date
) -> list[Cycle]:
    # newest first
    cycles: list[Cycle] = []
    candidate = prior_cycle_start(cycle_start(first_transaction, anchor_day), anchor_day)
    while candidate >= budget_start:
        year, month = storage_key(candidate, anchor_day)
        cycles.append(Cycle(start=candidate, year=year, month=month))
        candidate = prior_cycle_start(candidate, anchor_day)
    return cycles


def cycles_in_period(start: date, end_inclusive: date) -> int:
    after = end_inclusive + timedelta(days=1)
    months = (after.year - start.year) * 12 + after.month - start.month
    if after.day < start.day:
        months -= 1
    if add_months(start, months) < after:
        # a trailing partial cycle still gets its share
        months += 1
    return max(months, 1)
