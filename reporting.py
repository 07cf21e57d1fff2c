from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Optional, Protocol, Sequence

from categories import CategorySchema
from domain import AnnualBudget, Decision, Resolved
from periods import cycles_in_period

logger = logging.getLogger(__name__)

TWO_PLACES = Decimal("0.01")
OVERVIEW_TITLE = "Overview"


def round_money(value: Decimal) -> Decimal:
    return value.quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


class AnnualBudgetProvider(Protocol):
    def periods_for(
        self, category: str, subcategory: Optional[str] = None
    ) -> list[AnnualBudget]: ...

    def all_periods(self) -> list[AnnualBudget]: ...


@dataclass(frozen=True)
class CategoryReportDataItem:
    name: str
    actual: Decimal


@dataclass(frozen=True)
class CategoryReport:
    title: str
    data: tuple[CategoryReportDataItem, ...]

    @property
    def total(self) -> Decimal:
        return sum((item.actual for item in self.data), Decimal("0"))


@dataclass(frozen=True)
class HistoricalReports:
    start: date
    reports: tuple[CategoryReport, ...]


@dataclass(frozen=True)
class AggregateOverviewDataItem:
    name: str
    actual: Decimal
    budget: Optional[Decimal]
    year_to_date_actual: Decimal
    year_to_date_budget: Optional[Decimal]
    annual_budget: Optional[Decimal]
    variance: Optional[Decimal]


@dataclass(frozen=True)
class AggregateOverviewReport:
    title: str
    period_start: date
    period_end: date
    cycles_elapsed: int
    cycles_in_budget: int
    actual: Decimal
    budget: Decimal
    year_to_date_actual: Decimal
    year_to_date_budget: Decimal
    annual_budget: Decimal
    variance: Decimal
    data: tuple[AggregateOverviewDataItem, ...]


@dataclass(frozen=True)
class MonthlyReport:
    year: int
    month: str
    month_number: int
    aggregate_overview: Optional[AggregateOverviewReport]
    overview: Optional[CategoryReport]
    categories: tuple[CategoryReport, ...]


class CategoryReporter:
    def __init__(self, schema: CategorySchema, budgets: AnnualBudgetProvider) -> None:
        self.schema = schema
        self.budgets = budgets

    def _category_order(self, titles: Iterable[str]) -> list[str]:
        known = [t for t in self.schema.titles() if t in titles]
        unknown = sorted(t for t in titles if t not in self.schema)
        return known + unknown

    def _subcategory_order(self, title: str, names: Iterable[str]) -> list[str]:
        names = set(names)
        category = self.schema.get(title)
        canonical = category.subcategory_names() if category else []
        known = [n for n in canonical if n in names]
        unknown = sorted(n for n in names if n not in canonical)
        return known + unknown

    def category_reports_from(
        self, decisions: Iterable[Decision]
    ) -> list[CategoryReport]:
        # exact sums, rounded once per subcategory
        totals: dict[str, dict[str, Decimal]] = defaultdict(dict)
        for decision in decisions:
            resolution = decision.resolution
            if not isinstance(resolution, Resolved):
                continue
            by_sub = totals[resolution.category]
            by_sub[resolution.subcategory] = (
                by_sub.get(resolution.subcategory, Decimal("0")) + decision.line.amount
            )

        reports: list[CategoryReport] = []
        for title in self._category_order(totals.keys()):
            by_sub = totals[title]
            data = tuple(
                CategoryReportDataItem(name=name, actual=round_money(by_sub[name]))
                for name in self._subcategory_order(title, by_sub.keys())
            )
            if data:
                reports.append(CategoryReport(title=title, data=data))
        return reports

    def overview_from(
        self, category_reports: Sequence[CategoryReport]
    ) -> Optional[CategoryReport]:
        if not category_reports:
            return None
        return CategoryReport(
            title=OVERVIEW_TITLE,
            data=tuple(
                CategoryReportDataItem(name=report.title, actual=round_money(report.total))
                for report in category_reports
            ),
        )

    def current_budget_for(self, day: date) -> Optional[AnnualBudget]:
        covering = [b for b in self.budgets.all_periods() if b.covers(day)]
        if not covering:
            return None
        covering.sort(key=lambda b: (b.start_date_inclusive, self.schema.position(b.category)))
        return covering[0]

    def _category_budget(self, title: str, day: date) -> Optional[AnnualBudget]:
        # a category-level period wins over the sum of covering subcategory periods
        periods = [b for b in self.budgets.periods_for(title) if b.covers(day)]
        whole = [b for b in periods if b.subcategory is None]
        if whole:
            return whole[0]
        parts = [b for b in periods if b.subcategory is not None]
        if not parts:
            return None
        return AnnualBudget(
            category=title,
            subcategory=None,
            allocated_amount=sum((b.allocated_amount for b in parts), Decimal("0")),
            start_date_inclusive=min(b.start_date_inclusive for b in parts),
            end_date_inclusive=max(b.end_date_inclusive for b in parts),
        )

    def aggregated_overview_from(
        self,
        overview: Optional[CategoryReport],
        period_start: date,
        period_end: date,
        historical_category_reports: Sequence[HistoricalReports],
    ) -> Optional[AggregateOverviewReport]:
        anchor = self.current_budget_for(period_start) or self.current_budget_for(
            period_end
        )
        if anchor is None:
            return None
        budget_day = period_start if anchor.covers(period_start) else period_end
        cycles_in_budget = cycles_in_period(
            anchor.start_date_inclusive, anchor.end_date_inclusive
        )
        cycles_elapsed = min(len(historical_category_reports) + 1, cycles_in_budget)

        current: dict[str, Decimal] = {}
        if overview is not None:
            for item in overview.data:
                current[item.name] = item.actual

        history: list[tuple[date, dict[str, Decimal]]] = [
            (cycle.start, {report.title: report.total for report in cycle.reports})
            for cycle in historical_category_reports
        ]
        seen = {title for _, by_title in history for title in by_title}

        budgeted = {
            b.category for b in self.budgets.all_periods() if b.covers(budget_day)
        }
        titles = self._category_order(set(current) | seen | budgeted)

        items: list[AggregateOverviewDataItem] = []
        totals = defaultdict(lambda: Decimal("0"))
        for title in titles:
            budget = self._category_budget(title, budget_day)
            # each category only folds the cycles inside its own budget year
            since = budget.start_date_inclusive if budget is not None else None
            folded = [
                by_title.get(title, Decimal("0"))
                for start, by_title in history
                if since is None or start >= since
            ]
            actual = current.get(title, Decimal("0"))
            ytd_actual = actual + sum(folded, Decimal("0"))
            totals["actual"] += actual
            totals["ytd_actual"] += ytd_actual

            if budget is None:
                items.append(
                    AggregateOverviewDataItem(
                        name=title,
                        actual=round_money(actual),
                        budget=None,
                        year_to_date_actual=round_money(ytd_actual),
                        year_to_date_budget=None,
                        annual_budget=None,
                        variance=None,
                    )
                )
                continue

            cycles = cycles_in_period(
                budget.start_date_inclusive, budget.end_date_inclusive
            )
            per_cycle = budget.allocated_amount / cycles
            ytd_budget = per_cycle * min(len(folded) + 1, cycles)
            variance = ytd_budget - ytd_actual
            totals["budget"] += per_cycle
            totals["ytd_budget"] += ytd_budget
            totals["annual"] += budget.allocated_amount
            totals["variance"] += variance
            items.append(
                AggregateOverviewDataItem(
                    name=title,
                    actual=round_money(actual),
                    budget=round_money(per_cycle),
                    year_to_date_actual=round_money(ytd_actual),
                    year_to_date_budget=round_money(ytd_budget),
                    annual_budget=round_money(budget.allocated_amount),
                    variance=round_money(variance),
                )
            )

        logger.info(
            f"aggregate_overview: start={period_start} cycles_elapsed={cycles_elapsed}"
            f" cycles_in_budget={cycles_in_budget} categories={len(items)}"
        )
        return AggregateOverviewReport(
            title=OVERVIEW_TITLE,
            period_start=period_start,
            period_end=period_end,
            cycles_elapsed=cycles_elapsed,
            cycles_in_budget=cycles_in_budget,
            actual=round_money(totals["actual"]),
            budget=round_money(totals["budget"]),
            year_to_date_actual=round_money(totals["ytd_actual"]),
            year_to_date_budget=round_money(totals["ytd_budget"]),
            annual_budget=round_money(totals["annual"]),
            variance=round_money(totals["variance"]),
            data=tuple(items),
        )
