import datetime as dt
from decimal import Decimal
from typing import Annotated, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, PlainSerializer
from pydantic.alias_generators import to_camel

from csv_utils import format_amount
from domain import AnnualBudget, Category, Decision
from reporting import (
    AggregateOverviewDataItem,
    AggregateOverviewReport,
    CategoryReport,
    MonthlyReport,
)

# report figures are already rounded to 2dp; JSON gets them as plain numbers
Money = Annotated[Decimal, PlainSerializer(lambda v: float(v), return_type=float)]


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class AnnualBudgetIn(CamelModel):
    category: str = Field(..., min_length=1, max_length=100)
    subcategory: Optional[str] = Field(default=None, max_length=100)
    allocated_amount: Decimal = Field(..., ge=0)
    start_date_inclusive: dt.date
    end_date_inclusive: dt.date


class BudgetFileIn(CamelModel):
    budgets: list[AnnualBudgetIn] = Field(default_factory=list)


class AnnualBudgetOut(CamelModel):
    category: str
    subcategory: Optional[str]
    allocated_amount: Money
    start_date_inclusive: dt.date
    end_date_inclusive: dt.date

    @classmethod
    def from_budget(cls, budget: AnnualBudget) -> "AnnualBudgetOut":
        return cls(
            category=budget.category,
            subcategory=budget.subcategory,
            allocated_amount=budget.allocated_amount,
            start_date_inclusive=budget.start_date_inclusive,
            end_date_inclusive=budget.end_date_inclusive,
        )


class CategoryOut(CamelModel):
    title: str
    subcategories: list[str]

    @classmethod
    def from_category(cls, category: Category) -> "CategoryOut":
        return cls(title=category.title, subcategories=category.subcategory_names())


class DecisionIn(CamelModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="forbid"
    )

    date: dt.date
    merchant: str = Field(..., min_length=1, max_length=200)
    amount: Decimal
    category: str = Field(..., min_length=1, max_length=100)
    subcategory: str = Field(..., min_length=1, max_length=100)


class DecisionsIn(CamelModel):
    year: int = Field(..., ge=1970, le=3000)
    month: Union[int, str]
    user: str = Field(..., min_length=1, max_length=60)
    statement_name: str = Field(..., min_length=1, max_length=120)
    decisions: list[DecisionIn] = Field(..., min_length=1)


class DecisionOut(CamelModel):
    date: dt.date
    merchant: str
    amount: str
    category: Optional[str]
    subcategory: Optional[str]

    @classmethod
    def from_decision(cls, decision: Decision) -> "DecisionOut":
        return cls(
            date=decision.line.date,
            merchant=decision.line.merchant,
            amount=format_amount(decision.line.amount),
            category=decision.category,
            subcategory=decision.subcategory,
        )


class StatementReviewOut(CamelModel):
    year: int
    month: str
    user: str
    statement_name: str
    decisions: list[DecisionOut]


class UnknownMerchantOut(CamelModel):
    current_merchant: str
    remaining_merchants: list[str]
    categories: list[CategoryOut]
    pending: str


class CategoryReportDataItemOut(CamelModel):
    name: str
    actual: Money


class CategoryReportOut(CamelModel):
    title: str
    data: list[CategoryReportDataItemOut]

    @classmethod
    def from_report(cls, report: CategoryReport) -> "CategoryReportOut":
        return cls(
            title=report.title,
            data=[
                CategoryReportDataItemOut(name=item.name, actual=item.actual)
                for item in report.data
            ],
        )


class AggregateOverviewDataItemOut(CamelModel):
    name: str
    actual: Money
    budget: Optional[Money]
    year_to_date_actual: Money
    year_to_date_budget: Optional[Money]
    annual_budget: Optional[Money]
    variance: Optional[Money]

    @classmethod
    def from_item(cls, item: AggregateOverviewDataItem) -> "AggregateOverviewDataItemOut":
        return cls(
            name=item.name,
            actual=item.actual,
            budget=item.budget,
            year_to_date_actual=item.year_to_date_actual,
            year_to_date_budget=item.year_to_date_budget,
            annual_budget=item.annual_budget,
            variance=item.variance,
        )


class AggregateOverviewReportOut(CamelModel):
    title: str
    period_start: dt.date
    period_end: dt.date
    cycles_elapsed: int
    cycles_in_budget: int
    actual: Money
    budget: Money
    year_to_date_actual: Money
    year_to_date_budget: Money
    annual_budget: Money
    variance: Money
    data: list[AggregateOverviewDataItemOut]

    @classmethod
    def from_report(cls, report: AggregateOverviewReport) -> "AggregateOverviewReportOut":
        return cls(
            title=report.title,
            period_start=report.period_start,
            period_end=report.period_end,
            cycles_elapsed=report.cycles_elapsed,
            cycles_in_budget=report.cycles_in_budget,
            actual=report.actual,
            budget=report.budget,
            year_to_date_actual=report.year_to_date_actual,
            year_to_date_budget=report.year_to_date_budget,
            annual_budget=report.annual_budget,
            variance=report.variance,
            data=[AggregateOverviewDataItemOut.from_item(item) for item in report.data],
        )


class MonthlyReportOut(CamelModel):
    year: int
    month: str
    month_number: int
    aggregate_overview: Optional[AggregateOverviewReportOut]
    overview: Optional[CategoryReportOut]
    categories: list[CategoryReportOut]

    @classmethod
    def from_report(cls, report: MonthlyReport) -> "MonthlyReportOut":
        return cls(
            year=report.year,
            month=report.month,
            month_number=report.month_number,
            aggregate_overview=(
                AggregateOverviewReportOut.from_report(report.aggregate_overview)
                if report.aggregate_overview
                else None
            ),
            overview=(
                CategoryReportOut.from_report(report.overview) if report.overview else None
            ),
            categories=[CategoryReportOut.from_report(r) for r in report.categories],
        )
