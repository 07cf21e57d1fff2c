import json
from datetime import date
from decimal import Decimal
from pathlib import Path

import pytest
from pydantic import ValidationError as SchemaValidationError
from sqlalchemy import create_engine
from sqlalchemy.orm import Session

from categories import CategorySchema
from database import Base
from schemas import AnnualBudgetIn
from services import BudgetService, ValidationError

SCHEMA = CategorySchema.from_file(
    Path(__file__).resolve().parents[1] / "category-schema.json"
)


def _period(
    category: str = "Food",
    amount: str = "1200",
    start: date = date(2018, 1, 1),
    end: date = date(2018, 12, 31),
    subcategory=None,
) -> AnnualBudgetIn:
    return AnnualBudgetIn(
        category=category,
        subcategory=subcategory,
        allocated_amount=Decimal(amount),
        start_date_inclusive=start,
        end_date_inclusive=end,
    )


def test_provision_and_list_periods() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        budgets = BudgetService(session, SCHEMA)
        budgets.provision(_period(start=date(2019, 1, 1), end=date(2019, 12, 31)))
        budgets.provision(_period())
        budgets.provision(_period(amount="300", subcategory="Takeaway"))
        budgets.provision(_period(category="Fun", amount="600"))

        food = budgets.periods_for("Food")
        assert [(p.subcategory, p.start_date_inclusive.year) for p in food] == [
            (None, 2018),
            ("Takeaway", 2018),
            (None, 2019),
        ]
        takeaway = budgets.periods_for("Food", "Takeaway")
        assert len(takeaway) == 1
        assert takeaway[0].allocated_amount == Decimal("300")
        assert len(budgets.all_periods()) == 4


def test_overlapping_period_is_rejected() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        budgets = BudgetService(session, SCHEMA)
        budgets.provision(_period())

        with pytest.raises(ValidationError, match="overlaps"):
            budgets.provision(_period(start=date(2018, 6, 1), end=date(2019, 5, 31)))
        # a subcategory period is a separate scope
        budgets.provision(_period(subcategory="Groceries"))


@pytest.mark.parametrize(
    "period, message",
    [
        (_period(category="Gardening"), "Unknown category"),
        (_period(subcategory="Sweets"), "Unknown subcategory"),
        (_period(start=date(2018, 6, 1), end=date(2018, 5, 31)), "start date"),
        (_period(start=date(2018, 1, 29), end=date(2019, 1, 28)), "day 1 to 28"),
    ],
)
def test_invalid_period_is_rejected(period: AnnualBudgetIn, message: str) -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        budgets = BudgetService(session, SCHEMA)
        with pytest.raises(ValidationError, match=message):
            budgets.provision(period)
        assert budgets.all_periods() == []


def test_negative_allocation_fails_schema_validation() -> None:
    with pytest.raises(SchemaValidationError):
        _period(amount="-1")


def test_load_from_file_is_idempotent(tmp_path: Path) -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    budgets_file = tmp_path / "budgets.json"
    budgets_file.write_text(
        json.dumps(
            {
                "budgets": [
                    {
                        "category": "Food",
                        "subcategory": "Groceries",
                        "allocatedAmount": "3600.00",
                        "startDateInclusive": "2018-01-01",
                        "endDateInclusive": "2018-12-31",
                    },
                    {
                        "category": "Fun",
                        "allocatedAmount": 2400,
                        "startDateInclusive": "2018-01-01",
                        "endDateInclusive": "2018-12-31",
                    },
                ]
            }
        ),
        encoding="utf-8",
    )

    with Session(engine) as session:
        budgets = BudgetService(session, SCHEMA)
        assert budgets.load_from_file(budgets_file) == 2
        assert budgets.load_from_file(budgets_file) == 0
        assert budgets.load_from_file(tmp_path / "missing.json") == 0
        assert {p.category for p in budgets.all_periods()} == {"Food", "Fun"}


def test_sample_budgets_file_loads() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        budgets = BudgetService(session, SCHEMA)
        added = budgets.load_from_file(Path(__file__).resolve().parents[1] / "budgets.json")
        assert added == len(budgets.all_periods()) > 0
