from datetime import date
from decimal import Decimal

import pytest

from domain import CategoryMapping, Decision, Line, StatementMetadata
from services import ParseError, StatementDecider, StatementOutcome


def _line(merchant: str, amount: str = "1.00", day: int = 1) -> Line:
    return Line(date=date(2018, 3, day), merchant=merchant, amount=Decimal(amount))


def test_pattern_substring_resolves_mapping() -> None:
    decider = StatementDecider([CategoryMapping("Tesco", "Food", "Groceries")])

    decision = decider.decide(_line("Tesco Express"))

    assert decision.is_resolved
    assert (decision.category, decision.subcategory) == ("Food", "Groceries")


def test_first_matching_mapping_wins() -> None:
    decider = StatementDecider(
        [
            CategoryMapping("Tesco", "Food", "Groceries"),
            CategoryMapping("Tesco Express", "Food", "Takeaway"),
        ]
    )

    decision = decider.decide(_line("Tesco Express"))

    assert decision.subcategory == "Groceries"


def test_matching_is_case_sensitive() -> None:
    decider = StatementDecider([CategoryMapping("Tesco", "Food", "Groceries")])

    assert not decider.decide(_line("TESCO STORES")).is_resolved


def test_unmatched_line_is_fully_unresolved() -> None:
    decider = StatementDecider([CategoryMapping("Tesco", "Food", "Groceries")])

    decision = decider.decide(_line("Unknown Shop"))

    assert not decision.is_resolved
    assert decision.category is None
    assert decision.subcategory is None
    assert decision == Decision.unresolved(_line("Unknown Shop"))


def test_process_keeps_one_decision_per_line_in_order() -> None:
    decider = StatementDecider([CategoryMapping("Pret", "Food", "Eating out")])
    lines = [_line("Pret A Manger", day=3), _line("Corner Shop", day=1), _line("Pret", day=2)]

    decisions = decider.process(lines)

    assert [d.line for d in decisions] == lines
    assert [d.is_resolved for d in decisions] == [True, False, True]


def test_parse_raw_lines() -> None:
    decider = StatementDecider([])

    lines = decider.parse(
        [
            "2018-03-01,Tesco Express,12.50",
            "",
            "2018-03-02,Marks, Spencer,-3.10",
            "   ",
        ]
    )

    assert lines == [
        Line(date(2018, 3, 1), "Tesco Express", Decimal("12.50")),
        Line(date(2018, 3, 2), "Marks, Spencer", Decimal("-3.10")),
    ]


def test_malformed_line_fails_whole_batch() -> None:
    decider = StatementDecider([CategoryMapping("Tesco", "Food", "Groceries")])

    with pytest.raises(ParseError) as excinfo:
        decider.process(
            [
                "2018-03-01,Tesco,1.00",
                "2018-03-02,Tesco,abc",
            ]
        )

    assert excinfo.value.line_number == 2
    assert "Invalid amount" in str(excinfo.value)


def test_bad_date_reports_line_number() -> None:
    decider = StatementDecider([])

    with pytest.raises(ParseError, match="Line 1: Invalid date"):
        decider.parse(["2018-13-01,Tesco,1.00"])


def test_too_few_fields_is_a_parse_error() -> None:
    with pytest.raises(ParseError, match="Line 1"):
        StatementDecider([]).parse(["2018-03-01,12.00"])


def test_outcome_lists_unknown_merchants_once_in_order() -> None:
    decider = StatementDecider([CategoryMapping("Tesco", "Food", "Groceries")])
    decisions = decider.process(
        [_line("Pret"), _line("Tesco"), _line("Boots"), _line("Pret")]
    )
    outcome = StatementOutcome(
        metadata=StatementMetadata(2018, 3, "tom", "Natwest"),
        decisions=tuple(decisions),
    )

    assert outcome.awaiting_mapping
    assert outcome.unknown_merchants == ["Pret", "Boots"]
