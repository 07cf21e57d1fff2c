from __future__ import annotations

import json
import logging
import re
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, Optional, Sequence, Union

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from rapidfuzz.distance import Levenshtein

from categories import CategorySchema
from config import get_settings
from csv_utils import (
    export_decisions,
    month_name,
    parse_mapping_record,
    parse_statement_line,
)
from domain import (
    AnnualBudget,
    CategoryMapping,
    Decision,
    Line,
    StatementMetadata,
)
from models import AnnualBudgetRecord, CategoryMappingRecord, DecisionRecord
from periods import MAX_ANCHOR_DAY, cycle_start, historical_cycles
from reporting import CategoryReporter, HistoricalReports, MonthlyReport
from schemas import AnnualBudgetIn, BudgetFileIn

logger = logging.getLogger(__name__)

_NAME_PATTERN = re.compile(r"^[\w][\w .&'-]*$")


class ValidationError(ValueError):
    pass


class ParseError(ValueError):
    def __init__(self, line_number: int, raw: str, reason: str) -> None:
        super().__init__(f"Line {line_number}: {reason} ({raw.strip()!r})")
        self.line_number = line_number
        self.raw = raw
        self.reason = reason


class EmptyResultError(LookupError):
    pass


class KeyedLocks:
    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[object, threading.Lock] = {}

    @contextmanager
    def hold(self, key: object) -> Iterator[None]:
        with self._guard:
            lock = self._locks.setdefault(key, threading.Lock())
        with lock:
            yield


_mapping_lock = threading.Lock()
_decision_locks = KeyedLocks()


def _closest_title(value: str, titles: Sequence[str]) -> Optional[str]:
    best: Optional[str] = None
    best_distance: Optional[int] = None
    for title in titles:
        dist = int(Levenshtein.distance(value.lower(), title.lower()))
        if best_distance is None or dist < best_distance:
            best_distance = dist
            best = title
    if best_distance is not None and best_distance <= 2:
        return best
    return None


def validate_metadata(metadata: StatementMetadata) -> StatementMetadata:
    settings = get_settings()
    if not 1970 <= metadata.year <= 3000:
        raise ValidationError(f"Year {metadata.year} is out of range")
    if not 1 <= metadata.month <= 12:
        raise ValidationError(f"Month must be between 1 and 12, got {metadata.month}")
    for label, value in (("User", metadata.user), ("Statement name", metadata.statement_name)):
        if not value or not _NAME_PATTERN.match(value):
            raise ValidationError(f"{label} '{value}' is not a valid name")
    if settings.users and metadata.user not in settings.users:
        raise ValidationError(f"Unknown user '{metadata.user}'")
    if settings.statement_names and metadata.statement_name not in settings.statement_names:
        raise ValidationError(f"Unknown statement '{metadata.statement_name}'")
    return metadata


class MappingService:
    """Append-only log of merchant pattern -> category/subcategory mappings."""

    def __init__(self, session: Session, schema: CategorySchema) -> None:
        self.session = session
        self.schema = schema

    def _validate(self, mapping: Union[CategoryMapping, str]) -> CategoryMapping:
        if isinstance(mapping, CategoryMapping):
            text = ",".join(
                [mapping.merchant_pattern, mapping.category, mapping.subcategory]
            )
        else:
            text = mapping
        try:
            pattern, category, subcategory = parse_mapping_record(text)
        except ValueError as exc:
            raise ValidationError(str(exc)) from exc

        if category not in self.schema:
            message = f"Unknown category '{category}'"
            suggestion = _closest_title(category, self.schema.titles())
            if suggestion:
                message += f"; did you mean '{suggestion}'?"
            raise ValidationError(message)
        return CategoryMapping(pattern, category, subcategory)

    def append(self, mapping: Union[CategoryMapping, str]) -> CategoryMapping:
        valid = self._validate(mapping)
        with _mapping_lock:
            try:
                self.session.add(
                    CategoryMappingRecord(
                        merchant_pattern=valid.merchant_pattern,
                        category=valid.category,
                        subcategory=valid.subcategory,
                    )
                )
                self.session.commit()
            except Exception:
                self.session.rollback()
                raise
        logger.info(
            f"mapping_appended: pattern={valid.merchant_pattern}"
            f" category={valid.category} subcategory={valid.subcategory}"
        )
        return valid

    def read_all(self) -> list[CategoryMapping]:
        rows = self.session.scalars(
            select(CategoryMappingRecord).order_by(CategoryMappingRecord.id.asc())
        ).all()
        return [
            CategoryMapping(row.merchant_pattern, row.category, row.subcategory)
            for row in rows
        ]

    def read_all_lines(self) -> list[str]:
        return [mapping.as_line() for mapping in self.read_all()]


class StatementDecider:
    def __init__(self, mappings: Sequence[CategoryMapping]) -> None:
        self.mappings = tuple(mappings)

    def decide(self, line: Line) -> Decision:
        # first match in stored order wins, even when a later pattern is more specific
        for mapping in self.mappings:
            if mapping.merchant_pattern in line.merchant:
                return Decision.resolved(line, mapping.category, mapping.subcategory)
        return Decision.unresolved(line)

    def parse(self, lines: Sequence[Union[Line, str]]) -> list[Line]:
        parsed: list[Line] = []
        for idx, raw in enumerate(lines, start=1):
            if isinstance(raw, Line):
                parsed.append(raw)
                continue
            if not raw.strip():
                continue
            try:
                parsed.append(parse_statement_line(raw))
            except ValueError as exc:
                raise ParseError(idx, raw, str(exc)) from exc
        return parsed

    def process(self, lines: Sequence[Union[Line, str]]) -> list[Decision]:
        return [self.decide(line) for line in self.parse(lines)]


@dataclass(frozen=True)
class StatementOutcome:
    metadata: StatementMetadata
    decisions: tuple[Decision, ...]

    @property
    def unknown_merchants(self) -> list[str]:
        seen: dict[str, None] = {}
        for decision in self.decisions:
            if not decision.is_resolved:
                seen.setdefault(decision.line.merchant, None)
        return list(seen)

    @property
    def awaiting_mapping(self) -> bool:
        return any(not d.is_resolved for d in self.decisions)


class DecisionService:
    def __init__(self, session: Session) -> None:
        self.session = session

    @staticmethod
    def _to_decision(row: DecisionRecord) -> Decision:
        line = Line(date=row.date, merchant=row.merchant, amount=row.amount)
        if row.category is not None and row.subcategory is not None:
            return Decision.resolved(line, row.category, row.subcategory)
        return Decision.unresolved(line)

    def read(self, year: int, month: int, user: str) -> list[Decision]:
        rows = self.session.scalars(
            select(DecisionRecord)
            .where(
                DecisionRecord.user == user,
                DecisionRecord.year == year,
                DecisionRecord.month == month,
            )
            .order_by(DecisionRecord.position.asc(), DecisionRecord.id.asc())
        ).all()
        return [self._to_decision(row) for row in rows]

    def read_month(self, year: int, month: int) -> list[Decision]:
        rows = self.session.scalars(
            select(DecisionRecord)
            .where(DecisionRecord.year == year, DecisionRecord.month == month)
            .order_by(
                DecisionRecord.user.asc(),
                DecisionRecord.position.asc(),
                DecisionRecord.id.asc(),
            )
        ).all()
        return [self._to_decision(row) for row in rows]

    def write(self, metadata: StatementMetadata, decisions: Sequence[Decision]) -> None:
        year, month, user = metadata.key
        with _decision_locks.hold(metadata.key):
            try:
                self.session.execute(
                    delete(DecisionRecord).where(
                        DecisionRecord.user == user,
                        DecisionRecord.year == year,
                        DecisionRecord.month == month,
                    )
                )
                self.session.add_all(
                    [
                        DecisionRecord(
                            user=user,
                            year=year,
                            month=month,
                            statement_name=metadata.statement_name,
                            position=position,
                            date=decision.line.date,
                            merchant=decision.line.merchant,
                            amount=decision.line.amount,
                            category=decision.category,
                            subcategory=decision.subcategory,
                        )
                        for position, decision in enumerate(decisions)
                    ]
                )
                self.session.commit()
            except Exception:
                self.session.rollback()
                raise
        logger.info(
            f"decisions_written: key={year}-{month}-{user}"
            f" statement={metadata.statement_name} count={len(decisions)}"
        )

    def export_csv(self, year: int, month: int, user: Optional[str] = None) -> str:
        if user:
            decisions = self.read(year, month, user)
        else:
            decisions = self.read_month(year, month)
        return export_decisions(decisions)


class BudgetService:
    def __init__(self, session: Session, schema: CategorySchema) -> None:
        self.session = session
        self.schema = schema

    @staticmethod
    def _to_budget(row: AnnualBudgetRecord) -> AnnualBudget:
        return AnnualBudget(
            category=row.category,
            subcategory=row.subcategory,
            allocated_amount=row.allocated_amount,
            start_date_inclusive=row.start_date,
            end_date_inclusive=row.end_date,
        )

    def periods_for(
        self, category: str, subcategory: Optional[str] = None
    ) -> list[AnnualBudget]:
        stmt = select(AnnualBudgetRecord).where(AnnualBudgetRecord.category == category)
        if subcategory is not None:
            stmt = stmt.where(AnnualBudgetRecord.subcategory == subcategory)
        stmt = stmt.order_by(AnnualBudgetRecord.start_date.asc(), AnnualBudgetRecord.id.asc())
        return [self._to_budget(row) for row in self.session.scalars(stmt).all()]

    def all_periods(self) -> list[AnnualBudget]:
        rows = self.session.scalars(
            select(AnnualBudgetRecord).order_by(
                AnnualBudgetRecord.start_date.asc(), AnnualBudgetRecord.id.asc()
            )
        ).all()
        return [self._to_budget(row) for row in rows]

    def provision(self, data: AnnualBudgetIn) -> AnnualBudget:
        category = self.schema.get(data.category.strip())
        if category is None:
            raise ValidationError(f"Unknown category '{data.category}'")
        subcategory = (data.subcategory or "").strip() or None
        if subcategory is not None and subcategory not in category.subcategory_names():
            raise ValidationError(
                f"Unknown subcategory '{subcategory}' for category '{category.title}'"
            )
        if data.start_date_inclusive > data.end_date_inclusive:
            raise ValidationError("Budget start date must not be after its end date")
        if data.start_date_inclusive.day > MAX_ANCHOR_DAY:
            raise ValidationError(
                f"Budget periods must start on day 1 to {MAX_ANCHOR_DAY} of a month"
            )

        for existing in self.periods_for(category.title):
            if existing.subcategory != subcategory:
                continue
            if (
                existing.start_date_inclusive <= data.end_date_inclusive
                and data.start_date_inclusive <= existing.end_date_inclusive
            ):
                raise ValidationError(
                    f"Budget period overlaps {existing.start_date_inclusive}"
                    f" to {existing.end_date_inclusive}"
                )

        record = AnnualBudgetRecord(
            category=category.title,
            subcategory=subcategory,
            allocated_amount=data.allocated_amount,
            start_date=data.start_date_inclusive,
            end_date=data.end_date_inclusive,
        )
        self.session.add(record)
        self.session.commit()
        self.session.refresh(record)
        logger.info(
            f"budget_provisioned: category={record.category}"
            f" subcategory={record.subcategory} start={record.start_date}"
        )
        return self._to_budget(record)

    def load_from_file(self, path: Path) -> int:
        path = Path(path)
        if not path.exists():
            return 0
        payload = BudgetFileIn.model_validate(json.loads(path.read_text(encoding="utf-8")))
        existing = {
            (b.category, b.subcategory, b.start_date_inclusive) for b in self.all_periods()
        }
        added = 0
        for entry in payload.budgets:
            key = (
                entry.category.strip(),
                (entry.subcategory or "").strip() or None,
                entry.start_date_inclusive,
            )
            if key in existing:
                continue
            self.provision(entry)
            existing.add(key)
            added += 1
        logger.info(f"budgets_loaded: path={path} added={added}")
        return added


class StatementService:
    def __init__(self, session: Session, schema: CategorySchema) -> None:
        self.session = session
        self.schema = schema

    def store_upload(self, metadata: StatementMetadata, content: bytes) -> Path:
        validate_metadata(metadata)
        directory = get_settings().statements_dir
        directory.mkdir(parents=True, exist_ok=True)
        path = directory / (
            f"{metadata.year}-{metadata.month:02d}_{metadata.user.capitalize()}"
            f"_{metadata.statement_name}.csv"
        )
        path.write_bytes(content)
        return path

    def decide(
        self, metadata: StatementMetadata, lines: Sequence[Union[Line, str]]
    ) -> StatementOutcome:
        validate_metadata(metadata)
        mappings = MappingService(self.session, self.schema).read_all()
        decisions = StatementDecider(mappings).process(lines)
        outcome = StatementOutcome(metadata=metadata, decisions=tuple(decisions))
        logger.info(
            f"statement_decided: key={metadata.year}-{metadata.month}-{metadata.user}"
            f" statement={metadata.statement_name} lines={len(decisions)}"
            f" unresolved={len(outcome.unknown_merchants)}"
        )
        return outcome

    def decide_file(self, metadata: StatementMetadata, path: Path) -> StatementOutcome:
        try:
            text = Path(path).read_text(encoding="utf-8")
        except UnicodeDecodeError as exc:
            raise ValidationError("Statement file must be UTF-8 text") from exc
        return self.decide(metadata, text.splitlines())

    def persist(self, metadata: StatementMetadata, decisions: Sequence[Decision]) -> None:
        validate_metadata(metadata)
        if not decisions:
            raise ValidationError("No decisions to persist")
        unresolved = [d for d in decisions if not d.is_resolved]
        if unresolved:
            raise ValidationError(
                f"{len(unresolved)} decision(s) are not categorised yet"
            )
        for decision in decisions:
            if decision.category not in self.schema:
                raise ValidationError(f"Unknown category '{decision.category}'")
        DecisionService(self.session).write(metadata, decisions)


class MonthlyReportService:
    def __init__(self, session: Session, schema: CategorySchema) -> None:
        self.session = session
        self.schema = schema
        self.decisions = DecisionService(session)
        self.reporter = CategoryReporter(schema, BudgetService(session, schema))

    def _read(self, year: int, month: int, user: Optional[str]) -> list[Decision]:
        if user:
            return self.decisions.read(year, month, user)
        return self.decisions.read_month(year, month)

    def build(self, year: int, month: int, user: Optional[str] = None) -> MonthlyReport:
        decisions = self._read(year, month, user)
        if not decisions:
            raise EmptyResultError(
                f"No decisions found for {month_name(month)} {year}"
                + (f" ({user})" if user else "")
            )

        category_reports = self.reporter.category_reports_from(decisions)
        overview = self.reporter.overview_from(category_reports)

        ordered = sorted(decisions, key=lambda d: d.line.date)
        first_date = ordered[0].line.date
        last_date = ordered[-1].line.date

        aggregate = None
        budget = self.reporter.current_budget_for(first_date)
        if budget is not None:
            anchor_day = budget.start_date_inclusive.day
            cycles = historical_cycles(first_date, anchor_day, budget.start_date_inclusive)
            historical = [
                HistoricalReports(
                    start=cycle.start,
                    reports=tuple(
                        self.reporter.category_reports_from(
                            self._read(cycle.year, cycle.month, user)
                        )
                    ),
                )
                for cycle in cycles
            ]
            aggregate = self.reporter.aggregated_overview_from(
                overview, cycle_start(first_date, anchor_day), last_date, historical
            )
            logger.info(
                f"report_built: key={year}-{month}-{user or '*'}"
                f" historical_cycles={len(cycles)}"
            )
        else:
            logger.info(
                f"report_built: key={year}-{month}-{user or '*'} budget_period=none"
            )

        return MonthlyReport(
            year=year,
            month=month_name(month),
            month_number=month,
            aggregate_overview=aggregate,
            overview=overview,
            categories=tuple(category_reports),
        )
