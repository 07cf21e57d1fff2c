from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Optional, Union


@dataclass(frozen=True)
class SubCategory:
    name: str


@dataclass(frozen=True)
class Category:
    title: str
    subcategories: tuple[SubCategory, ...]

    def subcategory_names(self) -> list[str]:
        return [sub.name for sub in self.subcategories]


@dataclass(frozen=True)
class CategoryMapping:
    merchant_pattern: str
    category: str
    subcategory: str

    def as_line(self) -> str:
        return f"{self.merchant_pattern},{self.category},{self.subcategory}"


@dataclass(frozen=True)
class Line:
    date: date
    merchant: str
    amount: Decimal


@dataclass(frozen=True)
class Resolved:
    category: str
    subcategory: str


@dataclass(frozen=True)
class Unresolved:
    pass


UNRESOLVED = Unresolved()

Resolution = Union[Resolved, Unresolved]


@dataclass(frozen=True)
class Decision:
    # category and subcategory only exist together, inside Resolved
    line: Line
    resolution: Resolution = UNRESOLVED

    @classmethod
    def resolved(cls, line: Line, category: str, subcategory: str) -> "Decision":
        return cls(line, Resolved(category, subcategory))

    @classmethod
    def unresolved(cls, line: Line) -> "Decision":
        return cls(line, UNRESOLVED)

    @property
    def is_resolved(self) -> bool:
        return isinstance(self.resolution, Resolved)

    @property
    def category(self) -> Optional[str]:
        if isinstance(self.resolution, Resolved):
            return self.resolution.category
        return None

    @property
    def subcategory(self) -> Optional[str]:
        if isinstance(self.resolution, Resolved):
            return self.resolution.subcategory
        return None


@dataclass(frozen=True)
class StatementMetadata:
    year: int
    month: int
    user: str
    statement_name: str

    @property
    def key(self) -> tuple[int, int, str]:
        return (self.year, self.month, self.user)


@dataclass(frozen=True)
class AnnualBudget:
    category: str
    subcategory: Optional[str]
    allocated_amount: Decimal
    start_date_inclusive: date
    end_date_inclusive: date

    def covers(self, day: date) -> bool:
        return self.start_date_inclusive <= day <= self.end_date_inclusive
