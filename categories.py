import json
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field

from domain import Category, SubCategory


class _CategoryEntry(BaseModel):
    title: str = Field(..., min_length=1, max_length=100)
    subcategories: list[str] = Field(default_factory=list)


class _SchemaFile(BaseModel):
    categories: list[_CategoryEntry]


class CategorySchema:
    """Canonical, ordered set of categories; the order drives report ordering."""

    def __init__(self, categories: list[Category]) -> None:
        self._categories = tuple(categories)
        self._by_title = {c.title: c for c in self._categories}

    @classmethod
    def from_file(cls, path: Path) -> "CategorySchema":
        raw = json.loads(Path(path).read_text(encoding="utf-8"))
        return cls.from_dict(raw)

    @classmethod
    def from_dict(cls, raw: dict) -> "CategorySchema":
        parsed = _SchemaFile.model_validate(raw)
        return cls(
            [
                Category(
                    title=entry.title.strip(),
                    subcategories=tuple(
                        SubCategory(name.strip())
                        for name in entry.subcategories
                        if name.strip()
                    ),
                )
                for entry in parsed.categories
            ]
        )

    def all(self) -> list[Category]:
        return list(self._categories)

    def titles(self) -> list[str]:
        return [c.title for c in self._categories]

    def get(self, title: str) -> Optional[Category]:
        return self._by_title.get(title)

    def __contains__(self, title: object) -> bool:
        return title in self._by_title

    def position(self, title: str) -> int:
        for idx, category in enumerate(self._categories):
            if category.title == title:
                return idx
        return len(self._categories)
