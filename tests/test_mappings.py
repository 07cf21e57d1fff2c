import threading
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

import pytest
from sqlalchemy import create_engine, func, select
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from categories import CategorySchema
from database import Base, build_engine, init_db, make_sessionmaker
from domain import CategoryMapping
from models import CategoryMappingRecord
from services import MappingService, ValidationError

SCHEMA = CategorySchema.from_file(
    Path(__file__).resolve().parents[1] / "category-schema.json"
)


def test_schema_file_keeps_category_order() -> None:
    assert SCHEMA.titles()[:2] == ["In your home", "Food"]
    assert SCHEMA.get("Food").subcategory_names() == ["Groceries", "Eating out", "Takeaway"]
    assert "Food" in SCHEMA
    assert "food" not in SCHEMA


def test_append_then_read_in_insertion_order() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        mappings = MappingService(session, SCHEMA)
        mappings.append("Tesco,Food,Groceries")
        mappings.append(CategoryMapping("Pret", "Food", "Eating out"))
        mappings.append(" Tesco , Food , Takeaway ")

        assert mappings.read_all() == [
            CategoryMapping("Tesco", "Food", "Groceries"),
            CategoryMapping("Pret", "Food", "Eating out"),
            CategoryMapping("Tesco", "Food", "Takeaway"),
        ]
        assert mappings.read_all_lines() == [
            "Tesco,Food,Groceries",
            "Pret,Food,Eating out",
            "Tesco,Food,Takeaway",
        ]


def test_earlier_reads_are_a_prefix_of_later_reads() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        mappings = MappingService(session, SCHEMA)
        mappings.append("Tesco,Food,Groceries")
        first = mappings.read_all()
        mappings.append("Boots,Health,Pharmacy")
        second = mappings.read_all()

        assert second[: len(first)] == first
        assert len(second) == len(first) + 1


@pytest.mark.parametrize(
    "record",
    [
        "Tesco,Food",
        "Tesco,Food,Groceries,Extra",
        "Tesco,,Groceries",
        ",Food,Groceries",
        "",
    ],
)
def test_malformed_record_is_rejected_without_writing(record: str) -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        with pytest.raises(ValidationError):
            MappingService(session, SCHEMA).append(record)

        count = session.scalar(select(func.count()).select_from(CategoryMappingRecord))
        assert count == 0


def test_unknown_category_suggests_closest_title() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        mappings = MappingService(session, SCHEMA)
        with pytest.raises(ValidationError, match="did you mean 'Food'"):
            mappings.append("Tesco,Fod,Groceries")
        with pytest.raises(ValidationError, match="Unknown category 'Gardening'$"):
            mappings.append("B&Q,Gardening,Tools")

        assert mappings.read_all() == []


def test_concurrent_appends_are_all_kept_in_order(tmp_path: Path) -> None:
    engine = build_engine(f"sqlite:///{tmp_path / 'budgets.db'}")
    init_db(engine)
    factory = make_sessionmaker(engine)
    writers = 12
    start = threading.Barrier(writers + 1)
    snapshots: list[list[CategoryMapping]] = []

    def append(idx: int) -> None:
        with factory() as session:
            start.wait()
            MappingService(session, SCHEMA).append(f"Shop {idx},Food,Groceries")

    def read_while_appending() -> None:
        start.wait()
        for _ in range(50):
            with factory() as session:
                snapshots.append(MappingService(session, SCHEMA).read_all())

    with ThreadPoolExecutor(max_workers=writers + 1) as pool:
        futures = [pool.submit(append, idx) for idx in range(writers)]
        futures.append(pool.submit(read_while_appending))
        for future in futures:
            future.result()

    with factory() as session:
        final = MappingService(session, SCHEMA).read_all()
    snapshots.append(final)

    assert sorted(m.merchant_pattern for m in final) == sorted(
        f"Shop {idx}" for idx in range(writers)
    )
    for earlier, later in zip(snapshots, snapshots[1:]):
        assert later[: len(earlier)] == earlier
    engine.dispose()


def test_failed_append_is_rolled_back(monkeypatch: pytest.MonkeyPatch) -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        mappings = MappingService(session, SCHEMA)

        def failing_commit() -> None:
            raise OperationalError("INSERT", {}, Exception("disk I/O error"))

        monkeypatch.setattr(session, "commit", failing_commit)
        with pytest.raises(OperationalError):
            mappings.append("Tesco,Food,Groceries")
        monkeypatch.undo()

        assert mappings.read_all() == []
        mappings.append("Pret,Food,Eating out")
        assert mappings.read_all_lines() == ["Pret,Food,Eating out"]
