import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        schema_path: Path,
        budgets_path: Path,
        statements_dir: Path,
        token_secret: str,
        users: tuple[str, ...],
        statement_names: tuple[str, ...],
    ) -> None:
        self.database_url = database_url
        self.schema_path = schema_path
        self.budgets_path = budgets_path
        self.statements_dir = statements_dir
        self.token_secret = token_secret
        self.users = users
        self.statement_names = statement_names


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("BUDGETS_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


def _csv_env(name: str) -> tuple[str, ...]:
    raw = os.getenv(name, "")
    return tuple(part.strip() for part in raw.split(",") if part.strip())


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "budgets.db"
    database_url = os.getenv("BUDGETS_DATABASE_URL", f"sqlite:///{default_db}")
    schema_path = Path(os.getenv("BUDGETS_SCHEMA_PATH", "./category-schema.json"))
    budgets_path = Path(os.getenv("BUDGETS_BUDGETS_PATH", "./budgets.json"))
    statements_dir = Path(
        os.getenv("BUDGETS_STATEMENTS_DIR", str(data_dir / "statements"))
    )
    token_secret = os.getenv(
        "BUDGETS_TOKEN_SECRET",
        "4c1f0d8e2b9a7f3e6d5c4b3a2918f7e6d5c4b3a29180f7e6d5c4b3a291807f6e",
    )
    return Settings(
        database_url=database_url,
        schema_path=schema_path,
        budgets_path=budgets_path,
        statements_dir=statements_dir,
        token_secret=token_secret,
        users=_csv_env("BUDGETS_USERS"),
        statement_names=_csv_env("BUDGETS_STATEMENT_NAMES"),
    )
