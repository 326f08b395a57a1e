from __future__ import annotations

from functools import lru_cache
from pathlib import Path


SQL_DIR = Path(__file__).with_name("sql")


@lru_cache(maxsize=None)
def load_sql(name: str) -> str:
    path = SQL_DIR / name
    if not path.is_file():
        raise FileNotFoundError(f"sql file is missing from the package: {name}")
    return path.read_text(encoding="utf-8").strip()


def available_sql() -> tuple[str, ...]:
    return tuple(sorted(item.name for item in SQL_DIR.glob("*.sql")))
