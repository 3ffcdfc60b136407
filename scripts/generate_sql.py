"""Generate SQL CREATE TABLE statements from SQLAlchemy models.

This outputs pure SQL that you can paste into the Postgres SQL console.

Usage:
    python scripts/generate_sql.py > create_tables.sql
"""

import sys
from pathlib import Path

# Add project root to Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from sqlalchemy.dialects import postgresql
from sqlalchemy.schema import CreateIndex, CreateTable

# Import Base and all models
from pkg.db_util.sql_alchemy.declarative_base import Base
from app.chat.repository.sql_schema.ai_tables import ModelConfigModel, UsageLogModel  # noqa: F401


def generate_sql() -> str:
    """Generate CREATE TABLE SQL for all models."""
    dialect = postgresql.dialect()
    lines = [
        "-- ============================================",
        "-- AI chat tables",
        "-- ============================================",
        "",
        "-- Drop existing tables",
    ]
    for table in reversed(Base.metadata.sorted_tables):
        lines.append(f"DROP TABLE IF EXISTS {table.name} CASCADE;")
    lines.append("")

    for table in Base.metadata.sorted_tables:
        lines.append(f"-- Creating table: {table.name}")
        lines.append(str(CreateTable(table).compile(dialect=dialect)).strip() + ";")
        for index in sorted(table.indexes, key=lambda i: i.name or ""):
            lines.append(str(CreateIndex(index).compile(dialect=dialect)).strip() + ";")
        lines.append("")

    return "\n".join(lines)


if __name__ == "__main__":
    print(generate_sql())
