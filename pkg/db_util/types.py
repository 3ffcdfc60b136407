from dataclasses import dataclass
from typing import Optional


@dataclass
class PostgresConfig:
    host: str
    port: int
    username: str
    password: str
    database: str = "postgres"  # Default database
    pool_size: int = 20
    max_overflow: int = 10
    pool_timeout: int = 10  # seconds
    pool_recycle: int = 3600
    # Full SQLAlchemy URL; overrides the host/port/credentials fields when set
    dsn: Optional[str] = None
