# app/chat/repository/usage_log_repository.py

from app.chat.entity.chat import UsageLogEntry
from app.chat.repository.sql_schema.ai_tables import UsageLogModel
from app.chat.service.service import IUsageLogRepository
from app.core.logger import get_logger
from pkg.db_util.postgres_conn import PostgresConnection

logger = get_logger(__name__)


class UsageLogRepository(IUsageLogRepository):
    """Insert-only writer for ai_usage_logs."""

    def __init__(self, postgres: PostgresConnection):
        self.postgres = postgres
        self.logger = logger

    async def insert(self, entry: UsageLogEntry) -> str:
        async with self.postgres.get_session() as session:
            row = UsageLogModel(**entry.model_dump(mode="json"))
            session.add(row)
            await session.commit()
            self.logger.debug(
                f"Usage log saved: request_id={entry.request_id} status={entry.status.value} "
                f"latency_ms={entry.latency_ms}"
            )
            return str(row.id)
