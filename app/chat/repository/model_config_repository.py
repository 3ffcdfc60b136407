# app/chat/repository/model_config_repository.py

from typing import Optional, List
from sqlalchemy.future import select

from app.chat.entity.chat import ModelConfig
from app.chat.repository.sql_schema.ai_tables import ModelConfigModel
from app.chat.service.service import IModelConfigRepository
from app.core.logger import get_logger
from pkg.db_util.postgres_conn import PostgresConnection

logger = get_logger(__name__)


def _to_entity(row: ModelConfigModel) -> ModelConfig:
    return ModelConfig(
        id=str(row.id),
        display_name=row.display_name,
        model_identifier=row.model_identifier,
        base_url=row.base_url,
        is_active=row.is_active,
        ordering=row.ordering,
        system_prompt=row.system_prompt or "",
        api_secret_name=row.api_secret_name,
    )


class ModelConfigRepository(IModelConfigRepository):
    """Reads ai_model_configs."""

    def __init__(self, postgres: PostgresConnection):
        self.postgres = postgres
        self.logger = logger

    async def get_active_config(self, model_identifier: str) -> Optional[ModelConfig]:
        async with self.postgres.get_session() as session:
            result = await session.execute(
                select(ModelConfigModel)
                .where(ModelConfigModel.model_identifier == model_identifier)
                .where(ModelConfigModel.is_active.is_(True))
            )
            row = result.scalars().first()
            return _to_entity(row) if row else None

    async def list_active_configs(self) -> List[ModelConfig]:
        async with self.postgres.get_session() as session:
            result = await session.execute(
                select(ModelConfigModel)
                .where(ModelConfigModel.is_active.is_(True))
                .order_by(ModelConfigModel.ordering.asc(), ModelConfigModel.display_name.asc())
            )
            return [_to_entity(row) for row in result.scalars().all()]
