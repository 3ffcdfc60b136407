from sqlalchemy import (
    Column, String, DateTime, Integer, Text, Boolean, Uuid
)
from sqlalchemy.sql import func
import uuid

from pkg.db_util.sql_alchemy.declarative_base import Base


# Model configuration table (read-only for the proxy)
class ModelConfigModel(Base):
    __tablename__ = "ai_model_configs"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    display_name = Column(String, nullable=False)
    model_identifier = Column(String, nullable=False, unique=True, index=True)
    base_url = Column(String, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    ordering = Column(Integer, nullable=False, default=100)
    system_prompt = Column(Text, nullable=False, default="")
    # name of the environment variable holding the provider key
    api_secret_name = Column(String, nullable=False)


# Usage log table (insert-only)
class UsageLogModel(Base):
    __tablename__ = "ai_usage_logs"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(String, nullable=False, index=True)
    model_identifier = Column(String, nullable=False)
    request_id = Column(String, nullable=False, index=True)
    status = Column(String, nullable=False)
    prompt_tokens = Column(Integer, nullable=True)
    completion_tokens = Column(Integer, nullable=True)
    total_tokens = Column(Integer, nullable=True)
    error_code = Column(String, nullable=True)
    error_message = Column(Text, nullable=True)
    latency_ms = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
