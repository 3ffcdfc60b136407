# app/assistant/service/model_registry.py
from typing import Any, Dict, List, Optional

import httpx
from pydantic import HttpUrl, TypeAdapter, ValidationError

from app.assistant.entity.message import ModelOption
from app.core.errors import DecodeError, HttpStatusError, NetworkError
from app.core.logger import get_logger
from pkg.supabase_rest.client import SupabaseRestClient

logger = get_logger("ModelRegistry")

MODEL_CONFIG_TABLE = "ai_model_configs"
MODEL_CONFIG_COLUMNS = "id,display_name,model_identifier,base_url,is_active,ordering"

_http_url = TypeAdapter(HttpUrl)


def _parse_option(row: Dict[str, Any]) -> Optional[ModelOption]:
    """Map one config row; rows whose base URL does not parse are dropped."""
    if not isinstance(row, dict):
        raise DecodeError(f"Invalid model config row: {row!r}")
    try:
        _http_url.validate_python(row.get("base_url"))
    except ValidationError:
        logger.warning(f"Skipping model {row.get('model_identifier')!r}: invalid base_url {row.get('base_url')!r}")
        return None
    try:
        return ModelOption(
            id=str(row["id"]),
            display_name=row["display_name"],
            model_identifier=row["model_identifier"],
            base_url=row["base_url"],
            is_active=row.get("is_active") if row.get("is_active") is not None else True,
            ordering=row.get("ordering") if row.get("ordering") is not None else 100,
        )
    except (KeyError, ValidationError) as e:
        raise DecodeError(f"Invalid model config row: {e}") from e


class ModelRegistry:
    """Reads the active model configurations through the REST gateway."""

    def __init__(self, rest_client: SupabaseRestClient):
        self.rest_client = rest_client

    async def list_active_models(self, access_token: Optional[str] = None) -> List[ModelOption]:
        try:
            rows = await self.rest_client.select(
                MODEL_CONFIG_TABLE,
                columns=MODEL_CONFIG_COLUMNS,
                filters={"is_active": "eq.true"},
                order="ordering.asc",
                access_token=access_token,
            )
        except httpx.HTTPStatusError as e:
            raise HttpStatusError(e.response.status_code, e.response.text) from e
        except httpx.TransportError as e:
            raise NetworkError(str(e)) from e
        except ValueError as e:
            raise DecodeError(str(e)) from e

        options = [option for option in (_parse_option(row) for row in rows) if option is not None]
        options = [option for option in options if option.is_active]
        options.sort(key=lambda option: (option.ordering, option.display_name))
        logger.debug(f"Loaded {len(options)} active models")
        return options
