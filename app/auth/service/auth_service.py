import logging
from typing import Optional

import httpx
from fastapi import HTTPException

from pkg.auth_token_client.client import TokenClient
from pkg.supabase_rest.client import SupabaseRestClient


class AuthService:
    """
    Resolves a bearer access token to the calling user.

    Tokens are verified locally when the project JWT secret is configured,
    otherwise the identity service is asked (`GET /auth/v1/user`).
    """

    def __init__(
        self,
        logger: logging.Logger,
        token_client: Optional[TokenClient] = None,
        rest_client: Optional[SupabaseRestClient] = None,
    ):
        if token_client is None and rest_client is None:
            raise ValueError("AuthService needs a token client or a REST client")
        self.token_client = token_client
        self.rest_client = rest_client
        self.logger = logger

    async def verify_token(self, token: str) -> dict:
        if not token:
            raise HTTPException(status_code=401, detail="Unauthorized")

        if self.token_client is not None:
            try:
                payload = self.token_client.decode_token(token)
            except ValueError as e:
                self.logger.info(f"Rejected access token: {e}")
                raise HTTPException(status_code=401, detail="Unauthorized")
            user_id = payload.get("sub")
            if not user_id:
                raise HTTPException(status_code=401, detail="Unauthorized")
            return {"user_id": user_id, "email": payload.get("email"), "role": payload.get("role")}

        try:
            user = await self.rest_client.get_user(token)
        except httpx.HTTPStatusError as e:
            self.logger.info(f"Identity service rejected token: {e.response.status_code}")
            raise HTTPException(status_code=401, detail="Unauthorized")
        except (httpx.HTTPError, ValueError) as e:
            # identity service unreachable or malformed: nothing to attribute the request to
            self.logger.error(f"Error verifying token with identity service: {e!s}")
            raise HTTPException(status_code=401, detail="Unauthorized")
        return {"user_id": user["id"], "email": user.get("email"), "role": user.get("role")}
