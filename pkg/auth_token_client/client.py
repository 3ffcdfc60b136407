from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

import jwt


@dataclass
class TokenPayload:
    user_id: str
    role: str = "authenticated"
    email: str | None = None


class TokenClient:
    """Verifies (and, for local development, mints) HS256 access tokens issued by the identity service."""

    def __init__(self, secret_key: str, audience: str = "authenticated", leeway_seconds: int = 10):
        self.secret_key = secret_key
        self.audience = audience
        # Allow small clock skew when decoding tokens
        self.leeway_seconds = leeway_seconds

    def create_access_token(self, payload: TokenPayload, expires_in: timedelta = timedelta(hours=1)) -> str:
        """Create an access token with the identity service's claim layout"""
        now = datetime.now(timezone.utc)
        to_encode = {
            "sub": str(payload.user_id),
            "role": payload.role,
            "email": payload.email,
            "aud": self.audience,
            "iat": int(now.timestamp()),
            "exp": int((now + expires_in).timestamp()),
        }
        return jwt.encode(to_encode, self.secret_key, algorithm="HS256")

    def decode_token(self, token: str) -> dict:
        """Decode and verify a token"""
        try:
            return jwt.decode(
                token,
                self.secret_key,
                algorithms=["HS256"],
                audience=self.audience,
                leeway=self.leeway_seconds,
            )
        except jwt.ExpiredSignatureError:
            raise ValueError("Token has expired")
        except jwt.InvalidTokenError:
            raise ValueError("Invalid token")
