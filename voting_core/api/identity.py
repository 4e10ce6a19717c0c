"""Identity provider: bearer token -> voter identity and role."""
import logging
from typing import Optional

import asyncpg
from jose import ExpiredSignatureError, JWTError, jwt

from ..shared.errors import Unauthorized
from ..shared.models import Identity, Role
from .upstream import call_upstream

logger = logging.getLogger(__name__)


class IdentityProvider:
    """Decodes JWTs and looks the user up in the ``users`` table."""

    def __init__(self, pool: asyncpg.Pool, secret: str, algorithm: str = "HS256",
                 timeout: float = 2.0):
        self.pool = pool
        self.secret = secret
        self.algorithm = algorithm
        self.timeout = timeout

    def _user_id_from_token(self, token: Optional[str]) -> str:
        if not token:
            raise Unauthorized("Access token required")
        try:
            claims = jwt.decode(token, self.secret, algorithms=[self.algorithm])
        except ExpiredSignatureError:
            raise Unauthorized("Token expired")
        except JWTError:
            raise Unauthorized("Invalid token")

        user_id = claims.get("userId") or claims.get("sub")
        if not user_id:
            raise Unauthorized("Invalid token")
        return str(user_id)

    async def _fetch_user(self, user_id: str):
        async with self.pool.acquire() as conn:
            return await conn.fetchrow(
                "SELECT id, user_type, is_active FROM users WHERE id = $1",
                user_id
            )

    async def resolve(self, token: Optional[str]) -> Identity:
        """
        Resolve a bearer token to an active identity.

        Raises:
            Unauthorized: Token missing/invalid/expired, user unknown or deactivated
            UpstreamUnavailable: User store timed out or is down
        """
        user_id = self._user_id_from_token(token)
        row = await call_upstream(self._fetch_user(user_id), self.timeout, "identity provider")

        if row is None:
            raise Unauthorized("Invalid token - user not found")
        if not row["is_active"]:
            raise Unauthorized("Account is deactivated")

        try:
            role = Role(row["user_type"])
        except ValueError:
            logger.error(f"User {user_id} has unknown role {row['user_type']!r}")
            raise Unauthorized("Invalid token")

        return Identity(voter_id=row["id"], role=role, active=True)

    async def count_active_voters(self) -> int:
        """Number of active users with the voter role."""
        async def _count():
            async with self.pool.acquire() as conn:
                return await conn.fetchval(
                    "SELECT COUNT(*) FROM users WHERE user_type = 'voter' AND is_active"
                )
        return await call_upstream(_count(), self.timeout, "identity provider")
