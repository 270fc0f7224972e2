"""Shared Supabase client.

One service-role client is created lazily and reused by the sample store and
the auth dependencies. Profile lookups go through the Supabase circuit
breaker like every other table access.
"""

import logging
from typing import Any, cast

from samplesync.core.config import settings
from samplesync.core.exceptions import DatabaseError, NotFoundError
from samplesync.core.resilience import CircuitBreakerOpen, supabase_circuit_breaker
from supabase import Client, create_client

logger = logging.getLogger(__name__)

PROFILE_TABLE = "user_profiles"


class SupabaseClient:
    """Holder for the process-wide Supabase client."""

    _client: Client | None = None

    @classmethod
    def get_client(cls) -> Client:
        """Return the service-role client, creating it on first use.

        Raises:
            DatabaseError: If the client cannot be created.
        """
        if cls._client is not None:
            return cls._client

        try:
            cls._client = create_client(
                settings.SUPABASE_URL,
                settings.SUPABASE_SERVICE_ROLE_KEY.get_secret_value(),
            )
        except Exception as e:
            logger.exception("Could not create Supabase client")
            raise DatabaseError(f"Failed to initialize database connection: {e}") from e

        logger.info("Supabase client ready", extra={"url": settings.SUPABASE_URL})
        return cls._client

    @classmethod
    async def get_user_by_id(cls, user_id: str) -> dict[str, Any]:
        """Load the profile row that carries a user's role.

        A missing row is not a datastore failure and leaves the breaker alone.

        Raises:
            NotFoundError: No profile exists for ``user_id``.
            CircuitBreakerOpen: Supabase is currently failing fast.
            DatabaseError: The query failed.
        """
        supabase_circuit_breaker.check()
        try:
            response = (
                cls.get_client()
                .table(PROFILE_TABLE)
                .select("id, role")
                .eq("id", user_id)
                .limit(1)
                .execute()
            )
        except Exception as e:
            supabase_circuit_breaker.record_failure()
            logger.exception("Profile lookup failed", extra={"user_id": user_id})
            raise DatabaseError(f"Failed to fetch user profile: {e}") from e

        supabase_circuit_breaker.record_success()
        rows = cast(list[dict[str, Any]], response.data or [])
        if not rows:
            raise NotFoundError("User profile", user_id)
        return rows[0]
