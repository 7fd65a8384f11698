"""
Supabase database client and operations
"""
import asyncio
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Optional

from loguru import logger
from supabase import Client, create_client

from config import get_settings
from models import CHANNEL_FIELDS, Contact

CONTACT_COLUMNS = (
    "id, full_name, created_by, organization_id, company_domain, email, phone, "
    "work_email, personal_email, mobile_phone, work_phone, position, linkedin_url, "
    "hunter_status, apollo_status, lusha_status, findymail_status, last_enriched_at"
)


class DatabaseUnavailableError(Exception):
    """Raised while a circuit breaker is open"""
    pass


class DatabaseConfigurationError(ValueError):
    """Supabase connection settings are missing"""
    pass


class CircuitBreaker:
    """Simple circuit breaker to prevent cascading failures"""

    def __init__(self, failure_threshold: int = 5, recovery_timeout: int = 60):
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.failure_count = 0
        self.last_failure_time = 0.0
        self.state = "closed"  # closed, open, half-open

    def _should_attempt_reset(self) -> bool:
        """Check if we should attempt to reset the circuit breaker"""
        return (self.state == "open" and
                time.time() - self.last_failure_time >= self.recovery_timeout)

    async def call(self, func, *args, **kwargs):
        """Execute function with circuit breaker protection"""
        if self.state == "open":
            if self._should_attempt_reset():
                self.state = "half-open"
                logger.warning("Circuit breaker transitioning to half-open state")
            else:
                raise DatabaseUnavailableError("Circuit breaker is open - database operations temporarily disabled")

        try:
            result = await func(*args, **kwargs)
        except Exception:
            self.failure_count += 1
            self.last_failure_time = time.time()

            if self.failure_count >= self.failure_threshold or self.state == "half-open":
                self.state = "open"
                logger.error(f"Circuit breaker opened after {self.failure_count} failures")
            raise

        if self.state == "half-open":
            logger.info("Circuit breaker reset to closed state")
        self.state = "closed"
        self.failure_count = 0
        return result


class DatabaseClient:
    """Supabase access for contacts, organizations and caller identity"""

    def __init__(self, client: Optional[Client] = None):
        self.settings = get_settings()
        self._client: Optional[Client] = client
        self._connection_lock = asyncio.Lock()

        # Circuit breakers for different operation types
        self._write_circuit_breaker = CircuitBreaker(failure_threshold=3, recovery_timeout=30)
        self._read_circuit_breaker = CircuitBreaker(failure_threshold=5, recovery_timeout=60)

    async def get_client(self) -> Client:
        """Get or create the service-role Supabase client"""
        if self._client is None:
            async with self._connection_lock:
                if self._client is None:
                    if not self.settings.supabase_url or not self.settings.supabase_service_role_key:
                        raise DatabaseConfigurationError("SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY must be configured")
                    try:
                        self._client = create_client(
                            supabase_url=self.settings.supabase_url,
                            supabase_key=self.settings.supabase_service_role_key,
                        )
                        logger.info("Supabase client initialized successfully")
                    except Exception as e:
                        logger.error(f"Failed to initialize Supabase client: {e}")
                        raise
        return self._client

    async def get_user_id(self, access_token: str) -> Optional[str]:
        """
        Resolve a bearer token to the calling user's id

        Returns:
            The user id, or None when the token is rejected
        """
        client = await self.get_client()
        try:
            response = await asyncio.to_thread(client.auth.get_user, access_token)
        except Exception as e:
            logger.warning(f"Token validation failed: {e}")
            return None

        user = getattr(response, "user", None)
        if user is None:
            return None
        return str(user.id)

    async def fetch_enrichment_candidates(
        self,
        user_id: str,
        last_id: Optional[str],
        limit: int,
    ) -> List[Contact]:
        """
        Fetch the next page of contacts without any email or phone

        Args:
            user_id: Owner of the contacts
            last_id: Cursor; only ids strictly greater are returned
            limit: Maximum number of rows to return

        Returns:
            Contacts ordered by id ascending
        """
        return await self._read_circuit_breaker.call(
            self._fetch_enrichment_candidates_impl, user_id, last_id, limit
        )

    async def _fetch_enrichment_candidates_impl(
        self,
        user_id: str,
        last_id: Optional[str],
        limit: int,
    ) -> List[Contact]:
        client = await self.get_client()
        query = client.table("contacts").select(CONTACT_COLUMNS).eq("created_by", user_id)

        # Each or_() becomes its own PostgREST "or" parameter, and those are ANDed together
        for field in CHANNEL_FIELDS:
            query = query.or_(f"{field}.is.null,{field}.eq.")

        if last_id:
            query = query.gt("id", last_id)
        query = query.order("id").limit(limit)

        response = await asyncio.to_thread(query.execute)
        contacts = [Contact(**row) for row in (response.data or [])]
        logger.debug(f"Fetched {len(contacts)} enrichment candidates after cursor {last_id or '<start>'}")
        return contacts

    async def fetch_contact(self, contact_id: str) -> Optional[Contact]:
        """Fetch a single contact by id"""
        return await self._read_circuit_breaker.call(self._fetch_contact_impl, contact_id)

    async def _fetch_contact_impl(self, contact_id: str) -> Optional[Contact]:
        client = await self.get_client()
        query = client.table("contacts").select(CONTACT_COLUMNS).eq("id", contact_id).limit(1)
        response = await asyncio.to_thread(query.execute)
        if not response.data:
            return None
        return Contact(**response.data[0])

    async def fetch_organization_names(self, organization_ids: Iterable[str]) -> Dict[str, str]:
        """Look up organization names for a set of ids in one query"""
        ids = sorted({org_id for org_id in organization_ids if org_id})
        if not ids:
            return {}
        return await self._read_circuit_breaker.call(self._fetch_organization_names_impl, ids)

    async def _fetch_organization_names_impl(self, ids: List[str]) -> Dict[str, str]:
        client = await self.get_client()
        query = client.table("organizations").select("id, name").in_("id", ids)
        response = await asyncio.to_thread(query.execute)
        return {str(row["id"]): row["name"] for row in (response.data or []) if row.get("name")}

    async def update_contact(self, contact_id: str, updates: Dict[str, Any]) -> None:
        """Apply a partial update to one contact"""
        if not updates:
            return
        await self._write_circuit_breaker.call(self._update_contact_impl, contact_id, updates)

    async def _update_contact_impl(self, contact_id: str, updates: Dict[str, Any]) -> None:
        client = await self.get_client()
        query = client.table("contacts").update(updates).eq("id", contact_id)
        await asyncio.to_thread(query.execute)
        logger.debug(f"Updated contact {contact_id}: {sorted(updates)}")

    async def claim_contact(self, contact_id: str, lease_seconds: int) -> bool:
        """
        Claim a contact for enrichment until the lease expires

        The conditional update only matches rows with no claim or an expired
        one, so at most one concurrent caller gets the row back.

        Returns:
            True if this caller now holds the claim
        """
        now = datetime.now(timezone.utc)
        claimed_until = (now + timedelta(seconds=lease_seconds)).isoformat()
        return await self._write_circuit_breaker.call(
            self._claim_contact_impl, contact_id, now.isoformat(), claimed_until
        )

    async def _claim_contact_impl(self, contact_id: str, now: str, claimed_until: str) -> bool:
        client = await self.get_client()
        query = (
            client.table("contacts")
            .update({"enrichment_claimed_until": claimed_until})
            .eq("id", contact_id)
            .or_(f"enrichment_claimed_until.is.null,enrichment_claimed_until.lt.{now}")
        )
        response = await asyncio.to_thread(query.execute)
        return bool(response.data)

    async def release_contact(self, contact_id: str) -> None:
        """Drop this caller's claim on a contact"""
        await self.update_contact(contact_id, {"enrichment_claimed_until": None})

    async def close(self):
        """Drop the cached client"""
        if self._client:
            self._client = None
            logger.info("Database client closed")


# Global database client instance
_db_client: Optional[DatabaseClient] = None


async def get_db_client() -> DatabaseClient:
    """Get the global database client instance"""
    global _db_client
    if _db_client is None:
        _db_client = DatabaseClient()
    return _db_client
