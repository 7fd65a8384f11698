"""
Shared machinery for the enrichment provider clients

Every provider follows the same contract: look the person up, decide whether
the response is a definitive match or a definitive miss, and write only the
fields the merge policy allows. Anything that goes wrong on the way is
reported as an error and leaves the stored status alone so the contact can be
retried later.
"""
import re
from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, Optional, Tuple

import httpx
from loguru import logger
from pydantic import BaseModel, Field
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from merge_policy import ContactView, status_update
from models import EnrichmentOutcome, ProviderName, ProviderResult, ProviderUsage, UsageStatus


class ProviderAPIError(Exception):
    """Non-success response from an enrichment API"""

    def __init__(self, provider: ProviderName, status_code: int, message: str = ""):
        self.provider = provider
        self.status_code = status_code
        self.error_code = error_code_for_status(status_code)
        super().__init__(message or f"{provider.value} API error: HTTP {status_code}")


class ProviderRateLimitError(ProviderAPIError):
    """Exception for rate limit errors"""
    pass


class ProviderNotConfiguredError(Exception):
    """No API key is configured for the requested provider"""

    def __init__(self, provider: ProviderName):
        self.provider = provider
        super().__init__(f"{provider.value.upper()}_API_KEY not configured")


def error_code_for_status(status_code: int) -> str:
    """Map an HTTP status to a user-facing error code"""
    if status_code in (401, 403):
        return "auth_error"
    if status_code == 402:
        return "no_credits"
    if status_code == 423:
        return "subscription_paused"
    if status_code == 429:
        return "rate_limited"
    if status_code == 400:
        return "invalid_payload"
    return "api_error"


def split_full_name(full_name: Optional[str]) -> Tuple[str, str]:
    """First whitespace-separated token is the first name, the rest the last name"""
    parts = (full_name or "").split()
    if not parts:
        return "", ""
    return parts[0], " ".join(parts[1:])


def strip_domain(raw: Optional[str]) -> Optional[str]:
    """Remove protocol and path from a domain or URL"""
    if not raw:
        return None
    domain = re.sub(r"^https?://", "", raw.strip(), flags=re.IGNORECASE)
    domain = re.sub(r"/.*$", "", domain)
    return domain or None


def clean_domain(raw: Optional[str]) -> Optional[str]:
    """
    Normalize a raw URL or domain into a bare root domain

    Returns:
        The cleaned domain, or None when nothing domain-like is left
    """
    if not raw:
        return None
    domain = raw.strip().lower()
    domain = re.sub(r"^https?://", "", domain)
    domain = re.sub(r"^www\.", "", domain)
    for separator in ("/", "?", "#", ":"):
        domain = domain.split(separator)[0]
    if not domain or "." not in domain:
        return None
    return domain


def pick_typed(
    entries: Iterable[Dict[str, Any]],
    value_key: str,
    types: Iterable[str],
    fallback_index: Optional[int] = 0,
) -> Optional[str]:
    """
    Pick the value of the first entry with a preferred type

    Falls back to the entry at fallback_index when no typed entry exists.
    """
    entries = [entry for entry in entries if isinstance(entry, dict)]
    wanted = set(types)
    for entry in entries:
        if entry.get("type") in wanted and entry.get(value_key):
            return entry[value_key]
    if fallback_index is not None and len(entries) > fallback_index:
        return entries[fallback_index].get(value_key) or None
    return None


class ProviderLookup(BaseModel):
    """What a provider returned for one person"""
    found: bool
    findings: Dict[str, Optional[str]] = Field(default_factory=dict)


class EnrichmentProvider(ABC):
    """Base class for the provider clients"""

    name: ProviderName
    BASE_URL: str = ""

    def __init__(self, api_key: str, http_client: httpx.AsyncClient):
        self.api_key = api_key
        self._client = http_client

    def can_attempt(self, view: ContactView) -> bool:
        """Whether the contact carries enough data for this provider"""
        return True

    @abstractmethod
    async def lookup(self, view: ContactView, organization_name: Optional[str] = None) -> ProviderLookup:
        """Query the provider; raises ProviderAPIError on non-success responses"""

    @abstractmethod
    async def fetch_usage(self) -> ProviderUsage:
        """Query the account endpoint; raises on failure"""

    async def usage(self) -> ProviderUsage:
        """
        Report the credits left on this provider account

        Returns:
            ProviderUsage; failures are reported with status error, never raised
        """
        try:
            return await self.fetch_usage()
        except Exception as e:
            logger.warning(f"{self.name.value} usage check failed: {e}")
            return ProviderUsage(provider=self.name, status=UsageStatus.ERROR, error=str(e))

    def _raise_for_status(self, response: httpx.Response) -> None:
        """Handle API errors and raise appropriate exceptions"""
        if response.is_success:
            return
        if response.status_code == 429:
            raise ProviderRateLimitError(self.name, 429, f"{self.name.value} rate limit exceeded")
        raise ProviderAPIError(self.name, response.status_code)

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        retry=retry_if_exception_type((httpx.TimeoutException, httpx.ConnectError, ProviderRateLimitError)),
        reraise=True,
    )
    async def _request(self, method: str, url: str, **kwargs) -> Dict[str, Any]:
        response = await self._client.request(method, url, **kwargs)
        self._raise_for_status(response)
        payload = response.json()
        if not isinstance(payload, dict):
            raise ValueError(f"Unexpected {self.name.value} payload type: {type(payload).__name__}")
        return payload

    async def enrich(self, view: ContactView, store, organization_name: Optional[str] = None) -> ProviderResult:
        """
        Enrich one contact and persist the outcome

        Args:
            view: Current state of the contact, updated in place on success
            store: Data store with an async update_contact(contact_id, updates)
            organization_name: Name of the contact's organization, if known

        Returns:
            ProviderResult; errors never raise and never touch the stored status
        """
        if not self.can_attempt(view):
            return ProviderResult(provider=self.name, outcome=EnrichmentOutcome.SKIPPED)

        try:
            lookup = await self.lookup(view, organization_name)
        except ProviderAPIError as e:
            logger.error(f"{self.name.value} error for {view.full_name}: HTTP {e.status_code}")
            return ProviderResult(
                provider=self.name,
                outcome=EnrichmentOutcome.ERROR,
                error_code=e.error_code,
                error=str(e),
            )
        except Exception as e:
            logger.error(f"{self.name.value} exception for {view.full_name}: {e}")
            return ProviderResult(
                provider=self.name,
                outcome=EnrichmentOutcome.ERROR,
                error_code="internal_error",
                error=str(e),
            )

        outcome = EnrichmentOutcome.ENRICHED if lookup.found else EnrichmentOutcome.NOT_FOUND
        updates = view.plan_updates(lookup.findings) if lookup.found else {}
        payload = status_update(self.name, outcome, updates)

        try:
            await store.update_contact(view.contact_id, payload)
        except Exception as e:
            logger.error(f"Failed to save {self.name.value} result for {view.full_name}: {e}")
            return ProviderResult(
                provider=self.name,
                outcome=EnrichmentOutcome.ERROR,
                error_code="storage_error",
                error=str(e),
            )

        view.apply(payload)
        logger.debug(f"{self.name.value} {outcome.value} for {view.full_name}, filled {sorted(updates)}")
        return ProviderResult(provider=self.name, outcome=outcome, updates=updates)

