"""
Bulk contact enrichment orchestrator

Each invocation is stateless: it pulls one small page of candidates after the
caller's cursor, runs the enabled providers one after another for every
contact, and hands back the cursor to resume from. Progress lives in the
contact rows themselves (provider statuses) and in the caller-held cursor.
"""
import asyncio
from datetime import datetime, timezone
from typing import AsyncIterator, Dict, List, Optional, Sequence

import httpx
from loguru import logger

from apollo_client import ApolloClient
from config import ProviderKeys, get_settings
from database import get_db_client
from findymail_client import FindymailClient
from hunter_client import HunterClient
from lusha_client import LushaClient
from merge_policy import ContactView
from models import (
    BULK_PROVIDERS,
    BulkEnrichResponse,
    Contact,
    ContactEnrichResult,
    ProviderName,
    ProviderResult,
    ProviderUsage,
    ProviderUsageResponse,
    UsageStatus,
)
from provider_base import EnrichmentProvider, ProviderNotConfiguredError
from selector import CandidateSelector


class ContactNotFoundError(Exception):
    """The contact does not exist"""
    pass


class ContactAccessError(Exception):
    """The contact belongs to another user"""
    pass


def build_providers(
    keys: ProviderKeys,
    http_client: httpx.AsyncClient,
    hunter_confidence_threshold: int = 30,
) -> Dict[ProviderName, EnrichmentProvider]:
    """Instantiate a client for every provider that has a key"""
    providers: Dict[ProviderName, EnrichmentProvider] = {}
    if keys.hunter_key:
        providers[ProviderName.HUNTER] = HunterClient(
            keys.hunter_key, http_client, confidence_threshold=hunter_confidence_threshold
        )
    if keys.apollo_key:
        providers[ProviderName.APOLLO] = ApolloClient(keys.apollo_key, http_client)
    if keys.lusha_key:
        providers[ProviderName.LUSHA] = LushaClient(keys.lusha_key, http_client)
    if keys.findymail_key:
        providers[ProviderName.FINDYMAIL] = FindymailClient(keys.findymail_key, http_client)
    return providers


class BulkEnrichmentService:
    """Runs enrichment batches against the contact store"""

    def __init__(
        self,
        store,
        provider_keys: ProviderKeys,
        page_size: int = 3,
        pacing_seconds: float = 0.5,
        lease_seconds: int = 0,
        hunter_confidence_threshold: int = 30,
        http_client: Optional[httpx.AsyncClient] = None,
        request_timeout: float = 30,
    ):
        self.store = store
        self.provider_keys = provider_keys
        self.selector = CandidateSelector(store, page_size=page_size)
        self.pacing_seconds = pacing_seconds
        self.lease_seconds = lease_seconds

        self._owns_http_client = http_client is None
        self._http_client = http_client or httpx.AsyncClient(
            timeout=request_timeout,
            headers={"User-Agent": "Contact-Enrichment-Service/1.0"},
        )
        self.providers = build_providers(provider_keys, self._http_client, hunter_confidence_threshold)

    @property
    def page_size(self) -> int:
        return self.selector.page_size

    async def run_batch(
        self,
        user_id: str,
        last_id: Optional[str] = None,
        services: Optional[Sequence[ProviderName]] = None,
    ) -> BulkEnrichResponse:
        """
        Process one page of candidates

        Args:
            user_id: Owner of the contacts to enrich
            last_id: Cursor returned by the previous invocation
            services: Providers to run (defaults to hunter, apollo, lusha)

        Returns:
            BulkEnrichResponse; call again with its last_id until done

        Raises:
            CandidateFetchError: if the candidate query fails
        """
        services = list(services) if services is not None else list(BULK_PROVIDERS)
        page = await self.selector.next_page(user_id, last_id, services)

        if not page.raw:
            logger.info(f"No enrichment candidates left for user {user_id}")
            return BulkEnrichResponse(
                done=True,
                processed=0,
                last_id=page.next_cursor,
                message="No contacts left without data",
            )

        if not page.eligible:
            return BulkEnrichResponse(done=page.exhausted, processed=0, last_id=page.next_cursor)

        organization_names = await self._organization_names(page.eligible)

        results: List[ContactEnrichResult] = []
        for contact in page.eligible:
            result = await self._enrich_candidate(
                contact, services, organization_names.get(contact.organization_id or "")
            )
            results.append(result)

        return BulkEnrichResponse(
            done=page.exhausted,
            processed=len(page.eligible),
            last_id=page.next_cursor,
            results=results,
        )

    async def run_until_done(
        self,
        user_id: str,
        services: Optional[Sequence[ProviderName]] = None,
        last_id: Optional[str] = None,
        max_batches: Optional[int] = None,
    ) -> AsyncIterator[BulkEnrichResponse]:
        """Yield batch responses, feeding each cursor into the next call, until done"""
        batches = 0
        cursor = last_id
        while max_batches is None or batches < max_batches:
            response = await self.run_batch(user_id, cursor, services)
            batches += 1
            yield response
            if response.done:
                return
            cursor = response.last_id
        logger.warning(f"Stopped bulk enrichment for user {user_id} after {batches} batches at cursor {cursor}")

    async def enrich_contact(self, user_id: str, contact_id: str, provider: ProviderName) -> ProviderResult:
        """
        Run one provider against one contact owned by the caller

        Raises:
            ProviderNotConfiguredError: if the provider has no API key
            ContactNotFoundError: if the contact does not exist
            ContactAccessError: if the contact belongs to someone else
        """
        client = self.providers.get(provider)
        if client is None:
            raise ProviderNotConfiguredError(provider)

        contact = await self.store.fetch_contact(contact_id)
        if contact is None:
            raise ContactNotFoundError(f"Contact {contact_id} not found")
        if contact.created_by != user_id:
            raise ContactAccessError(f"Contact {contact_id} belongs to another user")

        organization_name = None
        if provider == ProviderName.LUSHA and contact.organization_id:
            names = await self._organization_names([contact])
            organization_name = names.get(contact.organization_id)

        result = await client.enrich(ContactView(contact), self.store, organization_name)
        logger.info(f"{provider.value} enrichment for {contact.full_name}: {result.outcome.value}")
        return result

    async def provider_usage(self) -> ProviderUsageResponse:
        """Check the credits of every provider account, concurrently"""
        async def check(provider: ProviderName) -> ProviderUsage:
            if not self.provider_keys.is_configured(provider):
                return ProviderUsage(provider=provider, status=UsageStatus.NOT_CONFIGURED)
            return await self.providers[provider].usage()

        usages = await asyncio.gather(*(check(provider) for provider in ProviderName))
        return ProviderUsageResponse(providers=list(usages), fetched_at=datetime.now(timezone.utc).isoformat())

    async def _organization_names(self, contacts: Sequence[Contact]) -> Dict[str, str]:
        organization_ids = [contact.organization_id for contact in contacts if contact.organization_id]
        if not organization_ids:
            return {}
        try:
            return await self.store.fetch_organization_names(organization_ids)
        except Exception as e:
            logger.warning(f"Failed to fetch organization names, continuing without them: {e}")
            return {}

    def _should_attempt(self, view: ContactView, provider: ProviderName, services: Sequence[ProviderName]) -> bool:
        if provider not in services:
            return False
        client = self.providers.get(provider)
        if client is None:
            return False
        return view.is_pending(provider) and client.can_attempt(view)

    async def _enrich_candidate(
        self,
        contact: Contact,
        services: Sequence[ProviderName],
        organization_name: Optional[str],
    ) -> ContactEnrichResult:
        result = ContactEnrichResult(contact_id=contact.id, full_name=contact.full_name)

        if self.lease_seconds > 0:
            try:
                claimed = await self.store.claim_contact(contact.id, self.lease_seconds)
            except Exception as e:
                logger.error(f"Failed to claim contact {contact.id}: {e}")
                claimed = False
            if not claimed:
                logger.info(f"Skipping {contact.full_name}: claimed by another run")
                return result

        view = ContactView(contact)
        try:
            for provider in BULK_PROVIDERS:
                if not self._should_attempt(view, provider, services):
                    continue
                provider_result = await self.providers[provider].enrich(view, self.store, organization_name)
                setattr(result, provider.value, provider_result.outcome)
                await asyncio.sleep(self.pacing_seconds)
        finally:
            if self.lease_seconds > 0:
                try:
                    await self.store.release_contact(contact.id)
                except Exception as e:
                    logger.warning(f"Failed to release claim on contact {contact.id}: {e}")

        outcomes = " ".join(f"{provider.value}={result.outcome_for(provider).value}" for provider in BULK_PROVIDERS)
        logger.info(f"Enriched {contact.full_name}: {outcomes}")
        return result

    async def close(self):
        """Close HTTP client connections"""
        if self._owns_http_client:
            await self._http_client.aclose()
            logger.info("Enrichment HTTP client closed")


# Global service instance - lazy loaded
_bulk_enrichment_service: Optional[BulkEnrichmentService] = None


async def get_bulk_enrichment_service() -> BulkEnrichmentService:
    """Get the global bulk enrichment service, wired from settings"""
    global _bulk_enrichment_service
    if _bulk_enrichment_service is None:
        settings = get_settings()
        _bulk_enrichment_service = BulkEnrichmentService(
            store=await get_db_client(),
            provider_keys=settings.provider_keys(),
            page_size=settings.enrichment_page_size,
            pacing_seconds=settings.provider_pacing_seconds,
            lease_seconds=settings.enrichment_lease_seconds,
            hunter_confidence_threshold=settings.hunter_confidence_threshold,
            request_timeout=settings.request_timeout,
        )
    return _bulk_enrichment_service


async def close_bulk_enrichment_service():
    """Close and forget the global service, if one was created"""
    global _bulk_enrichment_service
    if _bulk_enrichment_service is not None:
        await _bulk_enrichment_service.close()
        _bulk_enrichment_service = None
