"""
Findymail name-search client
"""
from typing import Optional

from loguru import logger

from merge_policy import ContactView
from models import CreditUsage, ProviderName, ProviderUsage, UsageStatus
from provider_base import EnrichmentProvider, ProviderLookup, clean_domain, split_full_name


class FindymailClient(EnrichmentProvider):
    """Finds a work email from a full name and company domain"""

    name = ProviderName.FINDYMAIL
    BASE_URL = "https://app.findymail.com/api"

    def can_attempt(self, view: ContactView) -> bool:
        return bool(view.full_name.strip()) and clean_domain(view.get("company_domain")) is not None

    async def lookup(self, view: ContactView, organization_name: Optional[str] = None) -> ProviderLookup:
        first_name, last_name = split_full_name(view.full_name)
        body = {
            "first_name": first_name,
            "last_name": last_name,
            "domain": clean_domain(view.get("company_domain")),
        }

        logger.debug(f"Findymail request: first_name={first_name!r} last_name={last_name!r} domain={body['domain']!r}")
        data = await self._request(
            "POST",
            f"{self.BASE_URL}/search/name",
            json=body,
            headers={"Authorization": f"Bearer {self.api_key}", "Content-Type": "application/json"},
        )

        contact = data.get("contact") if isinstance(data.get("contact"), dict) else {}
        email = data.get("email") or contact.get("email")
        if not email:
            return ProviderLookup(found=False)
        return ProviderLookup(found=True, findings={"work_email": email})

    async def fetch_usage(self) -> ProviderUsage:
        data = await self._request(
            "GET",
            f"{self.BASE_URL}/credits",
            headers={"Authorization": f"Bearer {self.api_key}", "Content-Type": "application/json"},
        )
        # Findymail only reports the balance
        credits = data.get("credits") or 0
        return ProviderUsage(
            provider=self.name,
            status=UsageStatus.CONNECTED,
            credits=CreditUsage(used=0, total=credits, remaining=credits),
        )
