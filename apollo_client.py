"""
Apollo.io people-match client
"""
from typing import Optional

from loguru import logger

from merge_policy import ContactView
from models import CreditUsage, ProviderName, ProviderUsage, UsageStatus
from provider_base import EnrichmentProvider, ProviderLookup, pick_typed, split_full_name, strip_domain

# Candidate values that make an Apollo match count as enriched
DATA_FIELDS = ("work_email", "personal_email", "mobile_phone", "work_phone", "position")


class ApolloClient(EnrichmentProvider):
    """Matches a contact against Apollo's people database"""

    name = ProviderName.APOLLO
    BASE_URL = "https://api.apollo.io/api/v1"

    async def lookup(self, view: ContactView, organization_name: Optional[str] = None) -> ProviderLookup:
        first_name, last_name = split_full_name(view.full_name)
        body = {"reveal_personal_emails": True}
        if first_name:
            body["first_name"] = first_name
        if last_name:
            body["last_name"] = last_name
        domain = strip_domain(view.get("company_domain"))
        if domain:
            body["domain"] = domain
        if view.get("linkedin_url"):
            body["linkedin_url"] = view.get("linkedin_url")

        data = await self._request(
            "POST",
            f"{self.BASE_URL}/people/match",
            json=body,
            headers={"Content-Type": "application/json", "x-api-key": self.api_key},
        )
        person = data.get("person")
        if not person:
            logger.info(f"Apollo returned no person for {view.full_name}")
            return ProviderLookup(found=False)

        personal_emails = person.get("personal_emails") or []
        phones = person.get("phone_numbers") or []
        organization = person.get("organization") or {}

        findings = {
            "work_email": person.get("email"),
            "personal_email": personal_emails[0] if personal_emails else None,
            "mobile_phone": pick_typed(phones, "sanitized_number", ["mobile"]),
            "work_phone": pick_typed(phones, "sanitized_number", ["work_direct", "work_hq"], fallback_index=None),
            "position": person.get("title"),
            "linkedin_url": person.get("linkedin_url"),
            "company_domain": organization.get("primary_domain"),
        }
        found = any(findings[field] for field in DATA_FIELDS)
        return ProviderLookup(found=found, findings=findings)

    async def fetch_usage(self) -> ProviderUsage:
        data = await self._request(
            "GET",
            "https://api.apollo.io/v1/auth/health",
            headers={"Content-Type": "application/json", "x-api-key": self.api_key},
        )
        plan = data.get("plan") or {}
        used = data.get("current_usage") or 0
        total = plan.get("credits") or 0
        return ProviderUsage(
            provider=self.name,
            status=UsageStatus.CONNECTED,
            plan=plan.get("name") or "unknown",
            credits=CreditUsage(used=used, total=total, remaining=total - used),
        )
