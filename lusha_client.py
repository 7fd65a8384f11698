"""
Lusha person-lookup client
"""
from typing import Optional

from merge_policy import ContactView
from models import CreditUsage, ProviderName, ProviderUsage, UsageStatus
from provider_base import EnrichmentProvider, ProviderLookup, pick_typed, split_full_name


class LushaClient(EnrichmentProvider):
    """Looks up emails and phones by LinkedIn URL, or by name and company"""

    name = ProviderName.LUSHA
    BASE_URL = "https://api.lusha.com"

    def build_params(self, view: ContactView, organization_name: Optional[str] = None) -> dict:
        linkedin_url = view.get("linkedin_url")
        if linkedin_url:
            # LinkedIn is the most precise key; names would only add noise
            return {"linkedinUrl": linkedin_url}

        first_name, last_name = split_full_name(view.full_name)
        params = {}
        if first_name:
            params["firstName"] = first_name
        if last_name:
            params["lastName"] = last_name
        if organization_name:
            params["companyName"] = organization_name
        return params

    async def lookup(self, view: ContactView, organization_name: Optional[str] = None) -> ProviderLookup:
        # Non-success responses raise here and surface as errors, never as not_found
        data = await self._request(
            "GET",
            f"{self.BASE_URL}/v2/person",
            params=self.build_params(view, organization_name),
            headers={"api_key": self.api_key, "Content-Type": "application/json"},
        )

        emails = data.get("emailAddresses") or data.get("emails") or []
        phones = data.get("phoneNumbers") or data.get("phones") or []

        findings = {
            "work_email": pick_typed(emails, "email", ["work", "professional"]),
            "personal_email": pick_typed(emails, "email", ["personal"], fallback_index=1),
            "mobile_phone": pick_typed(phones, "internationalNumber", ["mobile"]),
            "work_phone": pick_typed(phones, "internationalNumber", ["work", "landline"], fallback_index=None),
        }
        return ProviderLookup(found=any(findings.values()), findings=findings)

    async def fetch_usage(self) -> ProviderUsage:
        data = await self._request(
            "GET",
            f"{self.BASE_URL}/account/usage",
            headers={"api_key": self.api_key, "Content-Type": "application/json"},
        )
        return ProviderUsage(
            provider=self.name,
            status=UsageStatus.CONNECTED,
            credits=CreditUsage(
                used=data.get("used") or 0,
                total=data.get("total") or 0,
                remaining=data.get("remaining") or 0,
            ),
        )
