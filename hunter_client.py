"""
Hunter.io email-finder and email-verifier client
"""
from typing import Optional

import httpx
from loguru import logger

from merge_policy import ContactView
from models import EMAIL_FIELDS, CreditUsage, ProviderName, ProviderUsage, UsageStatus
from provider_base import EnrichmentProvider, ProviderLookup, split_full_name, strip_domain


def known_email(view: ContactView) -> Optional[str]:
    """First email already stored on the contact"""
    for field in EMAIL_FIELDS:
        if not view.is_empty(field):
            return view.get(field).strip()
    return None


class HunterClient(EnrichmentProvider):
    """
    Finds a person's work email by name and company domain

    Contacts without a domain but with a known email are verified instead, and
    the person is looked up by that email. Bulk candidates never carry an
    email, so the bulk job only ever uses the domain search.
    """

    name = ProviderName.HUNTER
    BASE_URL = "https://api.hunter.io/v2"
    VALID_RESULTS = ("valid", "deliverable")

    def __init__(self, api_key: str, http_client: httpx.AsyncClient, confidence_threshold: int = 30):
        super().__init__(api_key, http_client)
        self.confidence_threshold = confidence_threshold

    def can_attempt(self, view: ContactView) -> bool:
        # The email finder needs a company domain; verification needs an email
        return bool(strip_domain(view.get("company_domain"))) or known_email(view) is not None

    async def lookup(self, view: ContactView, organization_name: Optional[str] = None) -> ProviderLookup:
        if strip_domain(view.get("company_domain")):
            return await self._find_by_domain(view)
        return await self._verify_email(view, known_email(view))

    async def _find_by_domain(self, view: ContactView) -> ProviderLookup:
        first_name, last_name = split_full_name(view.full_name)
        params = {
            "domain": strip_domain(view.get("company_domain")),
            "first_name": first_name,
            "last_name": last_name,
            "api_key": self.api_key,
        }

        logger.debug(f"Hunter email-finder request for {view.full_name} at {params['domain']}")
        data = await self._request("GET", f"{self.BASE_URL}/email-finder", params=params)
        person = data.get("data") or {}

        email = person.get("email")
        position = person.get("position")
        if not email and not position:
            return ProviderLookup(found=False)

        score = person.get("score") or 0
        if email and score <= self.confidence_threshold:
            logger.info(f"Hunter email for {view.full_name} below confidence threshold ({score})")
            email = None

        return ProviderLookup(found=True, findings=self._person_findings(person, email))

    async def _verify_email(self, view: ContactView, email: str) -> ProviderLookup:
        logger.debug(f"Hunter email-verifier request for {view.full_name}")
        verification = await self._request(
            "GET", f"{self.BASE_URL}/email-verifier", params={"email": email, "api_key": self.api_key}
        )
        result = verification.get("data") or {}
        is_valid = result.get("status") == "valid" or result.get("result") == "deliverable"
        if not is_valid:
            logger.info(f"Hunter could not verify the email of {view.full_name}: {result.get('status')}")

        data = await self._request(
            "GET", f"{self.BASE_URL}/email-finder", params={"email": email, "api_key": self.api_key}
        )
        person = data.get("data") or {}

        # The email itself is the data, so the lookup always counts as a match
        return ProviderLookup(found=True, findings=self._person_findings(person, email if is_valid else None))

    @staticmethod
    def _person_findings(person: dict, email: Optional[str]) -> dict:
        return {
            "work_email": email,
            "position": person.get("position"),
            "linkedin_url": person.get("linkedin"),
            "work_phone": person.get("phone_number"),
            "company_domain": person.get("domain"),
        }

    async def fetch_usage(self) -> ProviderUsage:
        data = await self._request("GET", f"{self.BASE_URL}/account", params={"api_key": self.api_key})
        account = data.get("data") or {}
        requests = account.get("requests") or {}

        def counter(kind: str) -> CreditUsage:
            counts = requests.get(kind) or {}
            used = counts.get("used") or 0
            available = counts.get("available") or 0
            return CreditUsage(used=used, total=available, remaining=max(available - used, 0))

        return ProviderUsage(
            provider=self.name,
            status=UsageStatus.CONNECTED,
            plan=account.get("plan_name") or "unknown",
            searches=counter("searches"),
            verifications=counter("verifications"),
            reset_date=account.get("reset_date"),
        )
