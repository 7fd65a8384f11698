"""
First-writer-wins merge policy for enrichment results

Providers only fill gaps: a destination field that already holds a value is
never overwritten. The ContactView carries the contact's current values through
the provider chain of one contact, so a provider sees what an earlier provider
in the same pass just wrote.
"""
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional

from models import Contact, DEFINITIVE_STATUSES, EnrichmentOutcome, ProviderName, is_blank


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


class ContactView:
    """Mutable in-memory view of a contact during one enrichment pass"""

    def __init__(self, contact: Contact):
        self.contact_id = contact.id
        self.full_name = contact.full_name
        self._values: Dict[str, Any] = contact.model_dump()

    def get(self, field: str) -> Any:
        return self._values.get(field)

    def is_empty(self, field: str) -> bool:
        return is_blank(self._values.get(field))

    def is_pending(self, provider: ProviderName) -> bool:
        return self._values.get(provider.status_field) not in DEFINITIVE_STATUSES

    def plan_updates(self, findings: Mapping[str, Optional[str]]) -> Dict[str, str]:
        """
        Select the findings that may be written

        Args:
            findings: destination field -> value returned by a provider

        Returns:
            Only the non-empty values whose destination is currently empty
        """
        updates = {}
        for field, value in findings.items():
            if is_blank(value):
                continue
            if not self.is_empty(field):
                continue
            updates[field] = value.strip() if isinstance(value, str) else value
        return updates

    def apply(self, payload: Mapping[str, Any]) -> None:
        """Record a successful write so later providers see it"""
        self._values.update(payload)


def status_update(
    provider: ProviderName,
    outcome: EnrichmentOutcome,
    updates: Optional[Mapping[str, Any]] = None,
) -> Dict[str, Any]:
    """Build the write payload for a definitive provider outcome"""
    if not outcome.is_definitive:
        raise ValueError(f"Only definitive outcomes are persisted, got {outcome.value}")
    payload: Dict[str, Any] = dict(updates or {})
    payload[provider.status_field] = outcome.value
    payload["last_enriched_at"] = utc_timestamp()
    return payload
