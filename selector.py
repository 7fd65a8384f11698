"""
Candidate selection for the bulk enrichment job
"""
from typing import List, Optional, Sequence

from loguru import logger
from pydantic import BaseModel, Field

from models import Contact, DEFINITIVE_STATUSES, ProviderName


class CandidateFetchError(Exception):
    """The candidate query failed; nothing was processed"""
    pass


def is_enrichment_candidate(contact: Contact, services: Sequence[ProviderName]) -> bool:
    """
    Check whether a fetched contact still needs enrichment

    A contact qualifies only when it has no email and no phone in any slot,
    and at least one requested provider has not reached a definitive status.
    """
    if contact.has_usable_email() or contact.has_usable_phone():
        return False
    return not all(contact.status_for(service) in DEFINITIVE_STATUSES for service in services)


class CandidatePage(BaseModel):
    """One page of candidates and the cursor to resume after it"""
    raw: List[Contact] = Field(default_factory=list)
    eligible: List[Contact] = Field(default_factory=list)
    next_cursor: Optional[str] = None
    exhausted: bool = False


class CandidateSelector:
    """Pages through a user's contacts in id order"""

    def __init__(self, store, page_size: int = 3):
        if page_size < 1:
            raise ValueError("page_size must be at least 1")
        self.store = store
        self.page_size = page_size

    async def next_page(
        self,
        user_id: str,
        last_id: Optional[str],
        services: Sequence[ProviderName],
    ) -> CandidatePage:
        """
        Fetch the page after last_id and apply the in-process filter

        One row past the page is requested to tell whether anything follows,
        so the last page is recognized without an extra empty call. The cursor
        advances to the last row of the page whether or not it survives the
        filter, so a page of filtered-out rows cannot stall paging.

        Raises:
            CandidateFetchError: if the store query fails
        """
        try:
            fetched = await self.store.fetch_enrichment_candidates(user_id, last_id or None, self.page_size + 1)
        except Exception as e:
            logger.error(f"Failed to fetch enrichment candidates after {last_id or '<start>'}: {e}")
            raise CandidateFetchError(str(e)) from e

        raw = fetched[: self.page_size]
        eligible = [contact for contact in raw if is_enrichment_candidate(contact, services)]
        if len(eligible) < len(raw):
            logger.debug(f"Dropped {len(raw) - len(eligible)} of {len(raw)} candidates in fine filter")

        return CandidatePage(
            raw=raw,
            eligible=eligible,
            next_cursor=raw[-1].id if raw else (last_id or None),
            exhausted=len(fetched) <= self.page_size,
        )
