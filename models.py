"""
Pydantic models for the Contact Enrichment Service
"""
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ProviderName(str, Enum):
    """Enrichment providers known to the service"""
    HUNTER = "hunter"
    APOLLO = "apollo"
    LUSHA = "lusha"
    FINDYMAIL = "findymail"

    @property
    def status_field(self) -> str:
        return f"{self.value}_status"


# Providers the bulk job runs, in call order
BULK_PROVIDERS: List[ProviderName] = [ProviderName.HUNTER, ProviderName.APOLLO, ProviderName.LUSHA]


class EnrichmentOutcome(str, Enum):
    """Result of one provider call for one contact"""
    ENRICHED = "enriched"
    NOT_FOUND = "not_found"
    ERROR = "error"
    SKIPPED = "skipped"

    @property
    def is_definitive(self) -> bool:
        return self in (EnrichmentOutcome.ENRICHED, EnrichmentOutcome.NOT_FOUND)


STATUS_PENDING = "pending"
DEFINITIVE_STATUSES = (EnrichmentOutcome.ENRICHED.value, EnrichmentOutcome.NOT_FOUND.value)

EMAIL_FIELDS = ("email", "work_email", "personal_email")
PHONE_FIELDS = ("phone", "mobile_phone", "work_phone")
CHANNEL_FIELDS = EMAIL_FIELDS + PHONE_FIELDS


def is_blank(value) -> bool:
    """True for None and for strings that are empty once stripped"""
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    return False


class Contact(BaseModel):
    """Contact row from the Supabase contacts table"""
    model_config = ConfigDict(extra="ignore")

    id: str
    full_name: str = ""
    organization_id: Optional[str] = None
    created_by: Optional[str] = None

    email: Optional[str] = None
    work_email: Optional[str] = None
    personal_email: Optional[str] = None
    phone: Optional[str] = None
    mobile_phone: Optional[str] = None
    work_phone: Optional[str] = None
    linkedin_url: Optional[str] = None
    company_domain: Optional[str] = None
    position: Optional[str] = None

    hunter_status: Optional[str] = STATUS_PENDING
    apollo_status: Optional[str] = STATUS_PENDING
    lusha_status: Optional[str] = STATUS_PENDING
    findymail_status: Optional[str] = STATUS_PENDING
    last_enriched_at: Optional[str] = None

    @field_validator("id", "organization_id", "created_by", mode="before")
    @classmethod
    def coerce_identifier(cls, v):
        # UUID columns arrive as strings from PostgREST, but tests and callers may pass UUIDs
        return str(v) if v is not None else None

    @field_validator("full_name", mode="before")
    @classmethod
    def default_full_name(cls, v):
        return v or ""

    def status_for(self, provider: ProviderName) -> Optional[str]:
        return getattr(self, provider.status_field)

    def has_usable_email(self) -> bool:
        return any(not is_blank(getattr(self, field)) for field in EMAIL_FIELDS)

    def has_usable_phone(self) -> bool:
        return any(not is_blank(getattr(self, field)) for field in PHONE_FIELDS)


class ProviderResult(BaseModel):
    """Outcome of one provider call, with the data fields it wrote"""
    provider: ProviderName
    outcome: EnrichmentOutcome
    updates: Dict[str, str] = Field(default_factory=dict)
    error_code: Optional[str] = None
    error: Optional[str] = None


class ContactEnrichResult(BaseModel):
    """Per-contact entry of a bulk enrichment response"""
    contact_id: str
    full_name: str
    hunter: EnrichmentOutcome = EnrichmentOutcome.SKIPPED
    apollo: EnrichmentOutcome = EnrichmentOutcome.SKIPPED
    lusha: EnrichmentOutcome = EnrichmentOutcome.SKIPPED

    def outcome_for(self, provider: ProviderName) -> EnrichmentOutcome:
        return getattr(self, provider.value)


class BulkEnrichRequest(BaseModel):
    """Request body for one bulk enrichment invocation"""
    last_id: Optional[str] = ""
    services: List[ProviderName] = Field(default_factory=lambda: list(BULK_PROVIDERS))

    @field_validator("services")
    @classmethod
    def validate_services(cls, v):
        for service in v:
            if service not in BULK_PROVIDERS:
                raise ValueError(f"Service must be one of {[p.value for p in BULK_PROVIDERS]}")
        return v


class BulkEnrichResponse(BaseModel):
    """Response of one bulk enrichment invocation"""
    done: bool
    processed: int = 0
    last_id: Optional[str] = None
    results: List[ContactEnrichResult] = Field(default_factory=list)
    message: Optional[str] = None


class ContactEnrichResponse(BaseModel):
    """Response of a single-contact enrichment"""
    status: EnrichmentOutcome
    updates: Dict[str, str] = Field(default_factory=dict)


class UsageStatus(str, Enum):
    """Account status reported by a provider usage check"""
    CONNECTED = "connected"
    ERROR = "error"
    NOT_CONFIGURED = "not_configured"


class CreditUsage(BaseModel):
    used: int = 0
    total: Optional[int] = None
    remaining: Optional[int] = None


class ProviderUsage(BaseModel):
    """Credits and plan of one provider account"""
    provider: ProviderName
    status: UsageStatus
    plan: Optional[str] = None
    credits: Optional[CreditUsage] = None
    searches: Optional[CreditUsage] = None
    verifications: Optional[CreditUsage] = None
    reset_date: Optional[str] = None
    error: Optional[str] = None


class ProviderUsageResponse(BaseModel):
    providers: List[ProviderUsage] = Field(default_factory=list)
    fetched_at: str
