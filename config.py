"""
Configuration management for the Contact Enrichment Service
"""
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from models import ProviderName

# Load environment variables from .env file
load_dotenv()


class ProviderKeys(BaseModel):
    """API keys for the enrichment providers; a missing key disables the provider"""
    hunter_key: Optional[str] = None
    apollo_key: Optional[str] = None
    lusha_key: Optional[str] = None
    findymail_key: Optional[str] = None

    @field_validator("hunter_key", "apollo_key", "lusha_key", "findymail_key")
    @classmethod
    def blank_to_none(cls, v):
        if v is None or not v.strip():
            return None
        return v.strip()

    def key_for(self, provider: ProviderName) -> Optional[str]:
        return getattr(self, f"{provider.value}_key")

    def is_configured(self, provider: ProviderName) -> bool:
        return self.key_for(provider) is not None


class Settings(BaseSettings):
    """Application settings with environment variable support"""

    # Supabase Configuration
    supabase_url: Optional[str] = Field(default=None, alias="SUPABASE_URL")
    supabase_anon_key: Optional[str] = Field(default=None, alias="SUPABASE_ANON_KEY")
    supabase_service_role_key: Optional[str] = Field(default=None, alias="SUPABASE_SERVICE_ROLE_KEY")

    # Provider API keys
    hunter_api_key: Optional[str] = Field(default=None, alias="HUNTER_API_KEY")
    apollo_api_key: Optional[str] = Field(default=None, alias="APOLLO_API_KEY")
    lusha_api_key: Optional[str] = Field(default=None, alias="LUSHA_API_KEY")
    findymail_api_key: Optional[str] = Field(default=None, alias="FINDYMAIL_API_KEY")

    # Service Configuration
    log_level: str = "INFO"
    request_timeout: int = 30

    # Bulk enrichment
    enrichment_page_size: int = 3
    provider_pacing_seconds: float = 0.5  # delay after every provider call
    hunter_confidence_threshold: int = 30
    enrichment_lease_seconds: int = 0  # 0 disables per-contact claims
    max_batches_per_run: int = 1000

    # Background Service Configuration
    health_check_port: int = 8000
    health_check_host: str = "0.0.0.0"
    service_name: str = "contact-enrichment-service"

    # Logging Configuration
    log_file_enabled: bool = True
    log_file_path: str = "logs"
    log_rotation: str = "10 MB"
    log_retention: str = "30 days"

    # Development
    debug_mode: bool = False

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        populate_by_name=True,
        extra="ignore",
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v):
        """Validate log level is one of the standard Python logging levels"""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Log level must be one of {valid_levels}")
        return v.upper()

    @field_validator("enrichment_page_size")
    @classmethod
    def validate_page_size(cls, v):
        """Keep pages small enough to finish inside one request"""
        if v < 1 or v > 100:
            raise ValueError("enrichment_page_size must be between 1 and 100")
        return v

    @field_validator("hunter_confidence_threshold")
    @classmethod
    def validate_confidence_threshold(cls, v):
        if v < 0 or v > 100:
            raise ValueError("Confidence threshold must be between 0 and 100")
        return v

    @field_validator("provider_pacing_seconds")
    @classmethod
    def validate_pacing(cls, v):
        if v < 0:
            raise ValueError("provider_pacing_seconds cannot be negative")
        return v

    @field_validator("enrichment_lease_seconds", "max_batches_per_run")
    @classmethod
    def validate_non_negative(cls, v):
        if v < 0:
            raise ValueError("Value cannot be negative")
        return v

    def provider_keys(self) -> ProviderKeys:
        """Build the provider key set from the loaded environment"""
        return ProviderKeys(
            hunter_key=self.hunter_api_key,
            apollo_key=self.apollo_api_key,
            lusha_key=self.lusha_api_key,
            findymail_key=self.findymail_api_key,
        )


# Global settings instance - lazy loaded
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get the global settings instance"""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reload_settings() -> Settings:
    """Reload settings from environment"""
    global _settings
    _settings = Settings()
    return _settings
