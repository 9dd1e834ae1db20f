from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Database URL - plain postgres URLs are rewritten for asyncpg
    database_url: str = Field(
        default="postgresql://localhost/properties",
        alias="DATABASE_URL"
    )

    # Name of the property group that is subject to access control
    access_controlled_group: str = Field(
        default="custom_profile_attributes",
        alias="PROPERTY_ACCESS_GROUP"
    )

    # Max number of live custom profile attribute fields
    cpa_field_limit: int = Field(
        default=20,
        alias="CPA_FIELD_LIMIT"
    )

    # Logging
    log_level: str = Field(
        default="INFO",
        alias="LOG_LEVEL"
    )
    log_json: bool = Field(
        default=True,
        alias="LOG_JSON"
    )

    class Config:
        env_file = ".env"
        extra = "ignore"
        populate_by_name = True  # Allow both alias and field name

    def validate_limits(self) -> None:
        """Validate numeric settings that have no sensible fallback"""
        if self.cpa_field_limit <= 0:
            raise ValueError("CPA_FIELD_LIMIT must be a positive integer")
        if not self.access_controlled_group.strip():
            raise ValueError("PROPERTY_ACCESS_GROUP must not be empty")


@lru_cache()
def get_settings() -> Settings:
    settings = Settings()
    settings.validate_limits()
    return settings
