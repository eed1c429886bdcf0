"""Pydantic configuration schema for aadtoken.

Mirrors the structure of the YAML config file. Every section has defaults,
so an empty (or absent) file yields a working configuration.

Usage:
    from aadtoken.config_schema import AppConfig

    config = AppConfig(**yaml_data)
"""

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from aadtoken.auth.flows import IMDS_ENDPOINT, MANAGED_IDENTITY_TIMEOUT_SECONDS
from aadtoken.auth.params import DEFAULT_AAD_HOST

# Current schema version - increment when adding new required fields
CURRENT_SCHEMA_VERSION = 1


class DefaultsConfig(BaseModel):
    """Defaults applied by the CLI when a request leaves them out."""

    model_config = ConfigDict(extra="forbid")

    tenant: str = Field(
        default="common",
        description="Azure AD tenant (name, domain or GUID)",
    )
    app: str | None = Field(
        default=None,
        description="Application (client) ID",
    )
    version: Literal[1, 2] = Field(
        default=1,
        description="Azure AD protocol version",
    )
    aad_host: str = Field(
        default=DEFAULT_AAD_HOST,
        description="Authority host; change for national clouds",
    )

    @field_validator("aad_host")
    @classmethod
    def validate_aad_host(cls, v: str) -> str:
        """Authority hosts must be https URLs."""
        if not v.startswith("https://"):
            raise ValueError("aad_host must start with https://")
        return v


class CacheConfig(BaseModel):
    """Token cache configuration."""

    model_config = ConfigDict(extra="forbid")

    directory: str | None = Field(
        default=None,
        description="Cache directory; defaults to $AADTOKEN_CACHE_DIR or ~/.aadtoken",
    )
    use_cache: bool = Field(
        default=True,
        description="Look up and store tokens in the cache",
    )
    expiry_margin_seconds: int = Field(
        default=0,
        ge=0,
        le=3600,
        description="Treat cached tokens this close to expiry as expired",
    )

    @field_validator("directory")
    @classmethod
    def validate_directory(cls, v: str | None) -> str | None:
        """Ensure the cache directory doesn't contain path traversal."""
        if v is None:
            return v
        if not v.strip():
            raise ValueError("Cache directory cannot be empty")
        if ".." in v:
            raise ValueError("Cache directory cannot contain '..' (path traversal)")
        return v


class InteractiveConfig(BaseModel):
    """Interactive flow configuration."""

    model_config = ConfigDict(extra="forbid")

    redirect_timeout_seconds: float = Field(
        default=300.0,
        gt=0,
        le=3600,
        description="How long to wait for the browser redirect (seconds)",
    )
    browser_available: bool | None = Field(
        default=None,
        description="Force browser availability on or off; null means detect",
    )


class NetworkConfig(BaseModel):
    """HTTP transport configuration."""

    model_config = ConfigDict(extra="forbid")

    timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        le=300,
        description="Per-request timeout for Azure AD endpoints (seconds)",
    )


class ManagedIdentityConfig(BaseModel):
    """Managed identity endpoint configuration."""

    model_config = ConfigDict(extra="forbid")

    endpoint: str = Field(
        default=IMDS_ENDPOINT,
        description="Instance metadata service token endpoint",
    )
    timeout_seconds: float = Field(
        default=MANAGED_IDENTITY_TIMEOUT_SECONDS,
        gt=0,
        le=60,
        description="Timeout for the metadata endpoint (seconds)",
    )


class LoggingConfig(BaseModel):
    """Logging configuration."""

    model_config = ConfigDict(extra="forbid")

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="WARNING",
        description="Log level",
    )
    json_output: bool = Field(
        default=False,
        description="Emit JSON logs instead of console-formatted logs",
    )


class AppConfig(BaseModel):
    """Root configuration model."""

    model_config = ConfigDict(extra="forbid")

    schema_version: int = Field(
        default=CURRENT_SCHEMA_VERSION,
        ge=1,
        description="Configuration schema version",
    )
    defaults: DefaultsConfig = Field(default_factory=DefaultsConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    interactive: InteractiveConfig = Field(default_factory=InteractiveConfig)
    network: NetworkConfig = Field(default_factory=NetworkConfig)
    managed_identity: ManagedIdentityConfig = Field(default_factory=ManagedIdentityConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
