"""Configuration types with environment variable support.

All settings can be configured via environment variables with the TENANTDOMAINS_ prefix.
Example: TENANTDOMAINS_CNAME_TARGET=edge.example.net sets the expected CNAME target.
"""

from __future__ import annotations

import tomllib
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def load_config_from_file(path: str | Path) -> dict[str, Any]:
    """Load configuration from a YAML or TOML file.

    Args:
        path: Path to the configuration file (.yaml, .yml, or .toml)

    Returns:
        Configuration dictionary

    Raises:
        FileNotFoundError: If the config file doesn't exist
        ValueError: If the config file has encoding errors, invalid syntax, or unsupported format
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    try:
        content = path.read_text(encoding="utf-8")
    except UnicodeDecodeError as e:
        raise ValueError(f"Config file encoding error in {path}: {e}") from e

    try:
        if path.suffix in (".yaml", ".yml"):
            data = yaml.safe_load(content) or {}
        elif path.suffix == ".toml":
            data = tomllib.loads(content)
        else:
            raise ValueError(f"Unsupported config format: {path.suffix}")
    except yaml.YAMLError as e:
        raise ValueError(f"Invalid YAML in {path}: {e}") from e
    except tomllib.TOMLDecodeError as e:
        raise ValueError(f"Invalid TOML in {path}: {e}") from e

    # Allow both a flat file and one nested under a "domains" section.
    if isinstance(data.get("domains"), dict):
        return data["domains"]
    return data


class DomainsConfig(BaseSettings):
    """Configuration for custom domain verification and certificate lifecycle.

    All settings can be overridden via environment variables:
    - TENANTDOMAINS_STORAGE_BACKEND: "json" or "sqlite"
    - TENANTDOMAINS_STORAGE_PATH: Path to the domain store
    - TENANTDOMAINS_CNAME_TARGET: Ingress hostname tenants must CNAME to
    - TENANTDOMAINS_DNS_TIMEOUT: DNS lookup timeout (seconds)
    - etc.
    """

    model_config = SettingsConfigDict(
        env_prefix="TENANTDOMAINS_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    storage_backend: Literal["json", "sqlite"] = Field(
        default="json",
        description="Storage backend for domain records.",
    )
    storage_path: str = Field(
        default="domains.json",
        description="Path to the JSON file or SQLite database holding domain records.",
    )
    cname_target: str = Field(
        default="proxy.pmo-platform.com",
        description="Hostname custom domains must point their CNAME record at.",
    )
    txt_record_prefix: str = Field(
        default="_pmo-verify",
        description="Label prepended to the hostname for the ownership TXT record.",
    )
    token_prefix: str = Field(
        default="pmo-verify-",
        description="Prefix of generated verification tokens.",
    )
    instructions_ttl: int = Field(
        default=3600,
        description="TTL suggested to tenants for the verification TXT record (seconds).",
    )
    dns_timeout: float = Field(
        default=5.0,
        gt=0,
        description="Upper bound for a single DNS lookup (seconds).",
    )
    dns_nameservers: list[str] = Field(
        default_factory=list,
        description="Nameservers to query. Empty uses the system resolver.",
    )
    certificate_validity_days: int = Field(
        default=90,
        ge=1,
        description="Validity period of issued certificates (days).",
    )
    expiry_warning_days: int = Field(
        default=30,
        ge=0,
        description="Report days-until-expiry when a certificate expires within this window.",
    )
    provision_timeout: float = Field(
        default=120.0,
        gt=0,
        description="Upper bound for a single certificate issuance (seconds).",
    )
    max_concurrent_provisions: int = Field(
        default=4,
        ge=1,
        description="Maximum certificate issuances running at once across all domains.",
    )
    certs_dir: str = Field(
        default="certs",
        description="Directory where issued certificates and keys are written.",
    )
    renewal_interval: float = Field(
        default=3600.0,
        gt=0,
        description="Interval between renewal sweeps (seconds).",
    )
    resolver_cache_ttl: float = Field(
        default=60.0,
        ge=0,
        description="TTL for cached hostname to tenant lookups (seconds). 0 disables caching.",
    )
    log_level: str = Field(
        default="info",
        description="Log level (debug, info, warning, error).",
    )

    @classmethod
    def from_file(cls, path: str | Path, **overrides: Any) -> DomainsConfig:
        """Build a config from a YAML/TOML file. Explicit overrides win over file values."""
        values = load_config_from_file(path)
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)

    def to_display_dict(self) -> dict[str, Any]:
        """Export current configuration as a dictionary for display."""
        return self.model_dump()


_config: DomainsConfig | None = None


def get_config() -> DomainsConfig:
    """Get the global configuration instance.

    Returns a cached instance of DomainsConfig that reads from environment variables.
    To reload config (e.g., in tests), call clear_config() first.
    """
    global _config
    if _config is None:
        _config = DomainsConfig()
    return _config


def clear_config() -> None:
    """Clear the cached configuration.

    Call this to force reloading of environment variables on next get_config() call.
    Useful for testing.
    """
    global _config
    _config = None
