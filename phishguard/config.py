"""Configuration management for PhishGuard."""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Set

import yaml
from dotenv import load_dotenv

logger = logging.getLogger(__name__)

# Values shipped in example .env files; treated the same as a missing key.
PLACEHOLDER_KEYS = {"your_phishtank_key_here", "changeme", "your_api_key_here"}

URLSCAN_VISIBILITIES = {"public", "unlisted", "private"}

DEFAULT_SUSPICIOUS_TLDS: set[str] = {"tk", "ml", "ga", "cf", "gq", "xyz", "top"}

# Matched against the hostname only, in order; first hit wins.
DEFAULT_SENSITIVE_KEYWORDS: list[str] = [
    "paypal",
    "login",
    "secure",
    "account",
    "update",
    "verify",
    "banking",
]

# Exempt from keyword matching (legitimate brand hosts and their subdomains).
DEFAULT_LEGITIMATE_DOMAINS: set[str] = {
    "paypal.com",
    "login.microsoft.com",
}

DEFAULT_OBFUSCATION_PATTERNS: list[str] = [
    r"eval\(",
    r"document\.write\(",
    r"fromCharCode",
]


@dataclass(frozen=True)
class ProviderConfig:
    """Per-provider settings passed to a provider at construction."""

    api_key: str = ""
    timeout: float = 6.0
    enabled: bool = True

    @property
    def is_configured(self) -> bool:
        """True when the provider has a usable credential."""
        key = (self.api_key or "").strip()
        return self.enabled and bool(key) and key.lower() not in PLACEHOLDER_KEYS


@dataclass
class Config:
    """Application configuration loaded from environment."""

    # Threat intelligence providers (missing key = NOT_CONFIGURED)
    virustotal: ProviderConfig = field(default_factory=ProviderConfig)
    urlscan: ProviderConfig = field(default_factory=lambda: ProviderConfig(timeout=10.0))
    safebrowsing: ProviderConfig = field(default_factory=ProviderConfig)
    phishtank: ProviderConfig = field(default_factory=ProviderConfig)

    # urlscan.io submit-then-poll
    urlscan_visibility: str = "unlisted"
    urlscan_poll_attempts: int = 3
    urlscan_poll_interval: float = 5.0

    # Analyzer deadlines (seconds)
    dns_timeout: float = 5.0
    tls_timeout: float = 5.0
    content_timeout: float = 10.0
    content_max_chunks: int = 100

    # Batch scanning
    max_batch_size: int = 50
    max_concurrent_scans: int = 5

    # HTTP surface
    api_host: str = "127.0.0.1"
    api_port: int = 8080

    log_level: str = "INFO"
    config_dir: Path = field(default_factory=lambda: Path("./config"))

    # Heuristics (override via config/heuristics.yaml)
    suspicious_tlds: Set[str] = field(default_factory=lambda: set(DEFAULT_SUSPICIOUS_TLDS))
    sensitive_keywords: list[str] = field(default_factory=lambda: list(DEFAULT_SENSITIVE_KEYWORDS))
    legitimate_domains: Set[str] = field(default_factory=lambda: set(DEFAULT_LEGITIMATE_DOMAINS))
    max_subdomain_labels: int = 4
    obfuscation_patterns: list[str] = field(default_factory=lambda: list(DEFAULT_OBFUSCATION_PATTERNS))
    scoring_weights: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        self.config_dir = Path(self.config_dir)
        self.suspicious_tlds = {t.lower().lstrip(".") for t in self.suspicious_tlds}
        self.sensitive_keywords = [k.lower() for k in self.sensitive_keywords if k]
        self.legitimate_domains = {d.lower().strip(".") for d in self.legitimate_domains if d}

    def provider_configs(self) -> dict[str, ProviderConfig]:
        return {
            "virustotal": self.virustotal,
            "urlscan": self.urlscan,
            "safebrowsing": self.safebrowsing,
            "phishtank": self.phishtank,
        }


def _load_heuristics(config_dir: Path) -> dict:
    """Load heuristic overrides from config/heuristics.yaml (optional)."""
    path = Path(config_dir or ".") / "heuristics.yaml"
    if not path.exists():
        return {}

    try:
        data = yaml.safe_load(path.read_text()) or {}
    except Exception as exc:
        logger.warning("Failed to parse heuristics.yaml: %s", exc)
        return {}
    if not isinstance(data, dict):
        logger.warning("Ignoring heuristics.yaml: top level is not a mapping")
        return {}

    def _str_list(raw) -> list[str] | None:
        if not isinstance(raw, (list, tuple, set)):
            return None
        items = [str(item).strip().lower() for item in raw if str(item).strip()]
        return items or None

    def _coerce_weights(raw) -> dict[str, Any]:
        weights: dict[str, Any] = {}
        if not isinstance(raw, dict):
            return weights
        for key, value in raw.items():
            try:
                weights[str(key)] = float(value) if isinstance(value, float) else int(value)
            except (TypeError, ValueError):
                logger.warning("Ignoring non-numeric scoring weight %s=%r", key, value)
        return weights

    domain_cfg = data.get("domain") or {}
    content_cfg = data.get("content") or {}

    overrides: dict[str, Any] = {}
    if isinstance(domain_cfg, dict):
        if tlds := _str_list(domain_cfg.get("suspicious_tlds")):
            overrides["suspicious_tlds"] = set(tlds)
        if keywords := _str_list(domain_cfg.get("sensitive_keywords")):
            overrides["sensitive_keywords"] = keywords
        if legit := _str_list(domain_cfg.get("legitimate_domains")):
            overrides["legitimate_domains"] = set(legit)
        if domain_cfg.get("max_subdomain_labels") is not None:
            try:
                overrides["max_subdomain_labels"] = int(domain_cfg["max_subdomain_labels"])
            except (TypeError, ValueError):
                logger.warning("Ignoring invalid max_subdomain_labels")
    if isinstance(content_cfg, dict):
        raw_patterns = content_cfg.get("obfuscation_patterns")
        if isinstance(raw_patterns, list):
            patterns = [str(p) for p in raw_patterns if str(p).strip()]
            if patterns:
                overrides["obfuscation_patterns"] = patterns

    weights = _coerce_weights(data.get("scoring"))
    if weights:
        overrides["scoring_weights"] = weights

    return overrides


def _env_float(name: str, default: float) -> float:
    return float(os.getenv(name, str(default)))


def load_config() -> Config:
    """Load configuration from environment variables."""
    load_dotenv()

    provider_timeout = _env_float("PROVIDER_TIMEOUT", 6.0)
    config_dir = Path(os.getenv("CONFIG_DIR", "./config"))
    heuristics = _load_heuristics(config_dir)

    return Config(
        virustotal=ProviderConfig(
            api_key=os.getenv("VIRUSTOTAL_API_KEY", ""),
            timeout=provider_timeout,
        ),
        urlscan=ProviderConfig(
            api_key=os.getenv("URLSCAN_API_KEY", ""),
            timeout=_env_float("URLSCAN_TIMEOUT", 10.0),
        ),
        safebrowsing=ProviderConfig(
            api_key=os.getenv("GOOGLE_SAFE_BROWSING_API_KEY", ""),
            timeout=provider_timeout,
        ),
        phishtank=ProviderConfig(
            api_key=os.getenv("PHISHTANK_API_KEY", ""),
            timeout=provider_timeout,
        ),
        urlscan_visibility=os.getenv("URLSCAN_VISIBILITY", "unlisted").strip().lower() or "unlisted",
        urlscan_poll_attempts=int(os.getenv("URLSCAN_POLL_ATTEMPTS", "3")),
        urlscan_poll_interval=_env_float("URLSCAN_POLL_INTERVAL", 5.0),
        dns_timeout=_env_float("DNS_TIMEOUT", 5.0),
        tls_timeout=_env_float("TLS_TIMEOUT", 5.0),
        content_timeout=_env_float("CONTENT_TIMEOUT", 10.0),
        content_max_chunks=int(os.getenv("CONTENT_MAX_CHUNKS", "100")),
        max_batch_size=int(os.getenv("MAX_BATCH_SIZE", "50")),
        max_concurrent_scans=int(os.getenv("MAX_CONCURRENT_SCANS", "5")),
        api_host=os.getenv("API_HOST", "127.0.0.1"),
        api_port=int(os.getenv("API_PORT", "8080")),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        config_dir=config_dir,
        **heuristics,
    )


def validate_config(config: Config) -> list[str]:
    """Validate configuration and return list of error messages."""
    errors: list[str] = []

    for name, provider in config.provider_configs().items():
        if provider.timeout <= 0:
            errors.append(f"{name} timeout must be positive")
        if not provider.is_configured:
            logger.info("%s not configured; provider will be skipped", name)

    if config.urlscan_poll_attempts < 1:
        errors.append("URLSCAN_POLL_ATTEMPTS must be at least 1")
    if config.urlscan_poll_interval < 0:
        errors.append("URLSCAN_POLL_INTERVAL must not be negative")
    if config.urlscan_visibility not in URLSCAN_VISIBILITIES:
        errors.append(
            f"URLSCAN_VISIBILITY must be one of {', '.join(sorted(URLSCAN_VISIBILITIES))}"
        )

    for name in ("dns_timeout", "tls_timeout", "content_timeout"):
        if getattr(config, name) <= 0:
            errors.append(f"{name.upper()} must be positive")
    if config.content_max_chunks < 1:
        errors.append("CONTENT_MAX_CHUNKS must be at least 1")
    if config.max_batch_size < 1:
        errors.append("MAX_BATCH_SIZE must be at least 1")
    if config.max_concurrent_scans < 1:
        errors.append("MAX_CONCURRENT_SCANS must be at least 1")

    return errors
