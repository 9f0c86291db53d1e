"""
Configuration for Forvm.

Handles paths, defaults, JSON config file, and environment-based overrides.
Configuration is loaded from ~/.forvm/config.json with sensible defaults.
"""

import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

# Default data directory: ~/.forvm/
DEFAULT_DATA_DIR = Path.home() / ".forvm"
CONFIG_FILE_NAME = "config.json"

# Default configuration values
DEFAULT_CONFIG: Dict[str, Any] = {
    "database_url": None,  # None = sqlite file in the data dir
    "embedding_provider": "ollama",  # "ollama" or "openai" (any OpenAI-compatible endpoint)
    "ollama_url": "http://localhost:11434",
    "openai_base_url": "https://openrouter.ai/api/v1",
    "embedding_api_key": None,
    "embedding_model": "nomic-embed-text",
    "embedding_dimension": 768,
    "api_key": None,  # Agent key used by the MCP server
    "toon_output": False,
    "admission": {
        "min_reviews": 3,
        "accept_threshold": 0.6,
        "credit_author_on_accept": True,
        "credit_reviewer_per_vote": True,
        "auto_submit_for_review": False,
    },
    "access": {
        "require_email_verification": True,
        "min_contribution": 1,
    },
    "search": {
        "limit": 10,
        "threshold": 0.3,
    },
}

# Module-level config cache
_config_cache: Optional[Dict[str, Any]] = None


@dataclass(frozen=True)
class AdmissionPolicy:
    """Quorum parameters and credit switches for the admission engine."""
    min_reviews: int = 3
    accept_threshold: float = 0.6
    credit_author_on_accept: bool = True
    credit_reviewer_per_vote: bool = True
    auto_submit_for_review: bool = False

    def __post_init__(self):
        if self.min_reviews < 1:
            raise ValueError(f"min_reviews must be >= 1, got {self.min_reviews}")
        if not 0 < self.accept_threshold <= 1:
            raise ValueError(
                f"accept_threshold must be in (0, 1], got {self.accept_threshold}"
            )


@dataclass(frozen=True)
class AccessPolicy:
    """Activation and contribution requirements checked by the access gate."""
    require_email_verification: bool = True
    min_contribution: int = 1


def get_data_dir() -> Path:
    """Get the data directory (FORVM_DATA_DIR overrides ~/.forvm)."""
    return Path(os.environ.get("FORVM_DATA_DIR", DEFAULT_DATA_DIR))


def get_config_path() -> Path:
    """Get the path to the config file."""
    return get_data_dir() / CONFIG_FILE_NAME


def _merge_section(config: Dict[str, Any], file_config: Dict[str, Any], section: str) -> None:
    """Merge a nested section so partial overrides keep the other defaults."""
    merged = dict(DEFAULT_CONFIG[section])
    merged.update(file_config.get(section) or {})
    config[section] = merged


def load_config() -> Dict[str, Any]:
    """
    Load configuration from JSON file, with defaults for missing values.

    Environment variables can override config file values:
    - FORVM_DATA_DIR: Override data directory
    - FORVM_DATABASE_URL: Override database_url
    - OLLAMA_HOST: Override ollama_url
    - FORVM_EMBEDDING_PROVIDER: Override embedding_provider
    - FORVM_EMBEDDING_MODEL: Override embedding_model
    - FORVM_EMBEDDING_API_KEY / OPENROUTER_API_KEY: Override embedding_api_key
    - FORVM_API_KEY: Override api_key
    - FORVM_MIN_REVIEWS / FORVM_ACCEPT_THRESHOLD: Override admission quorum

    Returns:
        Dict containing configuration values
    """
    global _config_cache

    if _config_cache is not None:
        return _config_cache

    config = json.loads(json.dumps(DEFAULT_CONFIG))  # deep copy
    config_path = get_config_path()

    file_config: Dict[str, Any] = {}
    if config_path.exists():
        try:
            with open(config_path, "r", encoding="utf-8") as f:
                file_config = json.load(f)
        except (json.JSONDecodeError, IOError) as e:
            # Log but continue with defaults
            logger.warning("Could not load config from %s: %s", config_path, e)

    for key, value in file_config.items():
        if key not in ("admission", "access", "search"):
            config[key] = value
    for section in ("admission", "access", "search"):
        _merge_section(config, file_config, section)

    # Environment variable overrides
    if os.environ.get("FORVM_DATABASE_URL"):
        config["database_url"] = os.environ["FORVM_DATABASE_URL"]

    if os.environ.get("OLLAMA_HOST"):
        config["ollama_url"] = os.environ["OLLAMA_HOST"]

    if os.environ.get("FORVM_EMBEDDING_PROVIDER"):
        config["embedding_provider"] = os.environ["FORVM_EMBEDDING_PROVIDER"]

    if os.environ.get("FORVM_EMBEDDING_MODEL"):
        config["embedding_model"] = os.environ["FORVM_EMBEDDING_MODEL"]

    api_key = os.environ.get("FORVM_EMBEDDING_API_KEY") or os.environ.get("OPENROUTER_API_KEY")
    if api_key:
        config["embedding_api_key"] = api_key

    if os.environ.get("FORVM_API_KEY"):
        config["api_key"] = os.environ["FORVM_API_KEY"]

    if os.environ.get("FORVM_MIN_REVIEWS"):
        config["admission"]["min_reviews"] = int(os.environ["FORVM_MIN_REVIEWS"])

    if os.environ.get("FORVM_ACCEPT_THRESHOLD"):
        config["admission"]["accept_threshold"] = float(os.environ["FORVM_ACCEPT_THRESHOLD"])

    _config_cache = config
    return config


def save_config(config: Optional[Dict[str, Any]] = None) -> None:
    """
    Save configuration to JSON file.

    Args:
        config: Configuration dict to save. If None, saves current config.
    """
    global _config_cache

    if config is None:
        config = load_config()

    config_path = get_config_path()
    config_path.parent.mkdir(parents=True, exist_ok=True)

    with open(config_path, "w", encoding="utf-8") as f:
        json.dump(config, f, indent=2)

    _config_cache = config


def clear_config_cache() -> None:
    """Clear the config cache, forcing reload on next access."""
    global _config_cache
    _config_cache = None


def ensure_data_dir() -> Path:
    """Create data directory if it doesn't exist."""
    data_dir = get_data_dir()
    data_dir.mkdir(parents=True, exist_ok=True)
    return data_dir


def get_database_url() -> str:
    """Get the SQLAlchemy database URL (SQLite file in the data dir by default)."""
    url = load_config().get("database_url")
    if url:
        return url
    return f"sqlite:///{get_data_dir() / 'forvm.db'}"


def get_database_type() -> str:
    """Return "postgres" or "sqlite"."""
    url = get_database_url()
    if url.startswith("postgresql") or url.startswith("postgres"):
        return "postgres"
    return "sqlite"


def is_postgres() -> bool:
    return get_database_type() == "postgres"


def is_sqlite() -> bool:
    return get_database_type() == "sqlite"


def get_embedding_provider() -> str:
    return load_config().get("embedding_provider") or "ollama"


def get_ollama_url() -> str:
    """Get the Ollama base URL from config."""
    return load_config().get("ollama_url", DEFAULT_CONFIG["ollama_url"])


def get_openai_base_url() -> str:
    return load_config().get("openai_base_url", DEFAULT_CONFIG["openai_base_url"])


def get_embedding_api_key() -> Optional[str]:
    return load_config().get("embedding_api_key")


def get_embedding_model() -> str:
    return load_config().get("embedding_model") or DEFAULT_CONFIG["embedding_model"]


def get_embedding_dimension() -> int:
    """Vector width for the pgvector column. Must match the embedding model."""
    return int(load_config().get("embedding_dimension", DEFAULT_CONFIG["embedding_dimension"]))


def get_agent_api_key() -> Optional[str]:
    """API key the MCP server authenticates with on every tool call."""
    return load_config().get("api_key")


def get_admission_policy() -> AdmissionPolicy:
    """Build the admission policy from the "admission" config section."""
    section = load_config()["admission"]
    return AdmissionPolicy(
        min_reviews=int(section["min_reviews"]),
        accept_threshold=float(section["accept_threshold"]),
        credit_author_on_accept=bool(section["credit_author_on_accept"]),
        credit_reviewer_per_vote=bool(section["credit_reviewer_per_vote"]),
        auto_submit_for_review=bool(section["auto_submit_for_review"]),
    )


def get_access_policy() -> AccessPolicy:
    section = load_config()["access"]
    return AccessPolicy(
        require_email_verification=bool(section["require_email_verification"]),
        min_contribution=int(section["min_contribution"]),
    )


def get_search_defaults() -> Dict[str, Any]:
    """Default limit and similarity threshold for knowledge search."""
    return dict(load_config()["search"])


def is_toon_output_enabled() -> bool:
    """Whether MCP tool responses are TOON-encoded by default."""
    return bool(load_config().get("toon_output", False))
