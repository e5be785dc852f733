"""Configuration module for squad-memory.

Loads configuration from environment variables with sensible defaults.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path

PROVIDER_CHOICES = ("openai", "gemini", "voyage", "none")


def _int_env(name: str, default: int, minimum: int = 0) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError as e:
        raise ValueError(f"Invalid {name} value '{raw}': must be an integer") from e
    if value < minimum:
        raise ValueError(f"Invalid {name} value '{raw}': must be >= {minimum}")
    return value


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = float(raw)
    except ValueError as e:
        raise ValueError(f"Invalid {name} value '{raw}': must be a number") from e
    if value <= 0:
        raise ValueError(f"Invalid {name} value '{raw}': must be positive")
    return value


@dataclass
class Config:
    """Application configuration."""

    provider: str | None = None  # None means auto-detect from API keys
    model: str | None = None
    chunk_tokens: int = 500
    overlap_tokens: int = 50
    embed_batch_size: int = 50
    embed_concurrency: int = 4
    embed_timeout: float = 30.0
    candidates: int = 20
    rrf_k: int = 60
    result_limit: int = 5
    port: int = 8080
    auth_token: str | None = None
    projects: list[Path] = field(default_factory=list)
    sync_interval: int = 0

    @classmethod
    def from_env(cls) -> "Config":
        """Load configuration from environment variables."""
        provider = os.getenv("SQUAD_MEMORY_PROVIDER", "").strip().lower() or None
        if provider is not None and provider not in PROVIDER_CHOICES:
            raise ValueError(
                f"Invalid SQUAD_MEMORY_PROVIDER value '{provider}': "
                f"expected one of {', '.join(PROVIDER_CHOICES)}"
            )

        model = os.getenv("SQUAD_MEMORY_MODEL", "").strip() or None

        chunk_tokens = _int_env("SQUAD_MEMORY_CHUNK_TOKENS", 500, minimum=1)
        overlap_tokens = _int_env("SQUAD_MEMORY_OVERLAP_TOKENS", 50)
        if overlap_tokens >= chunk_tokens:
            raise ValueError(
                f"SQUAD_MEMORY_OVERLAP_TOKENS ({overlap_tokens}) must be smaller "
                f"than SQUAD_MEMORY_CHUNK_TOKENS ({chunk_tokens})"
            )

        port = _int_env("SQUAD_MEMORY_PORT", 8080, minimum=1)
        if port > 65535:
            raise ValueError(f"Invalid SQUAD_MEMORY_PORT value '{port}': must be <= 65535")

        # Auth token - must be at least 32 characters if set
        auth_token = os.getenv("SQUAD_MEMORY_AUTH_TOKEN")
        if auth_token is not None and len(auth_token) < 32:
            raise ValueError(
                "SQUAD_MEMORY_AUTH_TOKEN must be at least 32 characters for security"
            )

        projects_raw = os.getenv("SQUAD_MEMORY_PROJECTS", "")
        projects = [
            Path(p).expanduser() for p in projects_raw.split(os.pathsep) if p.strip()
        ]

        return cls(
            provider=provider,
            model=model,
            chunk_tokens=chunk_tokens,
            overlap_tokens=overlap_tokens,
            embed_batch_size=_int_env("SQUAD_MEMORY_EMBED_BATCH", 50, minimum=1),
            embed_concurrency=_int_env("SQUAD_MEMORY_EMBED_CONCURRENCY", 4, minimum=1),
            embed_timeout=_float_env("SQUAD_MEMORY_EMBED_TIMEOUT", 30.0),
            candidates=_int_env("SQUAD_MEMORY_CANDIDATES", 20, minimum=1),
            rrf_k=_int_env("SQUAD_MEMORY_RRF_K", 60),
            result_limit=_int_env("SQUAD_MEMORY_LIMIT", 5, minimum=1),
            port=port,
            auth_token=auth_token,
            projects=projects,
            sync_interval=_int_env("SQUAD_MEMORY_SYNC_INTERVAL", 0),
        )


# Global config instance (lazy loaded)
_config: Config | None = None


def get_config() -> Config:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = Config.from_env()
    return _config


def reset_config() -> None:
    """Reset the global configuration (useful for testing)."""
    global _config
    _config = None
