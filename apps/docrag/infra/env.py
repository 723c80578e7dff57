import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv


def load_env(env_file: Optional[str] = None) -> None:
    """
    Populate DOCRAG_* and provider variables from dotenv files.

    With ``env_file`` only that file is read. Otherwise the repository .env,
    then apps/docrag/.env, then the shipped env.example defaults are applied
    in that order. Values already in the environment always win.
    """
    if env_file:
        load_dotenv(env_file, override=False)
        return

    package_dir = Path(__file__).resolve().parents[1]
    candidates = (
        package_dir.parents[1] / ".env",
        package_dir / ".env",
        package_dir / "env.example",
    )
    for path in candidates:
        if path.is_file():
            load_dotenv(path, override=False)


def get_embedding_api_key() -> str:
    """
    Returns the embedding API key. Local Ollama servers ignore the key,
    so a placeholder is returned when nothing is configured.
    """
    key = os.getenv("DOCRAG_EMBEDDING_API_KEY")
    if key:
        return key
    return os.getenv("OPENAI_API_KEY") or "ollama"


def get_embedding_base_url() -> str:
    """
    Return the OpenAI-compatible base URL; default to a local Ollama server.
    """
    return os.getenv("DOCRAG_EMBEDDING_BASE_URL", "http://localhost:11434/v1")


def get_embedding_model() -> str:
    return os.getenv("DOCRAG_EMBEDDING_MODEL", "nomic-embed-text")


def _env_number(name: str, default, cast):
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return cast(raw.strip())
    except ValueError as e:
        from ..rag.errors import ConfigError

        raise ConfigError(f"{name} must be a {cast.__name__}, got {raw!r}") from e


def _env_flag(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class RetrievalSettings:
    embed_timeout_s: float = 30.0
    embed_max_retries: int = 3
    embed_batch_size: int = 32
    max_workers: int = 8
    query_timeout_s: float = 60.0
    cache_embeddings: bool = True
    cache_max_size: int = 10_000
    chunk_cache_max_documents: int = 1000
    max_chunk_size: int = 512
    min_chunk_size: int = 100
    overlap_size: int = 50
    split_by: str = "paragraph"
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "RetrievalSettings":
        """Read DOCRAG_* variables, loading .env files first."""
        load_env()
        return cls(
            embed_timeout_s=_env_number("DOCRAG_EMBED_TIMEOUT_S", cls.embed_timeout_s, float),
            embed_max_retries=_env_number("DOCRAG_EMBED_MAX_RETRIES", cls.embed_max_retries, int),
            embed_batch_size=_env_number("DOCRAG_EMBED_BATCH_SIZE", cls.embed_batch_size, int),
            max_workers=_env_number("DOCRAG_MAX_WORKERS", cls.max_workers, int),
            query_timeout_s=_env_number("DOCRAG_QUERY_TIMEOUT_S", cls.query_timeout_s, float),
            cache_embeddings=_env_flag("DOCRAG_CACHE_EMBEDDINGS", cls.cache_embeddings),
            cache_max_size=_env_number("DOCRAG_CACHE_MAX_SIZE", cls.cache_max_size, int),
            chunk_cache_max_documents=_env_number(
                "DOCRAG_CHUNK_CACHE_MAX_DOCUMENTS", cls.chunk_cache_max_documents, int,
            ),
            max_chunk_size=_env_number("DOCRAG_MAX_CHUNK_SIZE", cls.max_chunk_size, int),
            min_chunk_size=_env_number("DOCRAG_MIN_CHUNK_SIZE", cls.min_chunk_size, int),
            overlap_size=_env_number("DOCRAG_OVERLAP_SIZE", cls.overlap_size, int),
            split_by=os.getenv("DOCRAG_SPLIT_BY", cls.split_by),
            log_level=os.getenv("DOCRAG_LOG_LEVEL", cls.log_level),
        )
