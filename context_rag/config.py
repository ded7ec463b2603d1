"""
Configuration for the RAG pipeline.

The configuration is a tree of dataclasses mirroring the ``rag:`` section of
``config/config.yaml``. Every field can be overridden at construction time
and later through a partial update.
"""

import logging
import os
import re
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Dict, Any, Optional, Union

import yaml

from .errors import InvalidConfigError
from .retrieval.models import SourceType

logger = logging.getLogger(__name__)

FUSION_METHODS = ("rrf", "linear", "learned")
CONTEXT_FORMATS = ("xml", "markdown", "plain", "json")
CACHE_BACKENDS = ("memory", "redis")


def resolve_env_vars(value: Any) -> Any:
    """Resolve environment variables in string values like ${VAR_NAME}."""
    if isinstance(value, str) and "${" in value:
        def replace_env_var(match):
            var_name = match.group(1)
            return os.getenv(var_name, match.group(0))

        return re.sub(r'\$\{([^}]{1,256})\}', replace_env_var, value)
    if isinstance(value, dict):
        return {key: resolve_env_vars(item) for key, item in value.items()}
    if isinstance(value, list):
        return [resolve_env_vars(item) for item in value]
    return value


def load_config(config_path: Union[str, Path] = "config/config.yaml") -> Dict[str, Any]:
    """Load configuration from a YAML file.

    Args:
        config_path: Path to the YAML file

    Returns:
        The parsed configuration with ${VAR} references resolved
    """
    try:
        with open(config_path, 'r') as f:
            config = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise InvalidConfigError(f"Error parsing configuration file {config_path}: {e}") from e

    if not isinstance(config, dict):
        raise InvalidConfigError(f"Configuration file {config_path} must contain a mapping")

    logger.debug(f"Loaded configuration from {config_path}")
    return resolve_env_vars(config)


@dataclass
class SourceSettings:
    """Settings for a single source."""
    enabled: bool = True
    weight: float = 1.0
    top_k: int = 10


@dataclass
class RankingConfig:
    """Ranking algorithm settings."""
    fusion_method: str = "rrf"
    rrf_k: float = 60
    mmr_lambda: float = 0.7
    recency_boost: float = 0.1
    recency_decay_days: float = 30


@dataclass
class AssemblyConfig:
    """Context assembly settings."""
    max_tokens: int = 4000
    format: str = "xml"
    include_scores: bool = False
    deduplication_threshold: float = 0.85


@dataclass
class CachingConfig:
    """Result and embedding cache settings."""
    enabled: bool = True
    ttl_seconds: float = 300
    max_entries: int = 1000
    backend: str = "memory"
    redis_url: Optional[str] = None
    key_prefix: str = "ctxrag:"


@dataclass
class TimeoutConfig:
    """Retrieval deadlines in milliseconds."""
    per_source_ms: float = 2000
    total_ms: float = 5000


def default_sources() -> Dict[SourceType, SourceSettings]:
    return {
        SourceType.VECTOR_DB: SourceSettings(enabled=True, weight=1.0, top_k=20),
        SourceType.KEYWORD: SourceSettings(enabled=True, weight=0.5, top_k=10),
        SourceType.DOCS: SourceSettings(enabled=True, weight=0.3, top_k=5),
        SourceType.ISSUES: SourceSettings(enabled=True, weight=0.2, top_k=5),
        SourceType.PRS: SourceSettings(enabled=False, weight=0.2, top_k=5),
        SourceType.COMMITS: SourceSettings(enabled=False, weight=0.1, top_k=5),
    }


_SECTIONS = {
    "ranking": RankingConfig,
    "assembly": AssemblyConfig,
    "caching": CachingConfig,
    "timeouts": TimeoutConfig,
}


def _update_section(section: Any, overrides: Any, prefix: str) -> Any:
    """Return a copy of a section dataclass with overrides applied."""
    if overrides is None:
        return section
    if isinstance(overrides, type(section)):
        return replace(overrides)
    if not isinstance(overrides, dict):
        raise InvalidConfigError(f"Section '{prefix}' must be a mapping", prefix)

    known = {f.name for f in fields(section)}
    for key in overrides:
        if key not in known:
            raise InvalidConfigError(f"Unknown configuration field '{prefix}.{key}'", f"{prefix}.{key}")
    return replace(section, **overrides)


@dataclass
class RAGConfig:
    """Complete pipeline configuration."""
    sources: Dict[SourceType, SourceSettings] = field(default_factory=default_sources)
    ranking: RankingConfig = field(default_factory=RankingConfig)
    assembly: AssemblyConfig = field(default_factory=AssemblyConfig)
    caching: CachingConfig = field(default_factory=CachingConfig)
    timeouts: TimeoutConfig = field(default_factory=TimeoutConfig)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "RAGConfig":
        """Build a validated config from a (possibly partial) nested mapping."""
        return cls().merge(data or {})

    def merge(self, overrides: Union[Dict[str, Any], "RAGConfig"]) -> "RAGConfig":
        """Return a new config with the supplied fields overridden.

        Args:
            overrides: Partial nested mapping, or a full RAGConfig

        Returns:
            The merged and validated configuration
        """
        if isinstance(overrides, RAGConfig):
            overrides = overrides.to_dict()
        if not isinstance(overrides, dict):
            raise InvalidConfigError("Configuration overrides must be a mapping")

        for key in overrides:
            if key != "sources" and key not in _SECTIONS:
                raise InvalidConfigError(f"Unknown configuration section '{key}'", key)

        sources = {name: replace(settings) for name, settings in self.sources.items()}
        source_overrides = overrides.get("sources") or {}
        if not isinstance(source_overrides, dict):
            raise InvalidConfigError("Section 'sources' must be a mapping", "sources")
        for name, settings in source_overrides.items():
            try:
                source_type = SourceType(name)
            except ValueError:
                raise InvalidConfigError(f"Unknown source '{name}'", f"sources.{name}")
            current = sources.get(source_type, SourceSettings())
            sources[source_type] = _update_section(current, settings, f"sources.{source_type.value}")

        merged = RAGConfig(
            sources=sources,
            **{
                name: _update_section(getattr(self, name), overrides.get(name), name)
                for name in _SECTIONS
            }
        )
        merged.validate()
        return merged

    def validate(self):
        """Check value ranges and enumerations, naming the offending field."""
        for source_type, settings in self.sources.items():
            prefix = f"sources.{source_type.value}"
            _require(isinstance(settings.enabled, bool), f"{prefix}.enabled", "must be a boolean")
            _require(_is_number(settings.weight) and settings.weight >= 0, f"{prefix}.weight", "must be >= 0")
            _require(_is_int(settings.top_k) and settings.top_k >= 1, f"{prefix}.top_k", "must be an integer >= 1")

        ranking = self.ranking
        _require(ranking.fusion_method in FUSION_METHODS, "ranking.fusion_method",
                 f"must be one of {', '.join(FUSION_METHODS)}")
        _require(_is_number(ranking.rrf_k) and ranking.rrf_k >= 0, "ranking.rrf_k", "must be >= 0")
        _require(_is_number(ranking.mmr_lambda) and 0 <= ranking.mmr_lambda <= 1,
                 "ranking.mmr_lambda", "must be between 0 and 1")
        _require(_is_number(ranking.recency_boost) and ranking.recency_boost >= 0,
                 "ranking.recency_boost", "must be >= 0")
        _require(_is_number(ranking.recency_decay_days) and ranking.recency_decay_days > 0,
                 "ranking.recency_decay_days", "must be > 0")

        assembly = self.assembly
        _require(_is_int(assembly.max_tokens) and assembly.max_tokens >= 1,
                 "assembly.max_tokens", "must be an integer >= 1")
        _require(assembly.format in CONTEXT_FORMATS, "assembly.format",
                 f"must be one of {', '.join(CONTEXT_FORMATS)}")
        _require(isinstance(assembly.include_scores, bool), "assembly.include_scores", "must be a boolean")
        _require(_is_number(assembly.deduplication_threshold) and 0 <= assembly.deduplication_threshold <= 1,
                 "assembly.deduplication_threshold", "must be between 0 and 1")

        caching = self.caching
        _require(isinstance(caching.enabled, bool), "caching.enabled", "must be a boolean")
        _require(_is_number(caching.ttl_seconds) and caching.ttl_seconds >= 0,
                 "caching.ttl_seconds", "must be >= 0")
        _require(_is_int(caching.max_entries) and caching.max_entries >= 1,
                 "caching.max_entries", "must be an integer >= 1")
        _require(caching.backend in CACHE_BACKENDS, "caching.backend",
                 f"must be one of {', '.join(CACHE_BACKENDS)}")
        _require(not (caching.enabled and caching.backend == "redis") or bool(caching.redis_url),
                 "caching.redis_url", "is required for the redis backend")

        timeouts = self.timeouts
        _require(_is_number(timeouts.per_source_ms) and timeouts.per_source_ms > 0,
                 "timeouts.per_source_ms", "must be > 0")
        _require(_is_number(timeouts.total_ms) and timeouts.total_ms > 0,
                 "timeouts.total_ms", "must be > 0")

    def enabled_sources(self):
        return [name for name, settings in self.sources.items() if settings.enabled]

    def source_weights(self) -> Dict[SourceType, float]:
        return {name: settings.weight for name, settings in self.sources.items()}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sources": {
                name.value: {
                    "enabled": settings.enabled,
                    "weight": settings.weight,
                    "top_k": settings.top_k,
                }
                for name, settings in self.sources.items()
            },
            **{
                name: {f.name: getattr(getattr(self, name), f.name) for f in fields(getattr(self, name))}
                for name in _SECTIONS
            }
        }


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _require(condition: bool, field_name: str, problem: str):
    if not condition:
        raise InvalidConfigError(f"Invalid value for '{field_name}': {problem}", field_name)
