# Copyright 2024-2025 Amiable Development
# SPDX-License-Identifier: Apache-2.0

"""
Configuration for session recall.

This module provides:
- RecallConfig dataclass with retrieval, cache and persistence settings
- load_config() to parse the ``recall:`` section of a YAML file

Invalid values in the file never raise: wrong types fall back to the
default and numbers are clamped into their valid range.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, List, Optional

import yaml

from session_recall.memory.retrieval.fusion import FusionMethod
from session_recall.memory.retrieval.hybrid import SearchMode
from session_recall.memory.retrieval.vector_index import DistanceMetric

# Bounds applied to values read from config files
MAX_DIMENSIONS = 65536
MAX_CONTEXT_MESSAGES = 50
MIN_TTL_SECONDS = 1

DEFAULT_TEXT_FIELDS = ["content"]


@dataclass
class RecallConfig:
    """Configuration for retrieval memory.

    Attributes:
        dimensions: Embedding vector length for new session indexes.
        distance_metric: Vector distance metric.
        ttl_seconds: Idle time before a session is evicted from the cache.
        max_context_messages: Default number of hits returned by get_context.
        min_similarity: Minimum similarity for vector mode hits.
        min_score: Minimum raw (keyword) or fused (hybrid) score for hits.
        search_mode: vector, keyword or hybrid.
        fusion_method: rrf or weighted, used in hybrid mode.
        alpha: Vector weight for weighted fusion.
        rrf_k: Reciprocal rank fusion constant.
        persist: Whether sessions are written to a persistence store.
        text_fields: Document fields indexed for keyword search.
        scope: Default scope half of the session key.
        store_dir: Directory for the JSON file store, if any.
    """

    dimensions: int = 768
    distance_metric: DistanceMetric = DistanceMetric.COSINE
    ttl_seconds: float = 3600.0
    max_context_messages: int = 10
    min_similarity: float = 0.5
    min_score: float = 0.0
    search_mode: SearchMode = SearchMode.HYBRID
    fusion_method: FusionMethod = FusionMethod.RRF
    alpha: float = 0.5
    rrf_k: int = 60
    persist: bool = False
    text_fields: List[str] = field(default_factory=lambda: DEFAULT_TEXT_FIELDS.copy())
    scope: str = "default"
    store_dir: Optional[Path] = None


def _clamp(value: Any, default: float, low: float, high: float) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return default
    return max(low, min(float(value), high))


def _enum(enum_cls: Any, value: Any, default: Any) -> Any:
    try:
        return enum_cls(str(value).lower())
    except ValueError:
        return default


def load_config(path: Path) -> RecallConfig:
    """Load configuration from the ``recall:`` section of a YAML file.

    Args:
        path: Path to the YAML file.

    Returns:
        RecallConfig with settings from the file or defaults.
    """
    config_path = Path(path)

    if not config_path.exists():
        return RecallConfig()

    try:
        with open(config_path, "r") as f:
            data = yaml.safe_load(f) or {}
    except (yaml.YAMLError, IOError):
        return RecallConfig()

    if not isinstance(data, dict):
        return RecallConfig()

    section = data.get("recall", {})
    if not isinstance(section, dict):
        return RecallConfig()

    defaults = RecallConfig()

    text_fields = section.get("text_fields", defaults.text_fields)
    if not isinstance(text_fields, list):
        text_fields = defaults.text_fields
    else:
        text_fields = [f for f in text_fields if isinstance(f, str)]

    scope = section.get("scope", defaults.scope)
    if not isinstance(scope, str) or not scope.strip():
        scope = defaults.scope

    store_dir = section.get("store_dir")
    if isinstance(store_dir, str) and store_dir:
        # Relative store paths resolve against the config file location
        store_path: Optional[Path] = Path(store_dir).expanduser()
        if not store_path.is_absolute():
            store_path = config_path.parent / store_path
    else:
        store_path = None

    persist = section.get("persist", defaults.persist)
    if not isinstance(persist, bool):
        persist = defaults.persist

    return RecallConfig(
        dimensions=int(_clamp(section.get("dimensions"), defaults.dimensions, 1, MAX_DIMENSIONS)),
        distance_metric=_enum(DistanceMetric, section.get("distance_metric"), defaults.distance_metric),
        ttl_seconds=_clamp(section.get("ttl_seconds"), defaults.ttl_seconds, MIN_TTL_SECONDS, float("inf")),
        max_context_messages=int(
            _clamp(section.get("max_context_messages"), defaults.max_context_messages, 1, MAX_CONTEXT_MESSAGES)
        ),
        min_similarity=_clamp(section.get("min_similarity"), defaults.min_similarity, -1.0, 1.0),
        min_score=_clamp(section.get("min_score"), defaults.min_score, 0.0, float("inf")),
        search_mode=_enum(SearchMode, section.get("search_mode"), defaults.search_mode),
        fusion_method=_enum(FusionMethod, section.get("fusion_method"), defaults.fusion_method),
        alpha=_clamp(section.get("alpha"), defaults.alpha, 0.0, 1.0),
        rrf_k=int(_clamp(section.get("rrf_k"), defaults.rrf_k, 0, 10000)),
        persist=persist,
        text_fields=text_fields or DEFAULT_TEXT_FIELDS.copy(),
        scope=scope,
        store_dir=store_path,
    )
