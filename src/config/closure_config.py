"""
Annotation Closure Service Configuration

Loads configuration from an optional YAML file (config/closure.yaml or the
path in CLOSURE_CONFIG) and lets environment variables override it.
"""

import os
from dataclasses import dataclass, field, fields
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from domain.ontology_models import OntologySchema


class GraphBackendType(str, Enum):
    """Graph store implementation."""
    NEO4J = "neo4j"
    MEMORY = "memory"


@dataclass
class Neo4jConfig:
    """Neo4j connection configuration."""
    uri: str = "bolt://localhost:7687"
    username: str = "neo4j"
    password: str = "password"
    database: str = "neo4j"


@dataclass
class IndexConfig:
    """Closure index build settings."""
    tag_batch_size: int = 1000        # term ids labelled per write statement
    wave_size: int = 500              # term ids expanded per traversal read
    rebuild_concurrency: int = 4      # principals rebuilt at once by rebuild_all

    def validate(self) -> None:
        for name in ("tag_batch_size", "wave_size", "rebuild_concurrency"):
            if getattr(self, name) < 1:
                raise ValueError(f"index.{name} must be >= 1, got {getattr(self, name)}")


@dataclass
class ApiConfig:
    """HTTP surface settings."""
    gzip_minimum_size: int = 1024
    log_level: str = "INFO"


@dataclass
class ClosureServiceConfig:
    """Complete service configuration."""
    backend: GraphBackendType = GraphBackendType.NEO4J
    neo4j: Neo4jConfig = field(default_factory=Neo4jConfig)
    schema: OntologySchema = field(default_factory=OntologySchema)
    index: IndexConfig = field(default_factory=IndexConfig)
    api: ApiConfig = field(default_factory=ApiConfig)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ClosureServiceConfig":
        """Create config from dictionary (parsed YAML)."""
        backend = GraphBackendType(data.get("backend", "neo4j"))

        neo4j = Neo4jConfig(**data.get("neo4j", {})) if data.get("neo4j") else Neo4jConfig()

        # Unknown schema keys are an error rather than silently ignored
        schema_data = data.get("schema", {}) or {}
        known = {f.name for f in fields(OntologySchema)}
        unknown = set(schema_data) - known
        if unknown:
            raise ValueError(f"Unknown schema settings: {', '.join(sorted(unknown))}")
        schema = OntologySchema(**schema_data)

        index = IndexConfig(**data.get("index", {})) if data.get("index") else IndexConfig()
        index.validate()

        api = ApiConfig(**data.get("api", {})) if data.get("api") else ApiConfig()

        return cls(backend=backend, neo4j=neo4j, schema=schema, index=index, api=api)

    @classmethod
    def from_yaml(cls, path: Optional[str] = None) -> "ClosureServiceConfig":
        """Load config from YAML file."""
        if path is None:
            path = os.getenv("CLOSURE_CONFIG", "config/closure.yaml")

        config_path = Path(path)
        if not config_path.is_absolute():
            config_path = Path.cwd() / path

        if not config_path.exists():
            return cls()

        with open(config_path, "r") as f:
            data = yaml.safe_load(f) or {}

        return cls.from_dict(data)

    @classmethod
    def from_env(cls, path: Optional[str] = None) -> "ClosureServiceConfig":
        """
        Create config from environment variables.

        Environment variables override YAML config.
        """
        config = cls.from_yaml(path)

        if os.getenv("GRAPH_BACKEND"):
            config.backend = GraphBackendType(os.getenv("GRAPH_BACKEND").lower())

        if os.getenv("NEO4J_URI"):
            config.neo4j.uri = os.getenv("NEO4J_URI")

        if os.getenv("NEO4J_USERNAME"):
            config.neo4j.username = os.getenv("NEO4J_USERNAME")

        if os.getenv("NEO4J_PASSWORD"):
            config.neo4j.password = os.getenv("NEO4J_PASSWORD")

        if os.getenv("NEO4J_DATABASE"):
            config.neo4j.database = os.getenv("NEO4J_DATABASE")

        if os.getenv("CLOSURE_TAG_BATCH_SIZE"):
            config.index.tag_batch_size = int(os.getenv("CLOSURE_TAG_BATCH_SIZE"))

        if os.getenv("CLOSURE_WAVE_SIZE"):
            config.index.wave_size = int(os.getenv("CLOSURE_WAVE_SIZE"))

        if os.getenv("CLOSURE_REBUILD_CONCURRENCY"):
            config.index.rebuild_concurrency = int(os.getenv("CLOSURE_REBUILD_CONCURRENCY"))

        if os.getenv("GZIP_MINIMUM_SIZE"):
            config.api.gzip_minimum_size = int(os.getenv("GZIP_MINIMUM_SIZE"))

        if os.getenv("LOG_LEVEL"):
            config.api.log_level = os.getenv("LOG_LEVEL").upper()

        config.index.validate()
        return config


# Global config instance (lazy loaded)
_config: Optional[ClosureServiceConfig] = None


def get_closure_config() -> ClosureServiceConfig:
    """Get the global service configuration (lazy loaded)."""
    global _config
    if _config is None:
        _config = ClosureServiceConfig.from_env()
    return _config


def reload_config(path: Optional[str] = None) -> ClosureServiceConfig:
    """Reload configuration from file and environment."""
    global _config
    _config = ClosureServiceConfig.from_env(path)
    return _config
