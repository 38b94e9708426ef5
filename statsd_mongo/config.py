"""
Backend configuration.

Built once at startup, either from the statsd config mapping handed to the
backend or from environment variables (optionally seeded from a `.env` file).
"""

import json
import os
from pathlib import Path
from typing import Any, Mapping

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from statsd_mongo.errors import ConfigurationError


DEFAULT_MONGO_URL = "mongodb://127.0.0.1:27017"
DEFAULT_NAMESPACE = "statsd"
DEFAULT_FLUSH_INTERVAL_MS = 10000
DEFAULT_MAX_DOCUMENTS = 2160
DEFAULT_DOCUMENT_SIZE = 100


class BackendConfig(BaseModel):
    """Immutable backend configuration."""

    model_config = ConfigDict(frozen=True)

    debug: bool = Field(default=False)
    flush_rate: int = Field(default=DEFAULT_FLUSH_INTERVAL_MS // 1000, description="Flush interval in seconds")
    max_documents: int = Field(default=DEFAULT_MAX_DOCUMENTS, gt=0, description="Max documents per capped collection")
    document_size: int = Field(default=DEFAULT_DOCUMENT_SIZE, gt=0, description="Estimated bytes per document")
    use_prefix: bool = Field(default=True, description="Route by the first segment of the metric name")
    fallback_namespace: str = Field(default=DEFAULT_NAMESPACE)
    mongo_url: str = Field(default=DEFAULT_MONGO_URL)
    collection_options: dict[str, Any] = Field(default_factory=dict)

    # Pipeline tuning
    serialize_connects: bool = Field(default=True, description="One connect attempt at a time across all namespaces")
    max_concurrent_inserts: int = Field(default=100, gt=0)
    connect_timeout_ms: int = Field(default=3000, gt=0)

    @model_validator(mode="after")
    def _check_fallback_namespace(self) -> "BackendConfig":
        if not self.use_prefix and not self.fallback_namespace:
            raise ValueError("fallback_namespace must be set when use_prefix is False")
        return self

    @property
    def collection_size(self) -> int:
        """Capped collection size in bytes."""
        return self.document_size * self.max_documents

    @classmethod
    def from_statsd(cls, config: Mapping[str, Any]) -> "BackendConfig":
        """
        Build from a statsd backend config mapping.

        Recognised keys: debug, flushInterval (ms), mongoUrl, mongoMax,
        mongoSize, mongoPrefix, mongoName, mongoCollectionOptions,
        mongoSerializeConnects, mongoMaxConcurrency.

        Raises:
            ConfigurationError: prefix routing disabled without a name, or
                any other invalid value
        """
        # mongoPrefix only counts when it is an actual bool
        prefix = config.get("mongoPrefix")
        use_prefix = prefix if isinstance(prefix, bool) else True

        name = config.get("mongoName")
        if not use_prefix and not (isinstance(name, str) and name):
            raise ConfigurationError("mongoPrefix is false, mongoName must be set.")

        values: dict[str, Any] = {
            "debug": bool(config.get("debug", False)),
            "use_prefix": use_prefix,
            "fallback_namespace": name or DEFAULT_NAMESPACE,
            "mongo_url": config.get("mongoUrl") or DEFAULT_MONGO_URL,
        }
        if isinstance(config.get("mongoSerializeConnects"), bool):
            values["serialize_connects"] = config["mongoSerializeConnects"]

        try:
            values["collection_options"] = dict(config.get("mongoCollectionOptions") or {})
            values["flush_rate"] = int(int(config.get("flushInterval", DEFAULT_FLUSH_INTERVAL_MS)) / 1000)
            if config.get("mongoMax"):
                values["max_documents"] = int(config["mongoMax"])
            if config.get("mongoSize"):
                values["document_size"] = int(config["mongoSize"])
            if config.get("mongoMaxConcurrency"):
                values["max_concurrent_inserts"] = int(config["mongoMaxConcurrency"])
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid setting: {e}") from e

        return _build(values)


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return value.lower() in ("1", "true", "yes", "on")


def _build(values: dict[str, Any]) -> BackendConfig:
    try:
        return BackendConfig(**values)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid backend configuration: {e}", detail=e.errors()) from e


def load_config(env_file: str | Path | None = None) -> BackendConfig:
    """
    Load configuration from the environment.

    Priority:
    1. Environment variables
    2. .env file
    3. Defaults

    Args:
        env_file: .env path, defaults to `.env` in the working directory

    Returns:
        BackendConfig

    Example:
        ```python
        from statsd_mongo.config import load_config

        config = load_config()
        print(config.mongo_url, config.flush_rate)
        ```
    """
    if env_file is None:
        env_file = Path.cwd() / ".env"

    if Path(env_file).exists():
        load_dotenv(env_file)

    options_raw = os.getenv("STATSD_MONGO_COLLECTION_OPTIONS", "")
    try:
        collection_options = json.loads(options_raw) if options_raw else {}
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"STATSD_MONGO_COLLECTION_OPTIONS is not valid JSON: {e}") from e

    try:
        values = {
            "debug": _env_bool("STATSD_MONGO_DEBUG", False),
            "flush_rate": int(os.getenv("STATSD_FLUSH_INTERVAL", str(DEFAULT_FLUSH_INTERVAL_MS))) // 1000,
            "max_documents": int(os.getenv("STATSD_MONGO_MAX", str(DEFAULT_MAX_DOCUMENTS))),
            "document_size": int(os.getenv("STATSD_MONGO_SIZE", str(DEFAULT_DOCUMENT_SIZE))),
            "use_prefix": _env_bool("STATSD_MONGO_PREFIX", True),
            "fallback_namespace": os.getenv("STATSD_MONGO_NAME", DEFAULT_NAMESPACE),
            "mongo_url": os.getenv("STATSD_MONGO_URL", DEFAULT_MONGO_URL),
            "collection_options": collection_options,
            "serialize_connects": _env_bool("STATSD_MONGO_SERIALIZE_CONNECTS", True),
            "max_concurrent_inserts": int(os.getenv("STATSD_MONGO_MAX_CONCURRENCY", "100")),
            "connect_timeout_ms": int(os.getenv("STATSD_MONGO_CONNECT_TIMEOUT_MS", "3000")),
        }
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Invalid numeric setting: {e}") from e

    return _build(values)
