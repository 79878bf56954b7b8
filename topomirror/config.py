"""
Configuration for the graph store and the topology controller.

All settings are read from environment variables. The CLI loads a .env file
with python-dotenv before anything here is called.
"""

import os
from dataclasses import dataclass


DEFAULT_NEO4J_URI = "bolt://127.0.0.1:7687"
DEFAULT_NEO4J_USER = "neo4j"
DEFAULT_NEO4J_DATABASE = "neo4j"

ALLOWED_SCHEMES = ("bolt", "bolt+s", "bolt+ssc", "neo4j", "neo4j+s", "neo4j+ssc")

DEFAULT_ONOS_URL = "http://127.0.0.1:8181"
DEFAULT_ONOS_USER = "onos"
DEFAULT_ONOS_PASSWORD = "rocks"

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


class GraphConfigError(Exception):
    """Raised when configuration is invalid or missing."""
    pass


def _uri_scheme(uri: str) -> str:
    return uri.split("://")[0] if "://" in uri else "no scheme"


def _env_int(name: str, default: int, minimum: int = 0) -> int:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        value = int(raw)
    except ValueError as e:
        raise GraphConfigError(f"{name} must be an integer, got: {raw!r}") from e
    if value < minimum:
        raise GraphConfigError(f"{name} must be >= {minimum}, got: {value}")
    return value


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        value = float(raw)
    except ValueError as e:
        raise GraphConfigError(f"{name} must be a number, got: {raw!r}") from e
    if value < 0:
        raise GraphConfigError(f"{name} must not be negative, got: {value}")
    return value


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    value = raw.strip().lower()
    if value in _TRUE_VALUES:
        return True
    if value in _FALSE_VALUES:
        return False
    raise GraphConfigError(f"{name} must be a boolean, got: {raw!r}")


@dataclass(frozen=True)
class GraphConfig:
    """Connection and sync settings for the graph store."""
    uri: str
    user: str
    password: str
    database: str = DEFAULT_NEO4J_DATABASE
    max_retries: int = 3
    retry_delay: float = 0.5
    workers: int = 1
    persist_host_attributes: bool = False
    ensure_constraints: bool = True

    def __post_init__(self):
        if not self.uri:
            raise GraphConfigError("Graph store URI is empty")
        if _uri_scheme(self.uri) not in ALLOWED_SCHEMES:
            raise GraphConfigError(
                f"URI scheme must be one of {', '.join(ALLOWED_SCHEMES)}. "
                f"Got: {_uri_scheme(self.uri)}://"
            )
        if not self.user:
            raise GraphConfigError("Graph store user is empty")
        if not self.password:
            raise GraphConfigError("Graph store password is empty")
        if self.max_retries < 0:
            raise GraphConfigError("max_retries must not be negative")
        if self.workers < 1:
            raise GraphConfigError("workers must be at least 1")

    @classmethod
    def from_env(cls) -> "GraphConfig":
        """
        Read graph store configuration from environment variables.

        Raises:
            GraphConfigError: If required env vars are missing or invalid
        """
        password = os.getenv("NEO4J_PASSWORD")
        if not password:
            raise GraphConfigError("NEO4J_PASSWORD environment variable is not set")

        return cls(
            uri=os.getenv("NEO4J_URI") or DEFAULT_NEO4J_URI,
            user=os.getenv("NEO4J_USER") or DEFAULT_NEO4J_USER,
            password=password,
            database=os.getenv("NEO4J_DATABASE") or DEFAULT_NEO4J_DATABASE,
            max_retries=_env_int("SYNC_MAX_RETRIES", 3),
            retry_delay=_env_float("SYNC_RETRY_DELAY", 0.5),
            workers=_env_int("SYNC_WORKERS", 1, minimum=1),
            persist_host_attributes=_env_bool("SYNC_PERSIST_HOST_ATTRIBUTES", False),
            ensure_constraints=_env_bool("SYNC_ENSURE_CONSTRAINTS", True),
        )

    def __repr__(self) -> str:
        return (f"GraphConfig(uri={self.uri!r}, user={self.user!r}, "
                f"database={self.database!r}, max_retries={self.max_retries}, "
                f"workers={self.workers})")


@dataclass(frozen=True)
class OnosConfig:
    """Settings for the controller REST API."""
    url: str = DEFAULT_ONOS_URL
    user: str = DEFAULT_ONOS_USER
    password: str = DEFAULT_ONOS_PASSWORD
    timeout: float = 10.0

    @classmethod
    def from_env(cls) -> "OnosConfig":
        url = os.getenv("ONOS_URL") or DEFAULT_ONOS_URL
        if _uri_scheme(url) not in ("http", "https"):
            raise GraphConfigError(f"ONOS_URL must be an http(s) URL. Got: {url}")
        return cls(
            url=url.rstrip("/"),
            user=os.getenv("ONOS_USER") or DEFAULT_ONOS_USER,
            password=os.getenv("ONOS_PASSWORD") or DEFAULT_ONOS_PASSWORD,
            timeout=_env_float("ONOS_TIMEOUT", 10.0),
        )


def get_graph_config() -> GraphConfig:
    """Shortcut for GraphConfig.from_env()."""
    return GraphConfig.from_env()


def is_configured() -> bool:
    """Check if graph store environment variables are configured."""
    try:
        get_graph_config()
        return True
    except GraphConfigError:
        return False
