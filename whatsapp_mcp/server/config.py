"""Configuration management with validation.

This module provides centralized configuration for the WhatsApp MCP server with:
- YAML file support (whatsapp_mcp.yml)
- Environment variable overrides
- Type-safe, validated configuration classes

Configuration precedence (highest to lowest):
1. Environment variables (MCP_*, WHATSAPP_*)
2. YAML config file
3. Default values

Example whatsapp_mcp.yml:
    server:
      name: "whatsapp-mcp"
      transport: "http"
      log_level: "INFO"

    http:
      host: "localhost"
      port: 3000

    whatsapp:
      session_name: "whatsapp-mcp-session"
      auth_timeout_ms: 60000
      client_factory: "my_bridge.clients:build_client"

Usage:
    config = load_config()
    if config.server.transport == "http":
        port = config.http.port
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILE = "whatsapp_mcp.yml"
VALID_LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
VALID_TRANSPORTS = ["stdio", "http"]


def _as_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class ServerConfig:
    """Server configuration.

    Attributes:
        name: MCP server name announced during initialization
        version: MCP server version announced during initialization
        transport: Transport mode: "stdio" | "http"
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional log file path (None = stderr only)
    """

    name: str = "whatsapp-mcp"
    version: str = "1.0.0"
    transport: str = "stdio"
    log_level: str = "INFO"
    log_file: str | None = None

    def __post_init__(self) -> None:
        """Validate configuration."""
        if not self.name:
            msg = "name must not be empty"
            raise ValueError(msg)

        if self.transport not in VALID_TRANSPORTS:
            msg = f"transport must be one of {VALID_TRANSPORTS}, got '{self.transport}'"
            raise ValueError(msg)

        if self.log_level.upper() not in VALID_LOG_LEVELS:
            msg = f"log_level must be one of {VALID_LOG_LEVELS}, got '{self.log_level}'"
            raise ValueError(msg)

        object.__setattr__(self, "log_level", self.log_level.upper())


@dataclass(frozen=True)
class HTTPConfig:
    """Streamable HTTP transport configuration.

    Attributes:
        host: Bind address
        port: Bind port
        json_response: Answer POSTs with plain JSON instead of SSE streams
        public_url: Base URL advertised in QR tool output (default: http://host:port)
        cors_origins: Allowed CORS origins
        max_events_per_session: Replay history kept per session, across its streams (0 = unbounded)
    """

    host: str = "localhost"
    port: int = 3000
    json_response: bool = False
    public_url: str | None = None
    cors_origins: tuple[str, ...] = ("*",)
    max_events_per_session: int = 1000

    def __post_init__(self) -> None:
        """Validate configuration."""
        if not (0 < self.port < 65536):
            msg = f"port must be 1-65535, got {self.port}"
            raise ValueError(msg)

        if self.max_events_per_session < 0:
            msg = f"max_events_per_session must be >= 0, got {self.max_events_per_session}"
            raise ValueError(msg)

        object.__setattr__(self, "cors_origins", tuple(self.cors_origins))

    @property
    def base_url(self) -> str:
        return self.public_url or f"http://{self.host}:{self.port}"


@dataclass(frozen=True)
class WhatsAppConfig:
    """WhatsApp session configuration.

    Attributes:
        session_name: Name of the persisted WhatsApp Web session
        auth_timeout_ms: Time box for client initialization in milliseconds
        client_factory: Import path of the client factory ("module:callable")
        print_qr: Print pairing QR codes to the terminal (stderr)
        reconnect_delay_seconds: Delay before auto-reconnect after a manual disconnect
        retry_backoff_seconds: Delay before retrying a failed reconnection
    """

    session_name: str = "whatsapp-mcp-session"
    auth_timeout_ms: int = 60000
    client_factory: str | None = None
    print_qr: bool = True
    reconnect_delay_seconds: float = 3.0
    retry_backoff_seconds: float = 10.0

    def __post_init__(self) -> None:
        """Validate configuration."""
        if not self.session_name:
            msg = "session_name must not be empty"
            raise ValueError(msg)

        if self.auth_timeout_ms <= 0:
            msg = f"auth_timeout_ms must be > 0, got {self.auth_timeout_ms}"
            raise ValueError(msg)

        if self.reconnect_delay_seconds < 0 or self.retry_backoff_seconds < 0:
            msg = "reconnect_delay_seconds and retry_backoff_seconds must be >= 0"
            raise ValueError(msg)

    @property
    def auth_timeout_seconds(self) -> float:
        return self.auth_timeout_ms / 1000


@dataclass(frozen=True)
class ObservabilityConfig:
    """Observability configuration.

    Attributes:
        structured_logging: Whether to use structured JSON logging
    """

    structured_logging: bool = False


@dataclass
class Config:
    """Root configuration object.

    Attributes:
        server: Server configuration
        http: HTTP transport configuration
        whatsapp: WhatsApp session configuration
        observability: Observability configuration
    """

    server: ServerConfig = field(default_factory=ServerConfig)
    http: HTTPConfig = field(default_factory=HTTPConfig)
    whatsapp: WhatsAppConfig = field(default_factory=WhatsAppConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)
    _config_path: Path | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert config to dictionary."""
        return {
            "server": {
                "name": self.server.name,
                "version": self.server.version,
                "transport": self.server.transport,
                "log_level": self.server.log_level,
                "log_file": self.server.log_file,
            },
            "http": {
                "host": self.http.host,
                "port": self.http.port,
                "json_response": self.http.json_response,
                "public_url": self.http.base_url,
                "cors_origins": list(self.http.cors_origins),
                "max_events_per_session": self.http.max_events_per_session,
            },
            "whatsapp": {
                "session_name": self.whatsapp.session_name,
                "auth_timeout_ms": self.whatsapp.auth_timeout_ms,
                "client_factory": self.whatsapp.client_factory,
                "print_qr": self.whatsapp.print_qr,
                "reconnect_delay_seconds": self.whatsapp.reconnect_delay_seconds,
                "retry_backoff_seconds": self.whatsapp.retry_backoff_seconds,
            },
            "observability": {
                "structured_logging": self.observability.structured_logging,
            },
        }


def _section(yaml_config: dict[str, Any], name: str, current: Any) -> dict[str, Any]:
    """Merge one YAML section over the current dataclass values (unknown keys ignored)."""
    section = yaml_config.get(name) or {}
    known = current.__dict__
    unknown = sorted(set(section) - set(known))
    if unknown:
        logger.warning("Ignoring unknown keys in '%s' config section: %s", name, unknown)
    return {**known, **{k: v for k, v in section.items() if k in known}}


def load_config(config_path: Path | None = None) -> Config:
    """Load configuration from YAML file and environment variables.

    Args:
        config_path: Optional path to config YAML file (default: ./whatsapp_mcp.yml)

    Returns:
        Config object

    Raises:
        ValueError: If the merged configuration is invalid

    Environment variables:
        MCP_SERVER_NAME: MCP server name
        MCP_SERVER_VERSION: MCP server version
        MCP_TRANSPORT: Transport mode (stdio/http)
        MCP_HOST: HTTP bind address
        MCP_PORT: HTTP bind port
        MCP_LOG_LEVEL / LOG_LEVEL: Log level (DEBUG/INFO/WARNING/ERROR/CRITICAL)
        MCP_JSON_RESPONSE: Plain JSON responses on the HTTP transport (true/false)
        WHATSAPP_SESSION_NAME: WhatsApp session name
        WHATSAPP_AUTH_TIMEOUT: Initialization time box in milliseconds
        WHATSAPP_CLIENT_FACTORY: Client factory import path ("module:callable")
    """
    # Start with defaults
    config = Config()

    if config_path is None:
        config_path = Path(DEFAULT_CONFIG_FILE)

    if config_path.exists():
        logger.info("Loading configuration from %s", config_path)
        with open(config_path) as f:
            yaml_config = yaml.safe_load(f) or {}

        if not isinstance(yaml_config, dict):
            msg = f"Config file {config_path} must contain a mapping, got {type(yaml_config).__name__}"
            raise ValueError(msg)

        config.server = ServerConfig(**_section(yaml_config, "server", config.server))
        config.http = HTTPConfig(**_section(yaml_config, "http", config.http))
        config.whatsapp = WhatsAppConfig(**_section(yaml_config, "whatsapp", config.whatsapp))
        config.observability = ObservabilityConfig(
            **_section(yaml_config, "observability", config.observability)
        )
        config._config_path = config_path
        logger.info("Configuration loaded from %s", config_path)

    # Apply environment variable overrides (highest precedence)
    # Server config
    if os.getenv("MCP_SERVER_NAME"):
        config.server = ServerConfig(
            **{**config.server.__dict__, "name": os.getenv("MCP_SERVER_NAME")}
        )

    if os.getenv("MCP_SERVER_VERSION"):
        config.server = ServerConfig(
            **{**config.server.__dict__, "version": os.getenv("MCP_SERVER_VERSION")}
        )

    if os.getenv("MCP_TRANSPORT"):
        config.server = ServerConfig(
            **{**config.server.__dict__, "transport": os.getenv("MCP_TRANSPORT").lower()}
        )

    log_level = os.getenv("MCP_LOG_LEVEL") or os.getenv("LOG_LEVEL")
    if log_level:
        config.server = ServerConfig(**{**config.server.__dict__, "log_level": log_level})

    # HTTP config
    if os.getenv("MCP_HOST"):
        config.http = HTTPConfig(**{**config.http.__dict__, "host": os.getenv("MCP_HOST")})

    if os.getenv("MCP_PORT"):
        config.http = HTTPConfig(**{**config.http.__dict__, "port": int(os.getenv("MCP_PORT"))})

    if os.getenv("MCP_JSON_RESPONSE"):
        config.http = HTTPConfig(
            **{**config.http.__dict__, "json_response": _as_bool(os.getenv("MCP_JSON_RESPONSE"))}
        )

    # WhatsApp config
    if os.getenv("WHATSAPP_SESSION_NAME"):
        config.whatsapp = WhatsAppConfig(
            **{**config.whatsapp.__dict__, "session_name": os.getenv("WHATSAPP_SESSION_NAME")}
        )

    if os.getenv("WHATSAPP_AUTH_TIMEOUT"):
        config.whatsapp = WhatsAppConfig(
            **{
                **config.whatsapp.__dict__,
                "auth_timeout_ms": int(os.getenv("WHATSAPP_AUTH_TIMEOUT")),
            }
        )

    if os.getenv("WHATSAPP_CLIENT_FACTORY"):
        config.whatsapp = WhatsAppConfig(
            **{**config.whatsapp.__dict__, "client_factory": os.getenv("WHATSAPP_CLIENT_FACTORY")}
        )

    # Final validation (recreate objects to trigger __post_init__ validation)
    try:
        config.server = ServerConfig(**config.server.__dict__)
        config.http = HTTPConfig(**config.http.__dict__)
        config.whatsapp = WhatsAppConfig(**config.whatsapp.__dict__)
        config.observability = ObservabilityConfig(
            structured_logging=_as_bool(config.observability.structured_logging)
        )
    except ValueError as e:
        logger.exception("Configuration validation failed: %s", e)
        raise

    return config


# Global config instance (lazy-loaded)
_global_config: Config | None = None


def get_config() -> Config:
    """Get global config instance (singleton pattern).

    Returns:
        Config object
    """
    global _global_config

    if _global_config is None:
        _global_config = load_config()

    return _global_config


__all__ = [
    "Config",
    "HTTPConfig",
    "ObservabilityConfig",
    "ServerConfig",
    "WhatsAppConfig",
    "get_config",
    "load_config",
]
