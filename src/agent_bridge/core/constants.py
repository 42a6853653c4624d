"""
Constants and configuration for Agent Bridge.
Centralizes all magic numbers and configuration values.
Includes Pydantic validation for environment variables.
"""

from __future__ import annotations

import os
import threading

from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic_settings.sources import (
    DotEnvSettingsSource,
    PydanticBaseSettingsSource,
)

# ============================================================================
# Project Paths
# ============================================================================

#: Project root directory (parent of src/)
PROJECT_ROOT = Path(__file__).parent.parent.parent.parent

#: Default directory for rotating JSON logs
DEFAULT_LOG_DIR = PROJECT_ROOT / "logs"

# ============================================================================
# Agent Binary & Resource Layout
# ============================================================================

#: Name of the agent executable inside the tools directory (or on PATH)
AGENT_BINARY_NAME = "opencode"

#: Helper binary used to provision the automation browser
BROWSER_HELPER_BINARY_NAME = "latchkey"

#: Directory (under a resource root) holding bundled native tools
NATIVE_TOOLS_DIRNAME = "native_tools"

#: Directory (under a resource root) the agent scopes its file operations to
WORKSPACE_DIRNAME = "opencode_workspace"

#: Browser-automation cache directory (under the tools directory)
BROWSERS_DIRNAME = "playwright_browsers"

# ============================================================================
# Environment Variable Names
# ============================================================================

ENV_PATH = "PATH"
ENV_BROWSERS_PATH = "PLAYWRIGHT_BROWSERS_PATH"
ENV_SERVER_USERNAME = "OPENCODE_SERVER_USERNAME"
ENV_SERVER_PASSWORD = "OPENCODE_SERVER_PASSWORD"

# ============================================================================
# Server Topology
# ============================================================================

LOOPBACK_HOST = "127.0.0.1"

#: Username for loopback basic auth (password is generated per launch)
SERVER_USERNAME = "passepartout"
SERVER_PASSWORD_LENGTH = 64

HEALTH_ENDPOINT = "/global/health"
SESSION_ENDPOINT = "/session"
MESSAGE_ENDPOINT_TEMPLATE = "/session/{session_id}/message"
EVENT_ENDPOINT = "/event"

#: Header carrying the workspace directory for session routing
DIRECTORY_HEADER = "X-Opencode-Directory"

DEFAULT_SESSION_TITLE = "Chat Session"

HEALTH_MAX_ATTEMPTS = 60
HEALTH_INTERVAL_SECONDS = 0.5
HEALTH_LOG_EVERY = 10

#: Tool-using agents can run for minutes on a single prompt
REQUEST_TIMEOUT_SECONDS = 300.0
CONNECT_TIMEOUT_SECONDS = 10.0

#: Grace period for a killed child to be reaped
PROCESS_KILL_WAIT_SECONDS = 5.0

# ============================================================================
# Run Topology
# ============================================================================

RUN_OUTPUT_FORMAT = "json"

# ============================================================================
# Responses & Status Updates
# ============================================================================

NO_RESPONSE_PLACEHOLDER = "No response received."

#: Cap on response bodies embedded in error messages
ERROR_SNIPPET_LENGTH = 200

#: Cap on response bodies written to debug logs
LOG_BODY_PREVIEW_LENGTH = 500

SSE_FRAME_SEPARATOR = "\n\n"
SSE_DATA_PREFIX = "data: "

STATUS_THINKING = "Thinking..."
STATUS_REASONING = "Reasoning..."
STATUS_GENERATING = "Generating response..."
STATUS_RETRY_TEMPLATE = "Retrying (attempt {attempt})..."
STATUS_UNKNOWN_ERROR = "Unknown error"

#: Human-readable descriptions for well-known agent tools
TOOL_DESCRIPTIONS: dict[str, str] = {
    "read": "Reading file",
    "write": "Writing file",
    "edit": "Editing file",
    "bash": "Running command",
    "glob": "Searching files",
    "grep": "Searching content",
    "list_directory": "Listing directory",
    "web_search": "Searching the web",
    "web_fetch": "Fetching webpage",
}

#: Input keys probed (in order) for file-oriented tools
FILE_PATH_KEYS = ("file_path", "path", "filename")

COMMAND_SUMMARY_LENGTH = 50
GLOB_SUMMARY_LENGTH = 40
GREP_SUMMARY_LENGTH = 30
QUERY_SUMMARY_LENGTH = 40
URL_SUMMARY_LENGTH = 40

# ============================================================================
# Providers & Models
# ============================================================================

DEFAULT_PROVIDER_ID = "anthropic"
DEFAULT_MODEL_ID = "claude-sonnet-4-5-20250929"

#: Keychain service the secret store files provider keys under
KEYRING_SERVICE_NAME = "passepartout"

# ============================================================================
# Logging Configuration
# ============================================================================

LOG_MAX_SIZE = 10 * 1024 * 1024  # 10MB
LOG_BACKUP_COUNT_CONVERSATIONS = 5
LOG_BACKUP_COUNT_ERRORS = 3
LOG_PREVIEW_LENGTH = 50
SESSION_ID_LENGTH = 8

# ============================================================================
# Settings
# ============================================================================

Environment = Literal["development", "production", "test"]
Topology = Literal["server", "run"]

_ENV_PREFIX = "AGENT_BRIDGE_"


def _get_env_files() -> list[Path]:
    """Return dotenv files that exist, lowest priority first."""
    env_name = os.getenv(f"{_ENV_PREFIX}APP_ENV", "development").lower()
    candidates = [
        PROJECT_ROOT / ".env",
        PROJECT_ROOT / f".env.{env_name}",
        PROJECT_ROOT / ".env.local",
    ]
    return [p for p in candidates if p.exists()]


class Settings(BaseSettings):
    """Environment settings for the agent bridge.

    Configuration priority (highest to lowest):
    1. Values passed to Settings() constructor
    2. Environment variables prefixed with ``AGENT_BRIDGE_``
    3. .env.local > .env.{APP_ENV} > .env (dotenv files, last wins)
    """

    app_env: Environment = Field(default="development", description="Application environment")
    debug: bool = Field(default=False, description="Enable debug logging")

    # Agent process
    topology: Topology = Field(default="server", description="'server' (persistent HTTP) or 'run' (per-call CLI)")
    binary_name: str = Field(default=AGENT_BINARY_NAME, description="Agent executable name")
    resource_root: Path | None = Field(default=None, description="Bundled resource root (production layout)")
    dev_root: Path | None = Field(default=None, description="Project root used when resources are not bundled")

    # Startup and request timing
    health_max_attempts: int = Field(default=HEALTH_MAX_ATTEMPTS, ge=1, description="Health check attempts")
    health_interval: float = Field(
        default=HEALTH_INTERVAL_SECONDS, ge=0.0, description="Delay between health checks (seconds)"
    )
    request_timeout: float = Field(
        default=REQUEST_TIMEOUT_SECONDS, gt=0.0, description="Prompt request timeout (seconds)"
    )
    connect_timeout: float = Field(default=CONNECT_TIMEOUT_SECONDS, gt=0.0, description="Connect timeout (seconds)")

    # Model selection defaults for the CLI
    default_provider: str = Field(default=DEFAULT_PROVIDER_ID, description="Default provider id")
    default_model: str = Field(default=DEFAULT_MODEL_ID, description="Default model id")

    # Logging
    http_request_logging: bool = Field(default=False, description="Enable HTTP request/response logging")
    enable_content_logging: bool = Field(default=False, description="Log (redacted) message content")
    log_dir: Path = Field(default=DEFAULT_LOG_DIR, description="Directory for JSONL log files")

    model_config = SettingsConfigDict(
        env_prefix=_ENV_PREFIX,
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """Env vars override dotenv files; constructor values override both."""
        dotenv_source = DotEnvSettingsSource(
            settings_cls,
            env_file=_get_env_files(),
            env_file_encoding="utf-8",
        )
        return (init_settings, env_settings, dotenv_source)

    @field_validator("app_env", mode="before")
    @classmethod
    def validate_app_env(cls, v: str | None) -> str:
        """Validate and normalize APP_ENV value."""
        if v is None:
            return "development"
        normalized = str(v).lower()
        if normalized not in ("development", "production", "test"):
            raise ValueError(f"app_env must be 'development', 'production', or 'test', got '{v}'")
        return normalized

    @field_validator("topology", mode="before")
    @classmethod
    def validate_topology(cls, v: str | None) -> str:
        """Validate and normalize the process topology."""
        if v is None:
            return "server"
        normalized = str(v).lower()
        if normalized not in ("server", "run"):
            raise ValueError(f"topology must be 'server' or 'run', got '{v}'")
        return normalized

    @field_validator("binary_name")
    @classmethod
    def validate_binary_name(cls, v: str) -> str:
        if not v or os.sep in v:
            raise ValueError("binary_name must be a bare executable name")
        return v

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.app_env == "development"

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.app_env == "production"


# ============================================================================
# Settings Management (Thread-safe)
# ============================================================================


class _SettingsManager:
    """Thread-safe settings singleton.

    Uses a class to avoid global statement warnings from linters.
    """

    __slots__ = ("_instance", "_lock")

    def __init__(self) -> None:
        self._instance: Settings | None = None
        self._lock = threading.Lock()

    def get(self) -> Settings:
        """Get the cached settings instance, loading it on first use.

        Raises:
            ValueError: If configuration is invalid.
        """
        if self._instance is not None:
            return self._instance

        with self._lock:
            # Double-check after acquiring lock
            if self._instance is None:
                self._instance = Settings()
            return self._instance

    def reload(self) -> Settings:
        """Force reload settings from the environment."""
        with self._lock:
            self._instance = Settings()
            return self._instance

    def clear(self) -> None:
        """Clear cached settings instance."""
        with self._lock:
            self._instance = None


# Module-level singleton manager
_settings_manager = _SettingsManager()


def get_settings() -> Settings:
    """Get validated settings, cached after the first call.

    Returns:
        Validated Settings instance.

    Raises:
        ValueError: If required configuration is missing or invalid.
    """
    return _settings_manager.get()


def reload_settings() -> Settings:
    """Force reload settings from environment files."""
    return _settings_manager.reload()


def clear_settings_cache() -> None:
    """Clear cached settings instance.

    Primarily useful for testing to ensure fresh settings on each test.
    """
    _settings_manager.clear()
