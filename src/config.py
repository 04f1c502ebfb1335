"""
Configuration module for the CTFd manager.

Loads configuration from environment variables once at startup.
"""

import os
from dataclasses import dataclass, field
from typing import Optional


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() in ("true", "1", "yes")


@dataclass
class ClusterConfig:
    """Kubernetes API access. Defaults to the in-cluster service account."""

    namespace: str = "default"
    api_url: Optional[str] = None
    token: Optional[str] = field(default=None, repr=False)  # Never log token
    ca_file: Optional[str] = None
    verify_ssl: bool = True

    @classmethod
    def from_env(cls):
        """Load from environment variables."""
        return cls(
            namespace=os.getenv("NAMESPACE", "default"),
            api_url=os.getenv("KUBERNETES_API_URL") or None,
            token=os.getenv("KUBERNETES_TOKEN") or None,
            ca_file=os.getenv("KUBERNETES_CA_FILE") or None,
            verify_ssl=_env_bool("KUBERNETES_VERIFY_SSL", "true"),
        )


@dataclass
class CTFdConfig:
    url: str = "http://localhost:8000"

    @classmethod
    def from_env(cls):
        """Load from environment variables."""
        return cls(url=os.getenv("CTFD_URL", "http://localhost:8000"))


@dataclass
class GitHubConfig:
    """Repository holding challenge sources and attachments."""

    token: str = field(default="", repr=False)
    user: str = ""
    repo: str = ""
    branch: str = "main"
    api_url: str = "https://api.github.com"

    @classmethod
    def from_env(cls):
        """Load from environment variables."""
        return cls(
            token=os.getenv("GITHUB_TOKEN", ""),
            user=os.getenv("GITHUB_USER", ""),
            repo=os.getenv("GITHUB_REPO", ""),
            branch=os.getenv("GITHUB_BRANCH", "main"),
            api_url=os.getenv("GITHUB_API_URL", "https://api.github.com"),
        )


@dataclass
class APIConfig:
    """HTTP API server configuration."""

    host: str = "0.0.0.0"
    port: int = 8080
    password: str = field(default="", repr=False)
    version: str = "0.0.0"
    log_level: str = "INFO"

    @classmethod
    def from_env(cls):
        """Load from environment variables."""
        password = os.getenv("PASSWORD", "").strip()
        if not password:
            raise ValueError(
                "PASSWORD environment variable must be set. "
                "The API password cannot be empty."
            )

        return cls(
            host=os.getenv("API_HOST", "0.0.0.0"),
            port=int(os.getenv("API_PORT", "8080")),
            password=password,
            version=os.getenv("VERSION", "0.0.0"),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
        )


@dataclass
class ControllerConfig:
    """Watch loop configuration."""

    backoff_enabled: bool = False
    backoff_base_delay: float = 1.0  # seconds
    backoff_max_delay: float = 60.0  # seconds
    backoff_jitter_factor: float = 0.1  # ±10% jitter
    max_connect_attempts: int = 5
    watch_timeout_seconds: Optional[int] = None

    @classmethod
    def from_env(cls):
        """Load from environment variables."""
        timeout = os.getenv("WATCH_TIMEOUT_SECONDS")
        return cls(
            backoff_enabled=_env_bool("WATCH_BACKOFF_ENABLED"),
            backoff_base_delay=float(os.getenv("WATCH_BACKOFF_BASE_DELAY", "1")),
            backoff_max_delay=float(os.getenv("WATCH_BACKOFF_MAX_DELAY", "60")),
            backoff_jitter_factor=float(
                os.getenv("WATCH_BACKOFF_JITTER_FACTOR", "0.1")
            ),
            max_connect_attempts=int(os.getenv("WATCH_MAX_CONNECT_ATTEMPTS", "5")),
            watch_timeout_seconds=int(timeout) if timeout else None,
        )


@dataclass
class Config:
    """Main configuration object."""

    cluster: ClusterConfig
    ctfd: CTFdConfig
    github: GitHubConfig
    api: APIConfig
    controller: ControllerConfig

    @classmethod
    def from_env(cls):
        """Load all configuration from environment variables."""
        return cls(
            cluster=ClusterConfig.from_env(),
            ctfd=CTFdConfig.from_env(),
            github=GitHubConfig.from_env(),
            api=APIConfig.from_env(),
            controller=ControllerConfig.from_env(),
        )

    @classmethod
    def default(cls):
        """Return default configuration."""
        return cls(
            cluster=ClusterConfig(),
            ctfd=CTFdConfig(),
            github=GitHubConfig(),
            api=APIConfig(),
            controller=ControllerConfig(),
        )


# Global config instance
config: Optional[Config] = None


def load_config() -> Config:
    """Load configuration (singleton pattern)."""
    global config
    if config is None:
        config = Config.from_env()
    return config


def get_config() -> Config:
    """Get the current configuration."""
    if config is None:
        return load_config()
    return config


def reset_config() -> None:
    """Reset configuration (mainly for testing)."""
    global config
    config = None
