"""Client configuration loaded from environment variables.

Only endpoints, timeouts and pacing live here. Credentials are supplied by
the caller at runtime and are never read from or written to disk.
"""

from pydantic import Field
from pydantic_settings import BaseSettings


class PortalConfig(BaseSettings):
    """Gateway and portal settings loaded from environment variables.

    Settings are loaded from ``SECONDCLASS_*`` environment variables with
    sensible defaults. For local development, create a .env file in the
    project root.
    """

    # Web-VPN gateway (Sangfor-style /por/ endpoints)
    gateway_url: str = Field(
        default="https://webvpn.cuit.edu.cn",
        description="Web-VPN gateway base URL",
    )

    # Second classroom portal, reachable only through the gateway
    portal_url: str = Field(
        default="http://ekt-cuit-edu-cn.webvpn.cuit.edu.cn:8118",
        description="Second classroom portal base URL (host and port)",
    )
    placeholder_password: str = Field(
        default="123456",
        description="Password field sent to the portal login endpoint",
    )
    page_size: int = Field(
        default=50,
        description="Number of open activities requested per listing",
    )

    # Transport
    timeout_seconds: float = Field(
        default=15.0,
        description="HTTP timeout for every gateway and portal request",
    )

    # Bulk operations
    throttle_seconds: float = Field(
        default=0.0,
        description="Pause before each activity in bulk operations",
    )

    # Caching
    user_cache_ttl_seconds: float = Field(
        default=0.0,
        description="Age after which cached user info is refetched (0 = never stale)",
    )

    # Logging
    log_json: bool = Field(
        default=False,
        description="Output logs in JSON format (for production)",
    )
    log_level: str = Field(
        default="INFO",
        description="Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )

    model_config = {
        "env_prefix": "SECONDCLASS_",
        "case_sensitive": False,
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }


# Singleton pattern
_config: PortalConfig | None = None


def get_config() -> PortalConfig:
    """Get the client configuration singleton.

    Returns:
        PortalConfig: Client configuration instance
    """
    global _config
    if _config is None:
        _config = PortalConfig()
    return _config
