"""Second classroom portal automation through the web-VPN gateway.

GatewaySession establishes the web-VPN session, PortalClient layers the portal
bearer token on top, and ActivityAutomator drives bulk sign-up and check-in.
"""

from secondclass.automator import ActivityAutomator
from secondclass.client import ClientState, PortalClient
from secondclass.config import PortalConfig, get_config
from secondclass.errors import (
    ApplicationError,
    AuthError,
    NetworkError,
    NotFoundError,
    ProtocolError,
    SecondClassError,
)
from secondclass.models import (
    Activity,
    ActivityStatus,
    Credentials,
    Score,
    SignRecord,
    SignUpResult,
    UserInfo,
)
from secondclass.session import GatewaySession

__all__ = [
    "ActivityAutomator",
    "PortalClient",
    "ClientState",
    "GatewaySession",
    "PortalConfig",
    "get_config",
    "Credentials",
    "Activity",
    "ActivityStatus",
    "UserInfo",
    "SignRecord",
    "SignUpResult",
    "Score",
    "SecondClassError",
    "NetworkError",
    "AuthError",
    "ProtocolError",
    "ApplicationError",
    "NotFoundError",
]
