"""PortalClient - second classroom portal API behind the web-VPN gateway.

Every call goes to the portal host through the gateway and carries:
  - header ``sdp-app-session``: the gateway session id (GatewaySession)
  - header ``Authorization: Bearer <token>``: except the login call itself
  - query ``sf_request_type=ajax``: marks the request as AJAX for the gateway

Responses are JSON with a literal success message (``"请求成功"``) instead of
meaningful HTTP status codes. Failure policy differs per operation and is kept
as the portal's automation depends on it:

  raise ApplicationError      fetch_user, list_activities, list_my_activities, sign_up
  raise NotFoundError         fetch_sign_record
  return the message string   check_in_out, fetch_score
"""

from enum import Enum
from time import monotonic
from typing import Any

import httpx

from secondclass.config import PortalConfig, get_config
from secondclass.errors import (
    ApplicationError,
    AuthError,
    NetworkError,
    NotFoundError,
)
from secondclass.logging import bind_account, get_logger
from secondclass.models import (
    Activity,
    Credentials,
    Score,
    SignRecord,
    SignUpResult,
    UserInfo,
)
from secondclass.session import CaptchaSolver, GatewaySession
from secondclass.utils import (
    decode_json,
    format_portal_time,
    is_success,
    keep_actionable,
    message_of,
    sign_times,
)

log = get_logger(__name__)

SESSION_HEADER = "sdp-app-session"
AJAX_MARKER = {"sf_request_type": "ajax"}


class ClientState(str, Enum):
    UNAUTHENTICATED = "unauthenticated"
    SESSION_ESTABLISHED = "session_established"
    TOKEN_ISSUED = "token_issued"


class PortalClient:
    """Second classroom portal client for one student.

    Usage:
        async with PortalClient(Credentials(account="2021...", password="...")) as client:
            await client.login(on_captcha=solve)
            activities = await client.list_activities()
    """

    LOGIN_PATH = "/api/login"
    USER_PATH = "/api/getLoginUser"
    ACTIVITIES_PATH = "/api/activityInfo/page"
    MY_ACTIVITIES_PATH = "/api/activityInfo/my"
    SIGN_UP_PATH = "/api/activityInfoSign/add"
    SIGN_RECORD_PATH = "/api/activityInfoSign/my"
    SIGN_EDIT_PATH = "/api/activityInfoSign/edit"
    SCORE_PATH = "/api/studentScore/appDataInfo"

    def __init__(
        self,
        credentials: Credentials,
        *,
        gateway: GatewaySession | None = None,
        http: httpx.AsyncClient | None = None,
        config: PortalConfig | None = None,
    ) -> None:
        self.credentials = credentials
        self.config = config or get_config()
        self.base_url = self.config.portal_url.rstrip("/")
        self.gateway = gateway or GatewaySession(
            credentials, http=http, config=self.config
        )
        self.state = ClientState.UNAUTHENTICATED
        self._token: str | None = None
        self._user: UserInfo | None = None
        self._user_fetched_at = 0.0

    @property
    def session_id(self) -> str | None:
        """Gateway session id, read through to the GatewaySession."""
        return self.gateway.session_id

    @property
    def token(self) -> str | None:
        return self._token

    @property
    def user(self) -> UserInfo | None:
        """Cached user info, None until fetched."""
        return self._user

    async def login(
        self,
        session_id: str | None = None,
        on_captcha: CaptchaSolver | None = None,
    ) -> "PortalClient":
        """Establish the gateway session, then exchange it for a bearer token.

        Args:
            session_id: Gateway session id to resume, if any.
            on_captcha: Async CAPTCHA solver handed to the gateway.

        Returns:
            This client, now in the TOKEN_ISSUED state.

        Raises:
            AuthError: Gateway refusal, or the portal rejected the login.
            ProtocolError: The portal answered with the gateway error page.
            NetworkError: Transport failure.
        """
        self.state = ClientState.UNAUTHENTICATED
        self._token = None
        self._user = None

        await self.gateway.login(session_id, on_captcha)
        self.state = ClientState.SESSION_ESTABLISHED

        body = await self._request(
            "POST",
            self.LOGIN_PATH,
            authorized=False,
            json={
                "account": self.credentials.account,
                # The portal trusts the gateway session and ignores this field
                "password": self.config.placeholder_password,
            },
        )
        if not is_success(body) or not body.get("data"):
            message = message_of(body)
            log.warning("portal_login_failed", message=message)
            raise AuthError(f"Portal login failed: {message}")

        self._token = str(body["data"])
        self.state = ClientState.TOKEN_ISSUED
        bind_account(self.credentials.account)
        log.info("portal_login_succeeded")
        return self

    async def fetch_user(self) -> UserInfo:
        """Fetch the logged-in user and refresh the cache."""
        body = self._ensure_success(await self._request("GET", self.USER_PATH))
        self._user = UserInfo.from_payload(body["data"])
        self._user_fetched_at = monotonic()
        log.debug("user_fetched", user_id=self._user.id)
        return self._user

    async def get_user(self) -> UserInfo:
        """Return cached user info if present and not stale, else fetch it."""
        if self._user is not None and not self._user_is_stale():
            return self._user
        return await self.fetch_user()

    def _user_is_stale(self) -> bool:
        ttl = self.config.user_cache_ttl_seconds
        return ttl > 0 and monotonic() - self._user_fetched_at > ttl

    async def list_activities(self) -> list[Activity]:
        """Open activities (first page), placeholders removed, portal order kept."""
        params = {
            "activityName": "",
            "activityStatus": "",
            "activityLx": "",
            "activityType": "",
            "pageSize": self.config.page_size,
        }
        body = self._ensure_success(
            await self._request("GET", self.ACTIVITIES_PATH, params=params)
        )
        rows = (body.get("data") or {}).get("rows") or []
        activities = [Activity.model_validate(row) for row in keep_actionable(rows)]
        log.info("activities_listed", total=len(rows), actionable=len(activities))
        return activities

    async def list_my_activities(self) -> list[Activity]:
        """Activities the student has joined, same filtering as list_activities."""
        body = self._ensure_success(await self._request("GET", self.MY_ACTIVITIES_PATH))
        rows = body.get("data") or []
        activities = [Activity.model_validate(row) for row in keep_actionable(rows)]
        log.info("my_activities_listed", total=len(rows), actionable=len(activities))
        return activities

    async def sign_up(self, activity: Activity) -> SignUpResult:
        """Register for an activity. ``result.code == "1"`` means success."""
        body = self._ensure_success(
            await self._request("POST", self.SIGN_UP_PATH, json={"activityId": activity.id})
        )
        return SignUpResult.model_validate(body.get("data") or {})

    async def fetch_sign_record(self, activity_id: str) -> SignRecord:
        """First sign record of the student for an activity.

        Raises:
            NotFoundError: The portal reported failure or returned no rows.
        """
        body = await self._request(
            "GET", self.SIGN_RECORD_PATH, params={"activityId": activity_id}
        )
        if not is_success(body):
            raise NotFoundError(message_of(body))
        rows = (body.get("data") or {}).get("rows") or []
        if not rows or rows[0] is None:
            raise NotFoundError(f"No sign record for activity {activity_id}")
        return SignRecord.from_row(rows[0])

    async def check_in_out(self, activity: Activity) -> dict[str, Any] | str:
        """Record check-in and check-out for an activity. Safe to repeat.

        Check-in is one hour after the activity start, check-out 100 seconds
        later.

        Returns:
            The portal response on success, or the portal message on failure.

        Raises:
            NotFoundError: No sign record exists for the activity.
            ValueError: The activity has no parseable start time.
        """
        record = await self.fetch_sign_record(activity.id)
        if not activity.start_time:
            raise ValueError(f"Activity {activity.id} has no start time")
        sign_in, sign_out = sign_times(activity.start_time)

        body = await self._request(
            "POST",
            self.SIGN_EDIT_PATH,
            json={
                "id": record.id,
                "signInTime": format_portal_time(sign_in),
                "signOutTime": format_portal_time(sign_out),
            },
        )
        if not is_success(body):
            message = message_of(body)
            log.warning("check_in_out_rejected", activity_id=activity.id, message=message)
            return message
        return body

    async def fetch_score(self) -> Score | str:
        """Aggregate score of the student, or the portal message on failure."""
        user = await self.get_user()
        body = await self._request("GET", self.SCORE_PATH, params={"userId": user.id})
        if not is_success(body):
            return message_of(body)
        return Score.model_validate(body.get("data") or {})

    def _ensure_success(self, body: Any) -> dict[str, Any]:
        if not is_success(body):
            raise ApplicationError(message_of(body))
        return body

    async def _request(
        self,
        method: str,
        path: str,
        *,
        authorized: bool = True,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
    ) -> Any:
        """Send one portal request and decode its JSON body.

        Raises:
            AuthError: Business call before login, redirect to the gateway
                login (expired session), or HTTP 401/403.
            ProtocolError: Gateway error page or non-JSON body.
            NetworkError: Transport failure.
        """
        headers = {SESSION_HEADER: self.gateway.session_id or ""}
        if authorized:
            if self.state is not ClientState.TOKEN_ISSUED:
                raise AuthError("Not logged in. Call login() first.")
            headers["Authorization"] = f"Bearer {self._token}"

        url = f"{self.base_url}{path}"
        query = {**(params or {}), **AJAX_MARKER}

        log.debug("portal_request", method=method, path=path)
        try:
            response = await self.gateway.http.request(
                method,
                url,
                params=query,
                json=json,
                headers=headers,
                follow_redirects=False,
            )
        except httpx.TransportError as e:
            log.warning("portal_request_failed", method=method, path=path, error=str(e))
            raise NetworkError(f"Portal request failed: {method} {path}: {e}") from e

        if response.is_redirect:
            # The gateway bounces requests with a dead session to its login portal
            location = response.headers.get("location", "")
            log.warning("portal_session_expired", path=path, location=location)
            raise AuthError(f"Gateway session expired (redirected to {location!r})")
        if response.status_code in (401, 403):
            raise AuthError(f"Portal rejected credentials ({response.status_code})")
        return decode_json(response)

    async def close(self) -> None:
        await self.gateway.close()

    async def __aenter__(self) -> "PortalClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
