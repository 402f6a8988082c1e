"""Web-VPN gateway session management.

GatewaySession performs the gateway login handshake and owns the resulting
session identifier (the gateway's ``TWFID``). Every portal request behind the
gateway must carry that identifier, so an existing one is probed and reused
when possible; this avoids repeated logins and reduces CAPTCHA prompts.

Handshake (Sangfor-style ``/por/`` endpoints, XML responses):
  1. GET  /por/login_auth.csp  -> TwfID, RSA key, CSRF rand code, RndImg flag
  2. GET  /por/rand_code.csp   -> CAPTCHA image, only when RndImg == 1
  3. POST /por/login_psw.csp   -> <Result>1</Result> on success
"""

import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

import httpx
from Crypto.Cipher import PKCS1_v1_5
from Crypto.PublicKey import RSA
from lxml import etree

from secondclass.config import PortalConfig, get_config
from secondclass.errors import AuthError, NetworkError, ProtocolError
from secondclass.logging import get_logger
from secondclass.models import Credentials
from secondclass.utils import ERROR_PAGE_MARKER

logger = get_logger(__name__)

CaptchaSolver = Callable[[bytes], Awaitable[str]]

USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36"
)

DEFAULT_RSA_EXPONENT = 65537


@dataclass(frozen=True)
class LoginChallenge:
    """Parameters handed out by /por/login_auth.csp."""

    twf_id: str
    rsa_modulus: str
    rsa_exponent: int
    csrf_rand_code: str
    needs_captcha: bool


def encrypt_password(
    password: str, modulus_hex: str, exponent: int, rand_code: str = ""
) -> str:
    """RSA (PKCS#1 v1.5) encrypt the password the way the gateway login page does.

    The CSRF rand code, when present, is appended as ``password_randcode``.

    Returns:
        Hex-encoded ciphertext.
    """
    plain = f"{password}_{rand_code}" if rand_code else password
    key = RSA.construct((int(modulus_hex, 16), exponent))
    return PKCS1_v1_5.new(key).encrypt(plain.encode("utf-8")).hex()


class GatewaySession:
    """Authenticated web-VPN session.

    This object is the only writer of the session identifier. Other
    components read it through ``session_id``.
    """

    LOGIN_AUTH_PATH = "/por/login_auth.csp?apiversion=1"
    LOGIN_PSW_PATH = "/por/login_psw.csp?anti_replay=1&encrypt=1&apiversion=1"
    RAND_CODE_PATH = "/por/rand_code.csp?apiversion=1"
    CONF_PATH = "/por/conf.csp?apiversion=1"
    SESSION_COOKIE = "TWFID"

    def __init__(
        self,
        credentials: Credentials,
        session_id: str | None = None,
        *,
        http: httpx.AsyncClient | None = None,
        config: PortalConfig | None = None,
    ) -> None:
        """Initialize GatewaySession.

        Args:
            credentials: Student account and password.
            session_id: Previously issued TWFID to try resuming.
            http: Shared HTTP client. One is created (and owned) when omitted.
            config: Endpoint and timeout settings.
        """
        self.credentials = credentials
        self.config = config or get_config()
        self.base_url = self.config.gateway_url.rstrip("/")
        self._session_id = session_id
        self._owns_http = http is None
        self._http = http or httpx.AsyncClient(
            timeout=self.config.timeout_seconds,
            follow_redirects=True,
            headers={"User-Agent": USER_AGENT},
        )
        self.is_authenticated = False

    @property
    def session_id(self) -> str | None:
        """Opaque gateway session identifier, None before the first login."""
        return self._session_id

    @property
    def http(self) -> httpx.AsyncClient:
        return self._http

    async def login(
        self,
        existing_session_id: str | None = None,
        on_captcha: CaptchaSolver | None = None,
    ) -> str:
        """Establish or resume a gateway session.

        Args:
            existing_session_id: TWFID to resume. Falls back to the one given
                at construction time.
            on_captcha: Async callback receiving the raw CAPTCHA image and
                returning the solved text. Called at most once.

        Returns:
            The session identifier now in effect.

        Raises:
            AuthError: Bad credentials, refused CAPTCHA or gateway refusal.
            NetworkError: Transport failure.
            ProtocolError: The gateway answered with something unparseable.
        """
        candidate = existing_session_id or self._session_id
        if candidate and await self.is_alive(candidate):
            self._session_id = candidate
            self.is_authenticated = True
            logger.info("gateway_session_resumed")
            return candidate

        self.is_authenticated = False
        logger.info(
            "gateway_login_started",
            account=self.credentials.account,
            resumable=candidate is not None,
        )

        challenge = await self._fetch_challenge()
        captcha = ""
        if challenge.needs_captcha:
            captcha = await self._solve_captcha(on_captcha)

        session_id = await self._submit_password(challenge, captcha)
        self._session_id = session_id
        self.is_authenticated = True
        logger.info("gateway_login_succeeded", captcha=bool(captcha))
        return session_id

    async def is_alive(self, session_id: str) -> bool:
        """Check whether the gateway still honours a session identifier.

        A live session answers the configuration endpoint with XML. A dead one
        is redirected to the login portal or answers ``<Result>0</Result>``.
        """
        self._use_session(session_id)
        response = await self._request("GET", self.CONF_PATH)

        if response.status_code != 200 or _is_login_page(response):
            logger.info("gateway_session_check", result="expired")
            return False
        try:
            root = _parse_xml(response)
        except ProtocolError:
            logger.info("gateway_session_check", result="unparseable")
            return False
        if (root.findtext(".//Result") or "").strip() == "0":
            logger.info("gateway_session_check", result="rejected")
            return False

        logger.debug("gateway_session_check", result="valid")
        return True

    async def _fetch_challenge(self) -> LoginChallenge:
        self._http.cookies.clear()
        response = await self._request("GET", self.LOGIN_AUTH_PATH)
        root = _parse_xml(response)

        twf_id = (root.findtext(".//TwfID") or "").strip() or _cookie(
            response, self.SESSION_COOKIE
        )
        modulus = (root.findtext(".//RSA_ENCRYPT_KEY") or "").strip()
        if not twf_id or not modulus:
            raise ProtocolError("Gateway login_auth response lacks TwfID or RSA key")

        exponent = (root.findtext(".//RSA_ENCRYPT_EXP") or "").strip()
        challenge = LoginChallenge(
            twf_id=twf_id,
            rsa_modulus=modulus,
            rsa_exponent=int(exponent) if exponent else DEFAULT_RSA_EXPONENT,
            csrf_rand_code=(root.findtext(".//CSRF_RAND_CODE") or "").strip(),
            needs_captcha=(root.findtext(".//RndImg") or "").strip() == "1",
        )
        logger.debug("gateway_challenge_received", needs_captcha=challenge.needs_captcha)
        return challenge

    async def _solve_captcha(self, on_captcha: CaptchaSolver | None) -> str:
        if on_captcha is None:
            raise AuthError("Gateway requires a CAPTCHA but no solver was supplied")

        path = f"{self.RAND_CODE_PATH}&rnd={random.random()}"
        response = await self._request("GET", path)
        if response.status_code != 200 or not response.content:
            raise ProtocolError(f"CAPTCHA image request failed ({response.status_code})")

        logger.info("gateway_captcha_requested", size=len(response.content))
        try:
            answer = await on_captcha(response.content)
        except Exception as e:
            raise AuthError(f"CAPTCHA solver failed: {e}") from e

        answer = (answer or "").strip()
        if not answer:
            raise AuthError("CAPTCHA solver returned no text")
        return answer

    async def _submit_password(self, challenge: LoginChallenge, captcha: str) -> str:
        self._use_session(challenge.twf_id)
        form = {
            "mitm_result": "",
            "svpn_req_randcode": challenge.csrf_rand_code,
            "svpn_name": self.credentials.account,
            "svpn_password": encrypt_password(
                self.credentials.password,
                challenge.rsa_modulus,
                challenge.rsa_exponent,
                challenge.csrf_rand_code,
            ),
            "svpn_rand_code": captcha,
        }
        response = await self._request("POST", self.LOGIN_PSW_PATH, data=form)
        root = _parse_xml(response)

        if (root.findtext(".//Result") or "").strip() != "1":
            message = (root.findtext(".//Message") or "login refused").strip()
            logger.warning("gateway_login_failed", message=message, captcha=bool(captcha))
            if captcha and ("rand" in message.lower() or "验证码" in message):
                raise AuthError(f"CAPTCHA refused by gateway: {message}")
            raise AuthError(f"Gateway login failed: {message}")

        session_id = (
            _cookie(response, self.SESSION_COOKIE)
            or (root.findtext(".//TwfID") or "").strip()
            or challenge.twf_id
        )
        self._use_session(session_id)
        return session_id

    def _use_session(self, session_id: str) -> None:
        # Exactly one TWFID cookie, valid for every host behind the gateway
        self._http.cookies.clear()
        self._http.cookies.set(self.SESSION_COOKIE, session_id)

    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        url = f"{self.base_url}{path}"
        try:
            return await self._http.request(method, url, **kwargs)
        except httpx.TransportError as e:
            logger.warning("gateway_request_failed", method=method, path=path, error=str(e))
            raise NetworkError(f"Gateway request failed: {method} {path}: {e}") from e

    async def close(self) -> None:
        """Close the HTTP client if this session created it."""
        if self._owns_http:
            await self._http.aclose()

    async def __aenter__(self) -> "GatewaySession":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()


def _parse_xml(response: httpx.Response) -> etree._Element:
    if ERROR_PAGE_MARKER in response.text:
        raise ProtocolError("500 Server internal error")
    parser = etree.XMLParser(recover=True, resolve_entities=False)
    try:
        root = etree.fromstring(response.content, parser=parser)
    except etree.XMLSyntaxError as e:
        raise ProtocolError(f"Unparseable gateway response: {e}") from e
    if root is None:
        raise ProtocolError("Empty or non-XML gateway response")
    return root


def _is_login_page(response: httpx.Response) -> bool:
    path = response.url.path.lower()
    return path.startswith("/portal") or "login" in path


def _cookie(response: httpx.Response, name: str) -> str:
    return response.cookies.get(name) or ""
