"""
Pytest configuration and shared fixtures for all tests.

FakeBackend plays both the web-VPN gateway (/por/...) and the second
classroom portal (/api/...) behind an httpx.MockTransport, so no test touches
the network.
"""

import json
from urllib.parse import parse_qs

import httpx
import pytest
from Crypto.Cipher import PKCS1_v1_5
from Crypto.PublicKey import RSA

from secondclass.config import PortalConfig
from secondclass.client import PortalClient
from secondclass.models import Credentials
from secondclass.utils import SUCCESS_MESSAGE

GATEWAY_URL = "https://vpn.test"
PORTAL_URL = "http://portal.test:8118"
ACCOUNT = "2021010101"
PASSWORD = "s3cret"

ERROR_PAGE = "<html><body>Server internal error</body></html>"


def ok(data=None) -> dict:
    return {"message": SUCCESS_MESSAGE, "data": data}


def activity_row(activity_id, status="0", is_sign=0, start="2024-03-01 14:00:00", name=None):
    return {
        "id": activity_id,
        "activityStatus": status,
        "activityName": name or f"activity {activity_id}",
        "startTime": start,
        "endTime": "2024-03-01 16:00:00",
        "isSign": is_sign,
        "activityLx": "lecture",
    }


class FakeBackend:
    """Scriptable gateway + portal. Every handled request is kept in ``requests``."""

    def __init__(self, rsa_key):
        self.rsa_key = rsa_key
        self.handshake_twf_id = "twf-handshake"
        self.issued_twf_id = "twf-session"
        self.live_sessions: set[str] = set()
        self.csrf_rand_code = "r4nd"
        self.require_captcha = False
        self.captcha_answer = "ABCD"
        self.error_page_for_post = False
        self.error_page_paths: set[str] = set()
        self.fail_paths: set[str] = set()
        self.portal_login_message = SUCCESS_MESSAGE
        self.token = "token-1"

        self.user = {
            "id": 42,
            "name": "Li Hua",
            "sex": "1",
            "loginEmpInfo": {"orgId": 7, "orgName": "Software Engineering"},
        }
        self.user_message = SUCCESS_MESSAGE
        self.activities: list = []
        self.my_activities: list = []
        self.sign_up_answers: dict[str, dict] = {}
        self.sign_records: dict[str, dict] = {}
        self.empty_record_ids: set[str] = set()
        self.score = {"score": 3, "item": 0, "integrity_value": 70, "activity": 2}
        self.score_message = SUCCESS_MESSAGE
        self.edit_message = SUCCESS_MESSAGE

        self.requests: list[httpx.Request] = []
        self.edits: list[dict] = []
        self.captcha_images_served = 0

    # -- helpers -----------------------------------------------------------

    def paths(self, method=None) -> list[str]:
        return [
            r.url.path for r in self.requests if method is None or r.method == method
        ]

    @staticmethod
    def _cookies(request: httpx.Request) -> dict[str, str]:
        header = request.headers.get("cookie", "")
        pairs = (part.strip().split("=", 1) for part in header.split(";") if "=" in part)
        return {k: v for k, v in pairs}

    @staticmethod
    def _xml(body: str, **kwargs) -> httpx.Response:
        return httpx.Response(200, content=body.encode(), **kwargs)

    # -- transport ---------------------------------------------------------

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path

        if path in self.fail_paths:
            raise httpx.ConnectError("connection reset", request=request)
        if path in self.error_page_paths or (
            self.error_page_for_post and request.method == "POST"
        ):
            return httpx.Response(500, text=ERROR_PAGE)

        if path.startswith("/por/"):
            return self._gateway(request, path)
        return self._portal(request, path)

    def _gateway(self, request, path):
        if path == "/por/conf.csp":
            if self._cookies(request).get("TWFID") in self.live_sessions:
                return self._xml("<Conf><Result>1</Result><Other>x</Other></Conf>")
            return self._xml("<Auth><Result>0</Result><Message>auth fail</Message></Auth>")

        if path == "/por/login_auth.csp":
            return self._xml(
                "<Auth>"
                f"<TwfID>{self.handshake_twf_id}</TwfID>"
                f"<RSA_ENCRYPT_KEY>{format(self.rsa_key.n, 'X')}</RSA_ENCRYPT_KEY>"
                f"<RSA_ENCRYPT_EXP>{self.rsa_key.e}</RSA_ENCRYPT_EXP>"
                f"<CSRF_RAND_CODE>{self.csrf_rand_code}</CSRF_RAND_CODE>"
                f"<RndImg>{1 if self.require_captcha else 0}</RndImg>"
                "</Auth>"
            )

        if path == "/por/rand_code.csp":
            self.captcha_images_served += 1
            return httpx.Response(200, content=b"\x89PNG fake captcha")

        if path == "/por/login_psw.csp":
            form = {k: v[0] for k, v in parse_qs(request.content.decode(), keep_blank_values=True).items()}
            cipher = PKCS1_v1_5.new(self.rsa_key)
            plain = cipher.decrypt(bytes.fromhex(form["svpn_password"]), None)
            if self._cookies(request).get("TWFID") != self.handshake_twf_id:
                return self._xml("<Auth><Result>0</Result><Message>twfid invalid</Message></Auth>")
            if self.require_captcha and form["svpn_rand_code"] != self.captcha_answer:
                return self._xml("<Auth><Result>0</Result><Message>Invalid rand code</Message></Auth>")
            expected = f"{PASSWORD}_{self.csrf_rand_code}".encode()
            if form["svpn_name"] != ACCOUNT or plain != expected:
                return self._xml(
                    "<Auth><Result>0</Result><Message>Invalid username or password!</Message></Auth>"
                )
            self.live_sessions.add(self.issued_twf_id)
            return self._xml(
                "<Auth><Result>1</Result><Message>radius auth succ</Message></Auth>",
                headers={"Set-Cookie": f"TWFID={self.issued_twf_id}; path=/"},
            )

        return httpx.Response(404, text="not found")

    def _portal(self, request, path):
        if request.headers.get("sdp-app-session") not in self.live_sessions:
            return httpx.Response(401, json={"message": "session expired"})

        if path == "/api/login":
            body = json.loads(request.content)
            if self.portal_login_message != SUCCESS_MESSAGE:
                return httpx.Response(200, json={"message": self.portal_login_message})
            assert body["account"] == ACCOUNT
            return httpx.Response(200, json=ok(self.token))

        if request.headers.get("authorization") != f"Bearer {self.token}":
            return httpx.Response(200, json={"message": "token invalid"})

        if path == "/api/getLoginUser":
            if self.user_message != SUCCESS_MESSAGE:
                return httpx.Response(200, json={"message": self.user_message})
            return httpx.Response(200, json=ok(self.user))

        if path == "/api/activityInfo/page":
            return httpx.Response(200, json=ok({"rows": self.activities, "total": len(self.activities)}))

        if path == "/api/activityInfo/my":
            return httpx.Response(200, json=ok(self.my_activities))

        if path == "/api/activityInfoSign/add":
            activity_id = json.loads(request.content)["activityId"]
            answer = self.sign_up_answers.get(activity_id, {"msg": "报名成功", "code": "1"})
            if "message" in answer:
                return httpx.Response(200, json=answer)
            return httpx.Response(200, json=ok(answer))

        if path == "/api/activityInfoSign/my":
            activity_id = request.url.params["activityId"]
            if activity_id in self.empty_record_ids:
                return httpx.Response(200, json=ok({"rows": [], "total": 0}))
            record = self.sign_records.get(activity_id)
            if record is None:
                return httpx.Response(200, json={"message": "未报名该活动"})
            return httpx.Response(200, json=ok({"rows": [record], "total": 1}))

        if path == "/api/activityInfoSign/edit":
            body = json.loads(request.content)
            self.edits.append(body)
            if self.edit_message != SUCCESS_MESSAGE:
                return httpx.Response(200, json={"message": self.edit_message})
            for record in self.sign_records.values():
                if record["id"] == body["id"]:
                    record["signInTime"] = body["signInTime"]
                    record["signOutTime"] = body["signOutTime"]
            return httpx.Response(200, json={"message": SUCCESS_MESSAGE, "data": None})

        if path == "/api/studentScore/appDataInfo":
            if self.score_message != SUCCESS_MESSAGE:
                return httpx.Response(200, json={"message": self.score_message})
            return httpx.Response(200, json=ok(self.score))

        return httpx.Response(404, text="not found")


@pytest.fixture(scope="session")
def rsa_key():
    """Gateway key pair; generated once since it takes a moment."""
    return RSA.generate(1024)


@pytest.fixture
def backend(rsa_key):
    return FakeBackend(rsa_key)


@pytest.fixture
def config():
    return PortalConfig(
        gateway_url=GATEWAY_URL,
        portal_url=PORTAL_URL,
        throttle_seconds=0,
        user_cache_ttl_seconds=0,
    )


@pytest.fixture
def credentials():
    return Credentials(account=ACCOUNT, password=PASSWORD)


@pytest.fixture
def http(backend):
    return httpx.AsyncClient(transport=httpx.MockTransport(backend), follow_redirects=True)


@pytest.fixture
def client(credentials, http, config):
    return PortalClient(credentials, http=http, config=config)
