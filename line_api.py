import base64
import hashlib
import hmac
import logging

import requests

logger = logging.getLogger(__name__)

API_BASE = "https://api.line.me/v2/bot"
MAX_TEXT_LENGTH = 5000


class LineApiError(Exception):
    def __init__(self, message: str, status_code: int | None = None, body: str | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class LineClient:
    def __init__(self, channel_token: str, channel_secret: str = "", timeout: float = 12, session: requests.Session | None = None):
        self.channel_token = channel_token
        self.channel_secret = channel_secret
        self.timeout = timeout
        self.session = session or requests.Session()

    def _headers(self) -> dict:
        return {
            "Authorization": f"Bearer {self.channel_token}",
            "Content-Type": "application/json",
        }

    def _request(self, method: str, path: str, **kwargs) -> dict:
        url = f"{API_BASE}{path}"
        try:
            resp = self.session.request(method, url, headers=self._headers(), timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            raise LineApiError(f"{method} {path} failed: {e}") from e
        if resp.status_code >= 400:
            raise LineApiError(f"{method} {path} returned {resp.status_code}", resp.status_code, resp.text)
        if not resp.content:
            return {}
        try:
            return resp.json()
        except ValueError:
            return {}

    # -------- profiles --------

    def get_profile(self, user_id: str) -> str:
        body = self._request("GET", f"/profile/{user_id}")
        return _display_name(body)

    def get_group_member_profile(self, group_id: str, user_id: str) -> str:
        body = self._request("GET", f"/group/{group_id}/member/{user_id}")
        return _display_name(body)

    # -------- messages --------

    def push_text(self, to: str, text: str):
        if len(text) > MAX_TEXT_LENGTH:
            text = text[: MAX_TEXT_LENGTH - 1] + "…"
        self._request(
            "POST",
            "/message/push",
            json={"to": to, "messages": [{"type": "text", "text": text}]},
        )

    # -------- webhook auth --------

    def verify_signature(self, raw_body: bytes, signature: str | None) -> tuple[bool, str]:
        if not self.channel_secret:
            return True, ""
        if not signature:
            return False, "missing signature header"
        expected = base64.b64encode(
            hmac.new(self.channel_secret.encode("utf-8"), msg=raw_body, digestmod=hashlib.sha256).digest()
        ).decode("ascii")
        if not hmac.compare_digest(expected, signature):
            return False, "signature mismatch"
        return True, ""


def _display_name(body: dict) -> str:
    name = (body.get("displayName") or "").strip()
    if not name:
        raise LineApiError("profile has no displayName")
    return name
