import base64
import hashlib
import hmac
import json
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import HTTPException, Header

from config import settings
from errors import Unauthorized

logger = logging.getLogger(__name__)


def verify_admin(x_api_key: str = Header(default="")):
    if x_api_key != settings.ADMIN_API_KEY:
        raise HTTPException(status_code=401, detail="Invalid admin API key")


class URLSafeSerializer:
    """Tiny URL-safe HMAC serializer.

    Encodes/decodes JSON payloads with an HMAC-SHA256 signature:
    token = base64url(payload) + "." + base64url(signature).
    """

    def __init__(self, secret_key, salt=""):
        self.secret_key = (secret_key or "").encode("utf-8")
        self.salt = salt or ""

    def _b64(self, data: bytes) -> str:
        return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")

    def _unb64(self, s: str) -> bytes:
        s_bytes = s.encode("ascii")
        padding = b"=" * (-len(s_bytes) % 4)
        return base64.urlsafe_b64decode(s_bytes + padding)

    def _sign(self, payload: bytes) -> bytes:
        return hmac.new(self.secret_key + self.salt.encode("utf-8"), payload, hashlib.sha256).digest()

    def dumps(self, obj) -> str:
        payload = json.dumps(obj, separators=(",", ":"), sort_keys=True).encode("utf-8")
        return f"{self._b64(payload)}.{self._b64(self._sign(payload))}"

    def loads(self, token: str):
        """Verify signature and deserialize an object.

        Raises:
            ValueError: If token format or signature is invalid.
        """
        try:
            payload_b64, sig_b64 = token.rsplit(".", 1)
            payload = self._unb64(payload_b64)
            sig = self._unb64(sig_b64)
        except (ValueError, UnicodeEncodeError):
            raise ValueError("Invalid token format")
        if not hmac.compare_digest(sig, self._sign(payload)):
            raise ValueError("Invalid signature")
        return json.loads(payload.decode("utf-8"))


signer = URLSafeSerializer(secret_key=settings.SECRET_KEY, salt="user-token")


def issue_token(user_id: int, expires_in_minutes: Optional[int] = None) -> str:
    """Sign a bearer token for a user id."""
    minutes = settings.ACCESS_TOKEN_EXPIRE_MINUTES if expires_in_minutes is None else expires_in_minutes
    exp = datetime.now(timezone.utc) + timedelta(minutes=minutes)
    return signer.dumps({"user_id": int(user_id), "exp": int(exp.timestamp())})


def decode_token(token: str) -> int:
    """Return the user id carried by a token.

    Raises:
        Unauthorized: If the token is malformed, tampered with or expired.
    """
    try:
        data = signer.loads(token)
    except ValueError:
        raise Unauthorized("Invalid token")
    if not isinstance(data, dict) or not isinstance(data.get("user_id"), int):
        raise Unauthorized("Invalid token")
    if datetime.now(timezone.utc).timestamp() > int(data.get("exp", 0) or 0):
        raise Unauthorized("Token has expired")
    return data["user_id"]


def _bearer(authorization: str) -> str:
    if not authorization.startswith("Bearer "):
        return ""
    return authorization[7:].strip()


def current_user_id(authorization: str = Header(default="")) -> int:
    token = _bearer(authorization)
    if not token:
        raise Unauthorized("Access token is required")
    return decode_token(token)


def optional_user_id(authorization: str = Header(default="")) -> Optional[int]:
    token = _bearer(authorization)
    if not token:
        return None
    try:
        return decode_token(token)
    except Unauthorized:
        # anonymous access is still allowed here
        logger.warning("Ignoring invalid bearer token on optional-auth route")
        return None
