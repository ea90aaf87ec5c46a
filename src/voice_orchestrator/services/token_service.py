"""Channel credential issuing."""

import base64
import hashlib
import hmac
import json
import logging
import re
import time
from datetime import datetime, timezone
from typing import Callable

from ..config import MAX_TOKEN_TTL_SECONDS, MIN_TOKEN_TTL_SECONDS, Settings
from ..errors import AuthenticationError, ConfigurationError, ValidationError
from ..models.credential import ChannelRole, Credential

logger = logging.getLogger(__name__)

TOKEN_VERSION = "v1"
MAX_CHANNEL_LENGTH = 64
MAX_UID = 2**32 - 1
# Characters the audio transport accepts in a channel name
_CHANNEL_PATTERN = re.compile(r"^[A-Za-z0-9 !#$%&()+\-:;<=.>?@\[\]^_{|}~,]+$")


def _b64encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def _b64decode(text: str) -> bytes:
    return base64.urlsafe_b64decode(text + "=" * (-len(text) % 4))


class TokenService:
    """Issues short-lived, channel-scoped credentials.

    Tokens are ``v1.<payload>.<signature>`` where the payload is the
    base64url-encoded JSON grant and the signature is an HMAC-SHA256 over it
    keyed with the app certificate. Issuing is pure: given the same settings,
    inputs and clock reading it always returns the same credential.
    """

    def __init__(self, settings: Settings, clock: Callable[[], float] = time.time):
        self.app_id = settings.app_id
        self._certificate = settings.app_certificate
        self.default_ttl = settings.token_ttl_seconds
        self._clock = clock

    def issue_token(
        self,
        channel: str,
        uid: int,
        role: ChannelRole = ChannelRole.PUBLISHER,
        ttl_seconds: int | None = None,
    ) -> Credential:
        """Issue a credential for exactly one channel, identity and role."""
        if not self.app_id or not self._certificate:
            raise ConfigurationError("Token signing requires app_id and app_certificate")

        validate_channel(channel)
        validate_uid(uid)
        try:
            role = ChannelRole(role)
        except ValueError:
            raise ValidationError(f"Unknown channel role: {role!r}")

        ttl = self.default_ttl if ttl_seconds is None else ttl_seconds
        if not MIN_TOKEN_TTL_SECONDS <= ttl <= MAX_TOKEN_TTL_SECONDS:
            raise ValidationError(
                f"ttl_seconds must be between {MIN_TOKEN_TTL_SECONDS} "
                f"and {MAX_TOKEN_TTL_SECONDS}, got {ttl}"
            )

        issued = int(self._clock())
        expires = issued + ttl
        payload = json.dumps(
            {
                "app_id": self.app_id,
                "channel": channel,
                "uid": uid,
                "role": role.value,
                "iat": issued,
                "exp": expires,
            },
            separators=(",", ":"),
            sort_keys=True,
        )
        encoded = _b64encode(payload.encode("utf-8"))

        return Credential(
            token=f"{TOKEN_VERSION}.{encoded}.{self._sign(encoded)}",
            channel=channel,
            uid=uid,
            role=role,
            issued_at=datetime.fromtimestamp(issued, tz=timezone.utc),
            expires_at=datetime.fromtimestamp(expires, tz=timezone.utc),
        )

    def verify_token(self, token: str) -> dict:
        """Check a token's signature and expiry and return its grant."""
        try:
            version, encoded, signature = token.split(".")
        except ValueError:
            raise AuthenticationError("Malformed token")

        if version != TOKEN_VERSION or not hmac.compare_digest(
            signature, self._sign(encoded)
        ):
            raise AuthenticationError("Invalid token signature")

        grant = json.loads(_b64decode(encoded))
        if self._clock() >= grant["exp"]:
            raise AuthenticationError("Token expired")
        return grant

    def _sign(self, encoded_payload: str) -> str:
        return hmac.new(
            self._certificate.encode("utf-8"),
            encoded_payload.encode("ascii"),
            hashlib.sha256,
        ).hexdigest()


def validate_channel(channel: str) -> None:
    if not isinstance(channel, str) or not channel:
        raise ValidationError("channel must be a non-empty string")
    if len(channel.encode("utf-8")) > MAX_CHANNEL_LENGTH:
        raise ValidationError(f"channel must be at most {MAX_CHANNEL_LENGTH} bytes")
    if not _CHANNEL_PATTERN.match(channel):
        raise ValidationError(f"channel contains unsupported characters: {channel!r}")


def validate_uid(uid: int) -> None:
    if isinstance(uid, bool) or not isinstance(uid, int):
        raise ValidationError("uid must be an integer")
    if not 0 <= uid <= MAX_UID:
        raise ValidationError(f"uid must be between 0 and {MAX_UID}")
