"""Short-lived session tokens that authorize WebSocket upgrades.

Tokens are HS256 JWTs carrying only ``iat`` and ``exp``. Nothing is stored
server-side: a token is valid iff its signature verifies against the process
secret and the current time is strictly before ``exp``.

Browsers cannot set headers on a WebSocket upgrade, so the token travels as one
entry of the ``Sec-WebSocket-Protocol`` list, spelled ``access_token.<jwt>``.
"""

from __future__ import annotations

import logging
import time
from typing import Callable, Iterable, Optional

import jwt

logger = logging.getLogger("voice_relay.tokens")

TOKEN_PROTOCOL_PREFIX = "access_token."
ALGORITHM = "HS256"


class SessionTokenService:
    """Issue and validate session tokens signed with a process-wide secret."""

    def __init__(
        self,
        secret: str,
        *,
        ttl_seconds: int = 3600,
        clock: Callable[[], float] = time.time,
    ):
        if not secret:
            raise ValueError("secret must not be empty")
        self._secret = secret
        self._ttl = ttl_seconds
        self._clock = clock

    @property
    def ttl_seconds(self) -> int:
        return self._ttl

    def issue(self) -> str:
        now = int(self._clock())
        claims = {"iat": now, "exp": now + self._ttl}
        return jwt.encode(claims, self._secret, algorithm=ALGORITHM)

    def validate(self, token: Optional[str]) -> bool:
        if not token:
            return False
        try:
            claims = jwt.decode(
                token,
                self._secret,
                algorithms=[ALGORITHM],
                options={"require": ["exp"], "verify_exp": False, "verify_iat": False},
            )
        except jwt.PyJWTError as exc:
            logger.debug("Rejected session token: %s", exc)
            return False

        expiry = claims.get("exp")
        if not isinstance(expiry, (int, float)) or isinstance(expiry, bool):
            return False
        # Zero skew: a token whose expiry equals "now" is already dead.
        if self._clock() >= expiry:
            logger.debug("Rejected expired session token (exp=%s)", expiry)
            return False
        return True

    def select_protocol(self, offered: Iterable[str]) -> Optional[str]:
        """Return the offered subprotocol entry to echo back, or ``None`` to reject.

        Only the first ``access_token.`` entry is considered; other entries are
        ignored. The entry itself is returned so the handshake echoes exactly what
        the client sent.
        """

        for entry in offered:
            candidate = entry.strip()
            if candidate.startswith(TOKEN_PROTOCOL_PREFIX):
                token = candidate[len(TOKEN_PROTOCOL_PREFIX):]
                return candidate if self.validate(token) else None
        return None
