# SPDX-License-Identifier: Apache-2.0

"""Session-bound CSRF tokens.

Each session carries a random secret; the token for an intention is the
HMAC of that secret and the intention under ``SECRET_KEY``. Tokens therefore
differ per session and per intention and need no server-side storage.
"""

from __future__ import annotations

import hashlib
import hmac
import secrets
from typing import Any, MutableMapping, Optional

from ..config import Settings, settings as default_settings
from ..telemetry import log_json

SESSION_KEY = "_csrf_secret"


class CsrfTokenManager:
    def __init__(self, current_settings: Settings | None = None):
        cfg = current_settings or default_settings
        self.enabled = cfg.REQUIRE_CSRF_TOKEN
        self._key = cfg.SECRET_KEY.encode("utf-8")

    def _session_secret(self, session: MutableMapping[str, Any]) -> str:
        secret = session.get(SESSION_KEY)
        if not isinstance(secret, str) or not secret:
            secret = secrets.token_urlsafe(32)
            session[SESSION_KEY] = secret
        return secret

    def _compute(self, secret: str, intention: str) -> str:
        message = f"{secret}:{intention}".encode("utf-8")
        return hmac.new(self._key, message, hashlib.sha256).hexdigest()

    def get_token(self, session: MutableMapping[str, Any], intention: str) -> Optional[str]:
        """Token for ``intention``, or ``None`` when CSRF protection is disabled."""
        if not self.enabled:
            return None
        return self._compute(self._session_secret(session), intention)

    def is_token_valid(self, session: MutableMapping[str, Any], intention: str, token: Any) -> bool:
        if not self.enabled:
            return True
        secret = session.get(SESSION_KEY)
        if not isinstance(secret, str) or not secret or not isinstance(token, str) or not token:
            log_json(30, "csrf_token_missing", intention=intention)
            return False
        valid = hmac.compare_digest(self._compute(secret, intention), token)
        if not valid:
            log_json(30, "csrf_token_invalid", intention=intention)
        return valid
