"""GitHub App assertions and bearer-token authorization helpers."""

import hashlib
import hmac
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import jwt
from jose.exceptions import JOSEError

from ghpolicies.core.config import settings
from ghpolicies.core.exceptions import AuthenticationError, forbidden, unauthorized

APP_JWT_ALGORITHM = "RS256"
SIGNATURE_PREFIX = "sha256="

# Bearer scheme carrying a GitHub user access token
security_scheme = HTTPBearer(auto_error=False)


def create_app_jwt(
    app_id: int,
    private_key: str,
    ttl: Optional[timedelta] = None,
    clock_skew: Optional[timedelta] = None,
    now: Optional[datetime] = None,
) -> str:
    """Sign the short-lived assertion that identifies the GitHub App.

    ``iat`` is back-dated by ``clock_skew`` so that a server clock running
    slightly ahead of GitHub's does not produce a token issued "in the future".

    Raises:
        AuthenticationError: If the key is missing or cannot sign.
    """
    if not private_key:
        raise AuthenticationError("GitHub App private key is not configured")

    issued = now or datetime.now(timezone.utc)
    ttl = ttl or timedelta(minutes=settings.APP_JWT_TTL_MINUTES)
    clock_skew = clock_skew if clock_skew is not None else timedelta(seconds=settings.APP_JWT_CLOCK_SKEW_SECONDS)
    claims = {
        "iss": str(app_id),
        "iat": int((issued - clock_skew).timestamp()),
        "exp": int((issued + ttl).timestamp()),
    }
    try:
        return jwt.encode(claims, private_key, algorithm=APP_JWT_ALGORITHM)
    except (JOSEError, ValueError, TypeError) as e:
        raise AuthenticationError(f"Unable to sign GitHub App assertion: {e}") from e


def require_team_member(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security_scheme),
) -> str:
    """Dependency that admits members of the configured authorized team.

    Returns the caller's GitHub token. Declared sync so FastAPI runs the
    membership lookup in its threadpool.
    """
    from ghpolicies.core.dependencies import get_authorization_service

    if settings.TEST_MODE:
        return credentials.credentials if credentials else ""
    if credentials is None:
        raise unauthorized()
    if not get_authorization_service().is_user_authorized(credentials.credentials):
        raise forbidden("Not a member of the authorized team")
    return credentials.credentials


def sign_webhook_payload(body: bytes, secret: str) -> str:
    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return SIGNATURE_PREFIX + digest


def verify_webhook_signature(body: bytes, signature: Optional[str], secret: str) -> bool:
    """Check an ``X-Hub-Signature-256`` header against the raw request body.

    An unset secret rejects everything.
    """
    if not secret or not signature:
        return False
    if signature[:len(SIGNATURE_PREFIX)].lower() != SIGNATURE_PREFIX:
        return False
    expected = sign_webhook_payload(body, secret)
    received = SIGNATURE_PREFIX + signature[len(SIGNATURE_PREFIX):].lower()
    return hmac.compare_digest(expected.encode("utf-8"), received.encode("utf-8"))
