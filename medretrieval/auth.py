"""
Identity Verification
Resolves a bearer token to the tenant it belongs to.

Supports a shared HMAC secret (service tokens) or a remote JWKS such as
Firebase ID tokens. The tenant id is the token's ``user_id`` claim, falling
back to ``sub``; it is never read from a request body.
"""
import re
from dataclasses import dataclass
from typing import Optional

import jwt

from .config import settings
from .exceptions import AuthorizationError
from .logging_config import get_logger

log = get_logger("auth")

_BEARER = re.compile(r"^Bearer\s+(.+)$", re.IGNORECASE)


@dataclass(frozen=True)
class Identity:
    tenant_id: str
    email: str = ""
    name: str = ""


def extract_bearer(authorization: Optional[str]) -> str:
    match = _BEARER.match((authorization or "").strip())
    if not match:
        raise AuthorizationError("Missing Authorization Bearer token")
    return match.group(1).strip()


class IdentityVerifier:
    def __init__(
        self,
        secret: str = None,
        algorithm: str = None,
        jwks_url: str = None,
        issuer: str = None,
        audience: str = None,
    ):
        self.secret = settings.jwt_secret if secret is None else secret
        self.algorithm = algorithm or settings.jwt_algorithm
        self.jwks_url = settings.jwks_url if jwks_url is None else jwks_url
        self.issuer = settings.jwt_issuer if issuer is None else issuer
        self.audience = settings.jwt_audience if audience is None else audience
        self._jwk_client = jwt.PyJWKClient(self.jwks_url) if self.jwks_url else None

    def _signing_key(self, token: str):
        if self._jwk_client is not None:
            return self._jwk_client.get_signing_key_from_jwt(token).key, ["RS256"]
        return self.secret, [self.algorithm]

    def verify(self, token: str) -> Identity:
        """
        Verify a bearer token and return the caller's identity.

        Raises:
            AuthorizationError: token missing, malformed, expired, wrongly
                signed, or carrying no tenant claim
        """
        if not token:
            raise AuthorizationError("Missing bearer token")
        if self._jwk_client is None and not self.secret:
            raise AuthorizationError("Identity verification is not configured")

        try:
            key, algorithms = self._signing_key(token)
            payload = jwt.decode(
                token,
                key,
                algorithms=algorithms,
                audience=self.audience or None,
                issuer=self.issuer or None,
                options={"verify_aud": bool(self.audience)},
            )
        except jwt.ExpiredSignatureError:
            raise AuthorizationError("Token expired")
        except jwt.PyJWKClientError as e:
            log.warning(f"Signing key lookup failed: {e}")
            raise AuthorizationError("Unable to verify token signature")
        except jwt.InvalidTokenError:
            raise AuthorizationError("Invalid token")

        tenant = payload.get("user_id") or payload.get("sub")
        if not tenant:
            raise AuthorizationError("Invalid token (no tenant id)")
        return Identity(
            tenant_id=str(tenant),
            email=payload.get("email", ""),
            name=payload.get("name", ""),
        )


# Singleton instance
_verifier = None


def get_identity_verifier() -> IdentityVerifier:
    """Get or create the identity verifier singleton."""
    global _verifier
    if _verifier is None:
        _verifier = IdentityVerifier()
    return _verifier
