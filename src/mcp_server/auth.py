"""Authentication and authorization hooks for the MCP Gateway.

Handles:
- Token verification (RS256, public key only) producing a Principal
- Pass-through mode when no public key is configured
- Optional self-issuing of tokens with a private key
- Per-request principal access and the ``can_invoke`` gate
- Security dependency for FastAPI routes
"""

from abc import ABC, abstractmethod
from contextvars import ContextVar, Token
from datetime import datetime, timedelta, timezone
from typing import Any, Iterable, Optional

from fastapi import HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwk, jwt
from jose.exceptions import JWKError

from shared.config import JWTSettings
from shared.logging import get_logger
from shared.models import Principal
from mcp_server.rbac import ADMIN_SCOPE, RbacAuthorizer, get_authorizer, parse_scopes

logger = get_logger(__name__)

ALGORITHM = "RS256"
ANONYMOUS_SUBJECT = "anonymous"

security = HTTPBearer(auto_error=False)

_current_principal: ContextVar[Optional[Principal]] = ContextVar(
    "current_principal", default=None
)


class AuthenticationError(Exception):
    """Raised when a caller's credentials cannot be verified."""


class ConfigurationError(Exception):
    """Raised at startup when authentication settings are unusable."""


def _normalize_pem(pem: str) -> str:
    # Keys passed through environment variables often carry escaped newlines
    return pem.strip().replace("\\n", "\n")


class Authenticator(ABC):
    """Strategy turning bearer credentials into a Principal."""

    enabled: bool = True

    @abstractmethod
    def authenticate(self, token: Optional[str]) -> Principal:
        """
        Verify credentials.

        Raises:
            AuthenticationError: If the credentials are missing or invalid
        """


class JwtAuthenticator(Authenticator):
    """Verifies RS256 tokens with the configured public key."""

    enabled = True

    def __init__(self, settings: JWTSettings) -> None:
        if not settings.enabled:
            raise ConfigurationError("JWT public key is not configured")

        self.settings = settings
        self._public_key = _normalize_pem(settings.public_key or "")
        try:
            jwk.construct(self._public_key, algorithm=ALGORITHM)
        except (JWKError, ValueError) as e:
            raise ConfigurationError(f"Failed to parse JWT public key: {e}") from e

    def authenticate(self, token: Optional[str]) -> Principal:
        if not token:
            raise AuthenticationError("Authentication required")

        try:
            claims = jwt.decode(
                token,
                self._public_key,
                algorithms=[ALGORITHM],
                audience=self.settings.audience,
                issuer=self.settings.issuer,
            )
        except JWTError as e:
            logger.warning("Token verification failed", error=str(e))
            raise AuthenticationError("Invalid authentication token") from e

        subject = claims.get("sub")
        if not isinstance(subject, str) or not subject.strip():
            logger.warning("Token rejected: missing subject claim")
            raise AuthenticationError("Invalid authentication token: missing subject")

        audiences = claims.get("aud") or []
        if isinstance(audiences, str):
            audiences = [audiences]
        if self.settings.audience not in audiences:
            logger.warning(
                "Token rejected: invalid audience",
                expected=self.settings.audience,
                got=audiences
            )
            raise AuthenticationError("Invalid authentication token: audience mismatch")

        scope_claim = claims.get("scope")
        if isinstance(scope_claim, (list, tuple)):
            scope_claim = " ".join(str(s) for s in scope_claim)
        scopes = parse_scopes(scope_claim)

        logger.debug("Token verified", subject=subject, scopes=sorted(scopes))
        return Principal(
            subject=subject,
            scopes=scopes,
            issuer=claims.get("iss") or "",
            audience=list(audiences),
        )


class PassThroughAuthenticator(Authenticator):
    """
    Used when no public key is configured.

    Every caller becomes the anonymous admin principal, so authorization
    still runs and unknown tools are still denied.
    """

    enabled = False

    def __init__(self, audience: str = "mcp-server") -> None:
        self._principal = Principal(
            subject=ANONYMOUS_SUBJECT,
            scopes=frozenset({ADMIN_SCOPE}),
            audience=[audience],
        )

    def authenticate(self, token: Optional[str]) -> Principal:
        return self._principal


def create_authenticator(settings: JWTSettings) -> Authenticator:
    """
    Select the authentication strategy once, at startup.

    Raises:
        ConfigurationError: If a public key is configured but cannot be parsed
    """
    logger.info(
        "JWT configuration",
        issuer=settings.issuer,
        audience=settings.audience,
        realm=settings.realm,
        expiration_minutes=settings.expiration_minutes,
        public_key="LOADED" if settings.enabled else "NOT CONFIGURED",
        private_key="LOADED" if settings.private_key else "NOT CONFIGURED",
    )

    if settings.enabled:
        logger.info("JWT authentication enabled")
        return JwtAuthenticator(settings)

    logger.warning("JWT authentication is DISABLED - all endpoints are PUBLIC")
    return PassThroughAuthenticator(audience=settings.audience)


class TokenIssuer:
    """Self-issues RS256 tokens. Only available with a private key."""

    def __init__(self, settings: JWTSettings) -> None:
        if not settings.private_key:
            raise ConfigurationError("JWT private key is not configured")
        self.settings = settings
        self._private_key = _normalize_pem(settings.private_key)

    def issue(
        self,
        subject: str,
        scopes: Iterable[str],
        expires_in: Optional[timedelta] = None
    ) -> str:
        """
        Create a signed token.

        Args:
            subject: Caller identity (``sub`` claim)
            scopes: Scopes to grant (space-joined ``scope`` claim)
            expires_in: Lifetime, defaults to the configured expiration

        Returns:
            Encoded JWT
        """
        if not subject.strip():
            raise ValueError("subject must not be blank")

        now = datetime.now(timezone.utc)
        lifetime = expires_in or timedelta(minutes=self.settings.expiration_minutes)
        payload: dict[str, Any] = {
            "sub": subject,
            "iss": self.settings.issuer,
            "aud": [self.settings.audience],
            "scope": " ".join(sorted(set(scopes))),
            "iat": now,
            "exp": now + lifetime,
        }
        return jwt.encode(payload, self._private_key, algorithm=ALGORITHM)


def current_principal() -> Optional[Principal]:
    """Principal of the request being handled, if any."""
    return _current_principal.get()


def set_current_principal(principal: Optional[Principal]) -> Token:
    return _current_principal.set(principal)


def reset_current_principal(token: Token) -> None:
    _current_principal.reset(token)


def can_invoke(
    tool_name: str,
    principal: Optional[Principal],
    authorizer: Optional[RbacAuthorizer] = None
) -> bool:
    """Gate evaluated before dispatching a tool call."""
    if principal is None:
        return False
    return (authorizer or get_authorizer()).is_authorized(tool_name, principal.scopes)


class AuthDependency:
    """
    FastAPI dependency resolving the caller's principal.

    Delegates to the strategy chosen at startup, so routes behave the same
    with authentication on or off.
    """

    def __init__(self, authenticator: Authenticator, realm: str = "MCP Server") -> None:
        self.authenticator = authenticator
        self.realm = realm

    def __call__(
        self,
        credentials: Optional[HTTPAuthorizationCredentials] = None
    ) -> Principal:
        token = credentials.credentials if credentials else None
        try:
            return self.authenticator.authenticate(token)
        except AuthenticationError as e:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail=str(e),
                headers={"WWW-Authenticate": f'Bearer realm="{self.realm}"'},
            )
