"""Authentication collaborators.

The pipeline depends only on ``AbstractAuthenticator``:

- ``authenticate(request)``: verify the request's credentials.
- ``current_user(request)`` / ``current_user_role(request)``: identity claims.
- ``require_auth(request)``: the unauthorized response for this method.

Three static credential sources are provided: API keys (``X-API-Key`` header
or ``api_key`` query parameter), HTTP Basic against configured users, and
bearer tokens (JWT, HS256) issued by the anonymous ``login`` action.
"""

from __future__ import annotations

import base64
import binascii
import hmac
import logging
import time
from abc import ABC, abstractmethod
from collections.abc import Mapping
from typing import Any, Callable

import jwt
from jwt.exceptions import InvalidTokenError

from tablegate.core.config import AuthSettings
from tablegate.core.errors import UnauthenticatedError, ValidationAppError
from tablegate.core.logging import hash_for_log
from tablegate.schemas.actions import ApiRequest, ApiResponse, LoginRequest, TokenResponse

logger = logging.getLogger(__name__)

JWT_ALGORITHM = "HS256"


def parse_api_keys(keys_string: str | None) -> set[str]:
    """Parse comma-separated API keys into a set.

    Examples:
        >>> parse_api_keys("key1, key2 , key3 ") == {"key1", "key2", "key3"}
        True
        >>> parse_api_keys(None)
        set()
    """
    if not keys_string:
        return set()

    return {key.strip() for key in keys_string.split(",") if key.strip()}


def extract_api_key(request: ApiRequest) -> str | None:
    """API key from the ``X-API-Key`` header, else the ``api_key`` query parameter."""
    return request.header("X-API-Key") or request.query.get("api_key") or None


def _bearer_token(request: ApiRequest) -> str | None:
    header = request.header("Authorization") or ""
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def _basic_credentials(request: ApiRequest) -> tuple[str, str] | None:
    header = request.header("Authorization") or ""
    scheme, _, encoded = header.partition(" ")
    if scheme.lower() != "basic" or not encoded:
        return None
    try:
        decoded = base64.b64decode(encoded.strip(), validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError):
        return None
    user, sep, password = decoded.partition(":")
    if not sep or not user:
        return None
    return user, password


def _matches(provided: str, expected: str) -> bool:
    return hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8"))


class AbstractAuthenticator(ABC):
    """Interface for credential verification."""

    method: str = "none"
    supports_login: bool = False

    @abstractmethod
    def authenticate(self, request: ApiRequest) -> bool:
        raise NotImplementedError

    @abstractmethod
    def current_user(self, request: ApiRequest) -> str | None:
        raise NotImplementedError

    @abstractmethod
    def current_user_role(self, request: ApiRequest) -> str | None:
        raise NotImplementedError

    def require_auth(self, request: ApiRequest) -> ApiResponse:
        return ApiResponse(status_code=401, payload={"error": "Unauthorized"})

    def login(self, credentials: LoginRequest) -> TokenResponse:
        raise UnauthenticatedError(
            code="login_not_supported",
            message=f"Login is not available for auth method '{self.method}'",
        )


class ApiKeyAuthenticator(AbstractAuthenticator):
    """Accepts any configured API key; every key maps to one role."""

    method = "apikey"

    def __init__(self, api_keys: set[str], role: str | None) -> None:
        self._keys = frozenset(api_keys)
        self._role = role

    def authenticate(self, request: ApiRequest) -> bool:
        provided = extract_api_key(request)
        if not provided:
            return False
        # Compare against every key so timing does not reveal a partial match.
        matched = False
        for key in self._keys:
            matched |= _matches(provided, key)
        if not matched:
            logger.warning(
                "auth.invalid_api_key",
                extra={"api_key_hash": hash_for_log(provided)},
            )
        return matched

    def current_user(self, request: ApiRequest) -> str | None:
        return None

    def current_user_role(self, request: ApiRequest) -> str | None:
        return self._role


class BasicAuthenticator(AbstractAuthenticator):
    """HTTP Basic against a static username -> password map."""

    method = "basic"

    def __init__(self, users: Mapping[str, str], user_roles: Mapping[str, str]) -> None:
        self._users = dict(users)
        self._user_roles = dict(user_roles)

    def authenticate(self, request: ApiRequest) -> bool:
        credentials = _basic_credentials(request)
        if credentials is None:
            return False
        user, password = credentials
        expected = self._users.get(user)
        return expected is not None and _matches(password, expected)

    def current_user(self, request: ApiRequest) -> str | None:
        # Only verified users count; an unchecked name could spend another user's budget.
        if not self.authenticate(request):
            return None
        credentials = _basic_credentials(request)
        return credentials[0] if credentials else None

    def current_user_role(self, request: ApiRequest) -> str | None:
        user = self.current_user(request)
        return self._user_roles.get(user) if user else None

    def require_auth(self, request: ApiRequest) -> ApiResponse:
        return ApiResponse(
            status_code=401,
            payload={"error": "Unauthorized"},
            headers={"WWW-Authenticate": 'Basic realm="API"'},
        )


class JwtAuthenticator(AbstractAuthenticator):
    """Bearer tokens signed with HMAC-SHA256, issued by ``login``."""

    method = "jwt"
    supports_login = True

    def __init__(
        self,
        secret: str,
        *,
        users: Mapping[str, str],
        user_roles: Mapping[str, str],
        issuer: str = "tablegate",
        audience: str = "tablegate",
        expiration_seconds: int = 3600,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if len(secret) < 32:
            raise ValueError("JWT secret must be at least 32 characters")
        self._secret = secret
        self._users = dict(users)
        self._user_roles = dict(user_roles)
        self._issuer = issuer
        self._audience = audience
        self._expiration = expiration_seconds
        self._clock = clock

    def _claims(self, request: ApiRequest) -> dict[str, Any] | None:
        token = _bearer_token(request)
        if token is None:
            return None
        try:
            # exp is checked below against the same clock that issued it.
            claims = jwt.decode(
                token,
                self._secret,
                algorithms=[JWT_ALGORITHM],
                audience=self._audience,
                issuer=self._issuer,
                options={"require": ["exp", "sub"], "verify_exp": False, "verify_iat": False},
            )
            expires_at = int(claims["exp"])
        except InvalidTokenError as exc:
            logger.debug("auth.invalid_token", extra={"reason": type(exc).__name__})
            return None
        except (TypeError, ValueError):
            logger.debug("auth.invalid_token", extra={"reason": "invalid_exp"})
            return None

        if expires_at <= self._clock():
            logger.debug("auth.invalid_token", extra={"reason": "ExpiredSignatureError"})
            return None
        return claims

    def authenticate(self, request: ApiRequest) -> bool:
        return self._claims(request) is not None

    def current_user(self, request: ApiRequest) -> str | None:
        claims = self._claims(request)
        return str(claims["sub"]) if claims else None

    def current_user_role(self, request: ApiRequest) -> str | None:
        claims = self._claims(request)
        if not claims:
            return None
        return claims.get("role") or self._user_roles.get(str(claims["sub"]))

    def require_auth(self, request: ApiRequest) -> ApiResponse:
        return ApiResponse(
            status_code=401,
            payload={"error": "Unauthorized"},
            headers={"WWW-Authenticate": "Bearer"},
        )

    def issue_token(self, user: str, role: str | None) -> TokenResponse:
        now = int(self._clock())
        expires_at = now + self._expiration
        payload: dict[str, Any] = {
            "sub": user,
            "iat": now,
            "exp": expires_at,
            "iss": self._issuer,
            "aud": self._audience,
        }
        if role:
            payload["role"] = role
        token = jwt.encode(payload, self._secret, algorithm=JWT_ALGORITHM)
        return TokenResponse(token=token, expires_at=expires_at, user=user, role=role)

    def login(self, credentials: LoginRequest) -> TokenResponse:
        expected = self._users.get(credentials.username)
        if expected is None or not _matches(credentials.password, expected):
            logger.warning("auth.login_failed", extra={"user": credentials.username})
            raise UnauthenticatedError(code="invalid_credentials", message="Invalid credentials")

        role = self._user_roles.get(credentials.username)
        logger.info("auth.login_succeeded", extra={"user": credentials.username, "role": role})
        return self.issue_token(credentials.username, role)


def build_authenticator(
    config: AuthSettings,
    *,
    clock: Callable[[], float] = time.time,
) -> AbstractAuthenticator:
    """Instantiate the authenticator for the configured method.

    Raises:
        ValidationAppError: If the method is unknown or misconfigured.
    """
    method = config.method.lower()

    if method == "apikey":
        keys = parse_api_keys(config.api_keys)
        if config.enabled and not keys:
            raise ValidationAppError(
                code="api_keys_not_configured",
                message="API key authentication is enabled but no valid keys are configured",
                details={"hint": "Set AUTH_API_KEYS or disable auth with AUTH_ENABLED=false"},
            )
        return ApiKeyAuthenticator(keys, config.api_key_role)

    if method == "basic":
        return BasicAuthenticator(config.basic_users, config.user_roles)

    if method == "jwt":
        if not config.jwt_secret:
            raise ValidationAppError(
                code="jwt_secret_not_configured",
                message="JWT authentication requires AUTH_JWT_SECRET",
            )
        return JwtAuthenticator(
            config.jwt_secret,
            users=config.basic_users,
            user_roles=config.user_roles,
            issuer=config.jwt_issuer,
            audience=config.jwt_audience,
            expiration_seconds=config.jwt_expiration_seconds,
            clock=clock,
        )

    raise ValidationAppError(
        code="auth_unknown_method",
        message=f"Unknown auth method: '{config.method}'. Supported methods: apikey, basic, jwt",
    )
