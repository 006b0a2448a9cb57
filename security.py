"""
Authentication and authorization.

- PasswordHasher: salted bcrypt hashes through passlib.
- TokenService: stateless HS256 bearer tokens carrying {email, isAdmin}.
- AuthGate: classifies a request as anonymous, user or admin and rejects it
  before it reaches a handler when the route policy is not met.

Handlers receive the outcome as a typed `Principal` through the FastAPI
dependencies `require_user` / `require_admin`.
"""
import logging
import re
import time
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Pattern, Tuple

import jwt
from fastapi import Request
from passlib.context import CryptContext
from starlette.middleware.base import BaseHTTPMiddleware

from errors import APIError, Forbidden, InvalidToken, Unauthenticated, error_response

logger = logging.getLogger(__name__)

ALGORITHM = "HS256"


class PasswordHasher:
    def __init__(self, rounds: int = 10):
        self.context = CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=rounds)

    def hash(self, password: str) -> str:
        return self.context.hash(password)

    def verify(self, password: str, password_hash: str) -> bool:
        if not password_hash:
            return False
        try:
            return self.context.verify(password, password_hash)
        except ValueError:
            # not a recognisable bcrypt hash
            return False


class Role(str, Enum):
    USER = "user"
    ADMIN = "admin"


@dataclass(frozen=True)
class Principal:
    email: str
    is_admin: bool = False

    @property
    def role(self) -> Role:
        return Role.ADMIN if self.is_admin else Role.USER

    def claims(self) -> dict:
        return {"email": self.email, "isAdmin": self.is_admin}


class TokenService:
    def __init__(self, secret: str, expires_in: Optional[int] = None):
        if not secret:
            raise ValueError("a signing secret is required")
        self._secret = secret
        self.expires_in = expires_in

    def issue(self, principal: Principal) -> str:
        payload = principal.claims()
        if self.expires_in:
            payload["exp"] = int(time.time()) + self.expires_in
        return jwt.encode(payload, self._secret, algorithm=ALGORITHM)

    def verify(self, token: str) -> Principal:
        try:
            payload = jwt.decode(token, self._secret, algorithms=[ALGORITHM])
        except jwt.InvalidTokenError as e:
            logger.warning("Rejected token: %s", e)
            raise InvalidToken() from e

        email = payload.get("email")
        if not isinstance(email, str) or not email:
            logger.warning("Rejected token: missing email claim")
            raise InvalidToken()
        return Principal(email=email, is_admin=payload.get("isAdmin") is True)


class Policy(str, Enum):
    PUBLIC = "public"
    AUTHENTICATED = "authenticated"
    ADMIN = "admin"


SAFE_METHODS = frozenset({"GET", "OPTIONS"})


class AuthGate:
    """
    Per-request state machine: Unverified -> Verified-User | Verified-Admin,
    or Rejected (raises). Verification runs at most once per request.
    """

    def __init__(self, tokens: TokenService, api_prefix: str = "/api/v1"):
        self.tokens = tokens
        self.api_prefix = api_prefix.rstrip("/")
        self.exemptions = self._build_exemptions(self.api_prefix)

    @staticmethod
    def _build_exemptions(api: str) -> Tuple[Tuple[Pattern, Optional[frozenset]], ...]:
        api = re.escape(api)
        return (
            (re.compile(r"/public/uploads(.*)"), SAFE_METHODS),
            (re.compile(api + r"/products(.*)"), SAFE_METHODS),
            (re.compile(api + r"/category(.*)"), SAFE_METHODS),
            (re.compile(api + r"/users/login"), None),
            (re.compile(api + r"/users/register"), None),
        )

    def is_exempt(self, method: str, path: str) -> bool:
        for pattern, methods in self.exemptions:
            if pattern.fullmatch(path) and (methods is None or method.upper() in methods):
                return True
        return False

    def verify(self, authorization: Optional[str]) -> Principal:
        if not authorization:
            raise Unauthenticated("Token Not Found")

        parts = authorization.split()
        if len(parts) != 2 or parts[0].lower() != "bearer":
            raise Unauthenticated("Unauthorized")

        return self.tokens.verify(parts[1])

    def authorize(self, authorization: Optional[str], policy: Policy) -> Optional[Principal]:
        if policy is Policy.PUBLIC:
            return None
        principal = self.verify(authorization)
        if policy is Policy.ADMIN and not principal.is_admin:
            logger.info("Admin route refused for %s", principal.email)
            raise Forbidden()
        return principal


def _gate(request: Request) -> AuthGate:
    return request.app.state.gate


def require_user(request: Request) -> Principal:
    return _gate(request).authorize(request.headers.get("Authorization"), Policy.AUTHENTICATED)


def require_admin(request: Request) -> Principal:
    return _gate(request).authorize(request.headers.get("Authorization"), Policy.ADMIN)


class GlobalAuthMiddleware(BaseHTTPMiddleware):
    """Require a valid token on every request outside the exemption list."""

    def __init__(self, app, gate: AuthGate, expose_errors: bool = True):
        super().__init__(app)
        self.gate = gate
        self.expose_errors = expose_errors

    async def dispatch(self, request: Request, call_next):
        if not self.gate.is_exempt(request.method, request.url.path):
            try:
                self.gate.verify(request.headers.get("Authorization"))
            except APIError as exc:
                return error_response(exc, self.expose_errors)
        return await call_next(request)
