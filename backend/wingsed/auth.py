"""Authentication helpers and FastAPI security dependencies.

Session tokens are issued by Clerk. `ClerkClient` verifies a bearer token
against the instance's JWKS and loads the matching user record over the
Clerk REST API. `get_current_user` is the route dependency built on top of
it; `require_admin` additionally checks the local user's role.

Any verification problem surfaces as HTTPException(401) so the helpers can
be used directly inside route dependencies. Tests replace the client via
`app.dependency_overrides[get_clerk_client]`.
"""

import logging
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

import httpx
import jwt
from fastapi import Depends, HTTPException, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlmodel import Session

from . import models, repositories
from .config import settings
from .database import get_session
from .errors import ForbiddenError

logger = logging.getLogger("wingsed.auth")

bearer_scheme = HTTPBearer(auto_error=False)


@dataclass
class ClerkUser:
    """The identity provider's view of the caller."""
    id: str
    email: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None

    @property
    def full_name(self) -> Optional[str]:
        name = " ".join(p for p in (self.first_name, self.last_name) if p)
        return name or None


def first_email(data: dict) -> Optional[str]:
    """Return the first email address of a Clerk user payload."""
    for entry in data.get("email_addresses") or []:
        if entry.get("email_address"):
            return entry["email_address"]
    return None


class ClerkClient:
    """Thin wrapper over Clerk token verification and the users endpoint."""

    def __init__(self, secret_key: str, api_url: str, jwks_url: str, timeout: float = 10.0):
        self.secret_key = secret_key
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self._jwks = jwt.PyJWKClient(jwks_url, headers={"Authorization": f"Bearer {secret_key}"})

    def verify_token(self, token: str) -> dict:
        """Verify signature and expiry of a session token and return its claims."""
        signing_key = self._jwks.get_signing_key_from_jwt(token)
        return jwt.decode(
            token,
            signing_key.key,
            algorithms=["RS256"],
            options={"require": ["sub", "exp"], "verify_aud": False},
        )

    def get_user(self, user_id: str) -> ClerkUser:
        resp = httpx.get(
            f"{self.api_url}/users/{user_id}",
            headers={"Authorization": f"Bearer {self.secret_key}"},
            timeout=self.timeout,
        )
        resp.raise_for_status()
        data = resp.json()
        return ClerkUser(
            id=data["id"],
            email=first_email(data) or "",
            first_name=data.get("first_name"),
            last_name=data.get("last_name"),
        )


@lru_cache(maxsize=1)
def get_clerk_client() -> ClerkClient:
    return ClerkClient(settings.CLERK_SECRET_KEY, settings.CLERK_API_URL, settings.CLERK_JWKS_URL)


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Security(bearer_scheme),
    clerk: ClerkClient = Depends(get_clerk_client),
) -> ClerkUser:
    """FastAPI dependency that returns the authenticated Clerk user.

    Raises HTTPException(401) when the header is missing, the token does
    not verify, or the provider user cannot be loaded.
    """
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise HTTPException(status_code=401, detail="No authorization token provided")
    try:
        claims = clerk.verify_token(credentials.credentials)
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except (jwt.PyJWTError, httpx.HTTPError) as exc:
        logger.info("token verification failed: %s", exc)
        raise HTTPException(status_code=401, detail="Invalid token")
    user_id = claims.get("sub")
    if not user_id:
        raise HTTPException(status_code=401, detail="Invalid token payload")
    try:
        return clerk.get_user(user_id)
    except (httpx.HTTPError, KeyError, ValueError) as exc:
        logger.warning("could not load clerk user %s: %s", user_id, exc)
        raise HTTPException(status_code=401, detail="Invalid token")


def require_admin(
    user: ClerkUser = Depends(get_current_user),
    db: Session = Depends(get_session),
) -> ClerkUser:
    """Allow only callers whose local user row carries the ADMIN role."""
    local = repositories.UserRepository(db).get_by_clerk_id(user.id)
    if not local:
        raise ForbiddenError("User not found in database")
    if local.role != models.Role.ADMIN:
        raise ForbiddenError("Admin access required")
    return user
