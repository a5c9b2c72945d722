"""
Authentication and authorization.

Two stages guard privileged routes:

1. TokenVerifier: ``extract_bearer_token`` + ``verify_token`` turn an
   ``Authorization: Bearer <token>`` header into an ``Identity``.
2. RoleGate: ``authorize_admin`` looks the identity up in the users
   collection and lets only admins through.

``verify_and_authorize`` composes both. The FastAPI dependencies at the
bottom of this module are what routes declare: ``current_identity`` for
authentication only, ``admin_identity`` for the full chain.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from fastapi import Depends, Header
from pydantic import ValidationError

from database import Store, get_store
from errors import Forbidden, Unauthenticated
from schemas import Identity, Role, User
from settings import Settings, get_settings

logger = logging.getLogger(__name__)

ALGORITHM = "HS256"


def issue_token(claims: dict, secret: str, ttl_seconds: int = 3600) -> str:
    if not claims.get("email"):
        raise ValueError("token claims require an email")
    payload = dict(claims)
    payload["exp"] = datetime.now(timezone.utc) + timedelta(seconds=ttl_seconds)
    return jwt.encode(payload, secret, algorithm=ALGORITHM)


def extract_bearer_token(authorization: Optional[str]) -> str:
    if not authorization:
        raise Unauthenticated()
    scheme, _, token = authorization.strip().partition(" ")
    token = token.strip()
    if scheme.lower() != "bearer" or not token or " " in token:
        raise Unauthenticated()
    return token


def verify_token(token: str, secret: str) -> Identity:
    try:
        payload = jwt.decode(token, secret, algorithms=[ALGORITHM], options={"require": ["exp"]})
    except jwt.ExpiredSignatureError:
        logger.info("Rejected expired token")
        raise Unauthenticated()
    except jwt.InvalidTokenError:
        logger.info("Rejected invalid token")
        raise Unauthenticated()
    try:
        return Identity(email=payload.get("email"))
    except ValidationError:
        raise Unauthenticated()


def authorize_admin(identity: Optional[Identity], store: Store) -> User:
    if identity is None:
        raise RuntimeError("authorize_admin called without a verified identity")
    doc = store.find_user_by_email(identity.email)
    if doc is None:
        logger.info("Forbidden: no user record for %s", identity.email)
        raise Forbidden("forbidden message")
    user = User.model_construct(email=doc["email"], name=doc.get("name"), role=Role.parse(doc.get("role")))
    if not user.is_admin:
        logger.info("Forbidden: %s is not an admin", identity.email)
        raise Forbidden("forbidden message")
    return user


def ensure_self(identity: Identity, email: Optional[str]) -> None:
    """Reject callers acting on a resource owned by someone else."""
    if email != identity.email:
        raise Forbidden()


def verify_and_authorize(
    authorization: Optional[str],
    secret: str,
    store: Optional[Store] = None,
    require_admin: bool = False,
) -> Identity:
    identity = verify_token(extract_bearer_token(authorization), secret)
    if require_admin:
        if store is None:
            raise RuntimeError("admin authorization requires a store")
        authorize_admin(identity, store)
    return identity


def is_admin(identity: Identity, store: Store) -> bool:
    doc = store.find_user_by_email(identity.email)
    return doc is not None and Role.parse(doc.get("role")) is Role.ADMIN


# ===================== FastAPI dependencies =====================

def current_identity(
    authorization: Optional[str] = Header(None),
    settings: Settings = Depends(get_settings),
) -> Identity:
    return verify_and_authorize(authorization, settings.access_token_secret)


def admin_identity(
    identity: Identity = Depends(current_identity),
    store: Store = Depends(get_store),
) -> Identity:
    authorize_admin(identity, store)
    return identity
