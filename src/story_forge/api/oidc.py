"""OpenID Connect bearer-token validation for identity-provider auth mode."""

from __future__ import annotations

import json
import os
import time
from dataclasses import dataclass
from typing import Any, cast

import httpx
import jwt
from cryptography.hazmat.primitives.asymmetric.rsa import RSAPublicKey

from story_forge.adapters.observability import int_env


@dataclass(frozen=True)
class OidcClaims:
    """Verified identity claims used to resolve a player record."""

    subject: str
    issuer: str
    email: str | None
    nickname: str | None
    name: str | None
    picture: str | None
    audience: str | None

    @property
    def display_name(self) -> str:
        return self.nickname or self.name or self.email or "Player"


@dataclass
class _OidcCache:
    value: dict[str, Any] | None = None
    expires_at: float = 0.0


_JWKS_CACHE = _OidcCache()
_WELL_KNOWN_CACHE = _OidcCache()


def _env(name: str, default: str = "") -> str:
    return os.environ.get(name, default).strip()


def _optional_claim(payload: dict[str, Any], key: str) -> str | None:
    value = payload.get(key)
    return value if isinstance(value, str) and value.strip() else None


def _fetch_json(url: str) -> dict[str, Any]:
    with httpx.Client(timeout=10.0, follow_redirects=True) as client:
        response = client.get(url)
        response.raise_for_status()
        payload = response.json()
    if not isinstance(payload, dict):
        raise RuntimeError(f"OIDC response from {url} was not an object.")
    return payload


def _fetch_well_known(issuer: str) -> dict[str, Any]:
    ttl_seconds = int_env("STORY_FORGE_OIDC_WELL_KNOWN_TTL_SECONDS", 300, minimum=30, maximum=3600)
    now = time.monotonic()
    if _WELL_KNOWN_CACHE.value is not None and _WELL_KNOWN_CACHE.expires_at > now:
        return _WELL_KNOWN_CACHE.value
    payload = _fetch_json(issuer.rstrip("/") + "/.well-known/openid-configuration")
    _WELL_KNOWN_CACHE.value = payload
    _WELL_KNOWN_CACHE.expires_at = now + ttl_seconds
    return payload


def _resolve_jwks_url(issuer: str) -> str:
    explicit = _env("STORY_FORGE_OIDC_JWKS_URL")
    if explicit:
        return explicit
    jwks_uri = _fetch_well_known(issuer).get("jwks_uri")
    if isinstance(jwks_uri, str) and jwks_uri:
        return jwks_uri
    raise RuntimeError("OIDC well-known config missing jwks_uri.")


def _fetch_jwks(issuer: str) -> dict[str, Any]:
    inline = _env("STORY_FORGE_OIDC_JWKS_JSON")
    if inline:
        payload = json.loads(inline)
        if not isinstance(payload, dict):
            raise RuntimeError("OIDC JWKS JSON must be an object.")
        return payload
    ttl_seconds = int_env("STORY_FORGE_OIDC_JWKS_TTL_SECONDS", 300, minimum=30, maximum=3600)
    now = time.monotonic()
    if _JWKS_CACHE.value is not None and _JWKS_CACHE.expires_at > now:
        return _JWKS_CACHE.value
    payload = _fetch_json(_resolve_jwks_url(issuer))
    _JWKS_CACHE.value = payload
    _JWKS_CACHE.expires_at = now + ttl_seconds
    return payload


def _select_jwk(jwks: dict[str, Any], kid: str | None) -> dict[str, Any]:
    keys = jwks.get("keys")
    if not isinstance(keys, list):
        raise RuntimeError("OIDC JWKS payload missing keys list.")
    if kid is None:
        if len(keys) == 1 and isinstance(keys[0], dict):
            return keys[0]
        raise RuntimeError("OIDC token header missing kid and JWKS has multiple keys.")
    for key in keys:
        if isinstance(key, dict) and key.get("kid") == kid:
            return key
    raise RuntimeError("OIDC JWKS did not contain signing key for token kid.")


def validate_oidc_token(token: str) -> OidcClaims:
    """Validate a bearer token against the configured issuer and audience."""
    issuer = _env("STORY_FORGE_OIDC_ISSUER")
    if not issuer:
        raise RuntimeError("STORY_FORGE_OIDC_ISSUER is required for oidc auth.")
    audience = _env("STORY_FORGE_OIDC_AUDIENCE")
    algorithms = [
        algo.strip() for algo in _env("STORY_FORGE_OIDC_ALGORITHMS", "RS256").split(",")
    ]
    algorithms = [algo for algo in algorithms if algo] or ["RS256"]

    header = jwt.get_unverified_header(token)
    kid = header.get("kid") if isinstance(header, dict) else None
    jwk = _select_jwk(_fetch_jwks(issuer), kid)
    public_key = cast(RSAPublicKey, jwt.algorithms.RSAAlgorithm.from_jwk(json.dumps(jwk)))
    options: dict[str, bool] = {"verify_aud": bool(audience)}
    payload = jwt.decode(
        token,
        key=public_key,
        algorithms=algorithms,
        audience=audience or None,
        issuer=issuer,
        options=cast(Any, options),
    )
    if not isinstance(payload, dict):
        raise RuntimeError("OIDC token payload was not an object.")
    subject = payload.get("sub")
    if not isinstance(subject, str) or not subject.strip():
        raise RuntimeError("OIDC token missing subject.")
    return OidcClaims(
        subject=subject,
        issuer=issuer,
        email=_optional_claim(payload, "email"),
        nickname=_optional_claim(payload, "nickname")
        or _optional_claim(payload, "preferred_username"),
        name=_optional_claim(payload, "name"),
        picture=_optional_claim(payload, "picture"),
        audience=audience or None,
    )
