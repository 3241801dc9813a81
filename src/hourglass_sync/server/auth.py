"""Credential extraction and token verification for the document API."""

from __future__ import annotations

import base64
import binascii
import logging
from typing import Any

import httpx
from fastapi import Request

from hourglass_sync.core.identity import (
    Credential,
    PrimaryIdentity,
    ProviderKind,
    SecondaryIdentity,
    TrustingResolver,
    UserIdentity,
)
from hourglass_sync.utils.config import Config

logger = logging.getLogger(__name__)

SECONDARY_TOKEN_HEADER = "X-Secondary-Token"
SECONDARY_TOKEN_COOKIE = "google_access_token"


def decode_cookie_token(value: str) -> str | None:
    """Decode a base64-wrapped access token cookie."""
    try:
        decoded = base64.b64decode(value, validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError):
        return None
    return decoded or None


def credentials_from_request(request: Request) -> list[Credential]:
    """Credentials presented by a request, in resolution order.

    A bearer token is tried as the primary identity first.  The secondary
    token comes from the ``X-Secondary-Token`` header, or failing that from
    the ``google_access_token`` cookie.
    """
    found: list[Credential] = []

    authorization = request.headers.get("Authorization", "")
    if authorization.startswith("Bearer "):
        token = authorization[len("Bearer ") :].strip()
        if token:
            found.append(Credential(ProviderKind.PRIMARY, token))

    secondary = request.headers.get(SECONDARY_TOKEN_HEADER, "").strip()
    if not secondary:
        cookie = request.cookies.get(SECONDARY_TOKEN_COOKIE)
        if cookie:
            secondary = decode_cookie_token(cookie) or ""
    if secondary:
        found.append(Credential(ProviderKind.SECONDARY, secondary))

    return found


class ProviderResolver:
    """Verify tokens against the configured identity providers with httpx.

    Primary tokens are checked against ``primary_userinfo_url`` (a Supabase
    style ``/auth/v1/user`` endpoint, with ``primary_api_key`` sent as the
    ``apikey`` header).  Secondary tokens are checked against the Google
    userinfo endpoint.  Either endpoint must answer with a JSON object
    carrying the user's ``id``.
    """

    def __init__(self, config: Config, *, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self._config = config
        self._transport = transport

    async def resolve(self, credential: Credential) -> UserIdentity | None:
        if credential.provider_kind == ProviderKind.PRIMARY:
            url = self._config.primary_userinfo_url
            if not url:
                logger.debug("No primary identity provider configured")
                return None
            headers = {"Authorization": f"Bearer {credential.token}"}
            if self._config.primary_api_key:
                headers["apikey"] = self._config.primary_api_key
            user_id = await self._fetch_user_id(url, headers)
            return PrimaryIdentity(user_id) if user_id else None

        user_id = await self._fetch_user_id(
            self._config.secondary_userinfo_url,
            {"Authorization": f"Bearer {credential.token}"},
        )
        return SecondaryIdentity(user_id) if user_id else None

    async def _fetch_user_id(self, url: str, headers: dict[str, str]) -> str | None:
        try:
            async with httpx.AsyncClient(
                timeout=self._config.auth_timeout, transport=self._transport
            ) as client:
                resp = await client.get(url, headers=headers)
                resp.raise_for_status()
                body: Any = resp.json()
        except httpx.HTTPStatusError as exc:
            logger.debug("Identity provider %s rejected token: %s", url, exc.response.status_code)
            return None
        except httpx.HTTPError as exc:
            logger.warning("Identity provider %s not reachable: %s", url, exc)
            return None
        except ValueError:
            logger.warning("Identity provider %s returned invalid JSON", url)
            return None

        if not isinstance(body, dict):
            return None
        user_id = body.get("id") or body.get("sub")
        return str(user_id) if user_id else None


def build_resolver(config: Config) -> ProviderResolver | TrustingResolver:
    if config.trust_tokens:
        logger.warning("HOURGLASS_TRUST_TOKENS is set: tokens are accepted without verification")
        return TrustingResolver()
    return ProviderResolver(config)
