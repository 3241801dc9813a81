"""User identity and the authentication capability."""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import Protocol


class ProviderKind(StrEnum):
    """Which identity scheme a credential or identity belongs to."""

    PRIMARY = "primary"
    SECONDARY = "secondary"


@dataclass(frozen=True)
class PrimaryIdentity:
    """User recognized by the primary auth provider."""

    user_id: str

    @property
    def kind(self) -> ProviderKind:
        return ProviderKind.PRIMARY

    @property
    def key(self) -> str:
        return f"{self.kind.value}:{self.user_id}"


@dataclass(frozen=True)
class SecondaryIdentity:
    """User recognized through a separately authenticated OAuth account."""

    user_id: str

    @property
    def kind(self) -> ProviderKind:
        return ProviderKind.SECONDARY

    @property
    def key(self) -> str:
        return f"{self.kind.value}:{self.user_id}"


UserIdentity = PrimaryIdentity | SecondaryIdentity


def identity_from_key(key: str) -> UserIdentity:
    """Parse ``"<kind>:<user_id>"`` back into an identity.

    Raises:
        ValueError: If the key is malformed or the kind is unknown.
    """
    kind, sep, user_id = key.partition(":")
    if not sep or not user_id:
        raise ValueError(f"Invalid identity key: {key!r}")
    if kind == ProviderKind.PRIMARY:
        return PrimaryIdentity(user_id)
    if kind == ProviderKind.SECONDARY:
        return SecondaryIdentity(user_id)
    raise ValueError(f"Unknown identity kind: {kind!r}")


@dataclass(frozen=True)
class Credential:
    """A token the client presents to the remote store."""

    provider_kind: ProviderKind
    token: str


class AuthCapability(Protocol):
    """Source of the current client credential."""

    async def get_current_identity(self) -> Credential | None: ...


class StaticAuth:
    """Auth capability backed by a fixed, replaceable credential."""

    def __init__(self, credential: Credential | None = None) -> None:
        self._credential = credential

    def set_credential(self, credential: Credential | None) -> None:
        self._credential = credential

    async def get_current_identity(self) -> Credential | None:
        return self._credential


class IdentityResolver(Protocol):
    """Turns a presented credential into a user identity."""

    async def resolve(self, credential: Credential) -> UserIdentity | None: ...


class TrustingResolver:
    """Resolver that takes the token itself as the user ID.

    For in-process wiring and tests only; nothing is verified.
    """

    async def resolve(self, credential: Credential) -> UserIdentity | None:
        if not credential.token:
            return None
        if credential.provider_kind == ProviderKind.PRIMARY:
            return PrimaryIdentity(credential.token)
        return SecondaryIdentity(credential.token)
