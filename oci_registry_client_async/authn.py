#!/usr/bin/env python

"""Registry authenticators."""

import base64
import binascii

from abc import ABC, abstractmethod
from typing import Dict, Optional

from .errors import RegistryError


class AuthConfig:
    """
    Credentials for a registry; any of username and password, an identity (refresh) token, or a registry (bearer)
    token.
    """

    def __init__(
        self,
        *,
        username: str = None,
        password: str = None,
        auth: str = None,
        identity_token: str = None,
        registry_token: str = None,
    ):
        # pylint: disable=too-many-arguments
        self.username = username or None
        self.password = password or None
        self.auth = auth or None
        self.identity_token = identity_token or None
        self.registry_token = registry_token or None

    def __eq__(self, other):
        if not isinstance(other, AuthConfig):
            return NotImplemented
        return self.to_json() == other.to_json()

    def __hash__(self):
        return hash(tuple(sorted(self.to_json().items())))

    def __repr__(self):
        # Note: Credentials are intentionally omitted.
        return f"AuthConfig(username={self.username!r})"

    def basic_credentials(self) -> Optional[str]:
        """Returns the base64 encoded "username:password" pair, or None."""
        if not self.username and not self.password:
            return None
        return base64.b64encode(
            f"{self.username or ''}:{self.password or ''}".encode("utf-8")
        ).decode("utf-8")

    @staticmethod
    def from_json(_json: Dict) -> "AuthConfig":
        """
        Initializes an AuthConfig from a docker config "auths" entry. When only "auth" is present, it is decoded as
        base64("username:password").

        Args:
            _json: The "auths" entry.

        Returns:
            The newly initialized AuthConfig.
        """
        username = _json.get("username", None)
        password = _json.get("password", None)
        auth = _json.get("auth", None)
        if auth and not username and not password:
            try:
                decoded = base64.b64decode(auth, validate=False).decode("utf-8")
            except (binascii.Error, UnicodeDecodeError) as exception:
                raise RegistryError("Unable to decode auth field") from exception
            if ":" not in decoded:
                raise RegistryError("Unable to parse auth field, must be formatted as base64(username:password)")
            username, password = decoded.split(":", 1)
        return AuthConfig(
            username=username,
            password=password,
            identity_token=_json.get("identitytoken", None),
            registry_token=_json.get("registrytoken", None),
        )

    def is_anonymous(self) -> bool:
        """Checks if this AuthConfig contains no credentials."""
        return not any(
            [self.username, self.password, self.identity_token, self.registry_token]
        )

    def to_json(self) -> Dict[str, str]:
        """
        Returns the docker config "auths" entry for this AuthConfig. The "auth" field is always derived from the
        username and password.
        """
        result = {}
        if self.username:
            result["username"] = self.username
        if self.password:
            result["password"] = self.password
        auth = self.basic_credentials()
        if auth:
            result["auth"] = auth
        if self.identity_token:
            result["identitytoken"] = self.identity_token
        if self.registry_token:
            result["registrytoken"] = self.registry_token
        return result


class Authenticator(ABC):
    """Yields the credentials used to access a registry."""

    @abstractmethod
    async def authorization(self) -> AuthConfig:
        """Returns the credentials."""


class Anonymous(Authenticator):
    """Sentinel authenticator for anonymous access."""

    async def authorization(self) -> AuthConfig:
        return AuthConfig()

    def __repr__(self):
        return "ANONYMOUS"


ANONYMOUS = Anonymous()


class Basic(Authenticator):
    """Username and password."""

    def __init__(self, username: str, password: str):
        self.username = username
        self.password = password

    async def authorization(self) -> AuthConfig:
        return AuthConfig(username=self.username, password=self.password)

    def __eq__(self, other):
        return (
            isinstance(other, Basic)
            and self.username == other.username
            and self.password == other.password
        )

    def __hash__(self):
        return hash((self.username, self.password))

    def __repr__(self):
        return f"Basic(username={self.username!r})"


class Bearer(Authenticator):
    """A registry token, used verbatim."""

    def __init__(self, token: str):
        self.token = token

    async def authorization(self) -> AuthConfig:
        return AuthConfig(registry_token=self.token)

    def __repr__(self):
        return "Bearer(...)"


class FromConfig(Authenticator):
    """Wraps a given AuthConfig."""

    def __init__(self, auth_config: AuthConfig):
        self.auth_config = auth_config

    async def authorization(self) -> AuthConfig:
        return self.auth_config

    def __eq__(self, other):
        return isinstance(other, FromConfig) and self.auth_config == other.auth_config

    def __hash__(self):
        return hash(self.auth_config)

    def __repr__(self):
        return f"FromConfig({self.auth_config!r})"


def from_auth_config(auth_config: AuthConfig) -> Authenticator:
    """Returns the anonymous sentinel for an empty AuthConfig, otherwise an authenticator wrapping it."""
    if auth_config.is_anonymous():
        return ANONYMOUS
    return FromConfig(auth_config)
