#!/usr/bin/env python

"""
Keychains resolve a registry (or repository) to the authenticator used to access it.

A target is any object that provides __str__ (the full name, e.g. "gcr.io/my-project") and registry_str() (the
registry endpoint, e.g. "gcr.io"); Registry, Repository and ImageName all qualify.
"""

import asyncio
import fnmatch
import json
import logging
import os

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Iterable, List, Optional
from urllib.parse import urlparse

import aiofiles

from .authn import (
    ANONYMOUS,
    AuthConfig,
    Authenticator,
    Basic,
    from_auth_config,
)
from .errors import CredentialHelperError, RegistryError
from .imagename import ImageName, Repository
from .specs import DockerAuthentication, Indices

LOGGER = logging.getLogger(__name__)

CONFIG_FILE_NAME = "config.json"
PODMAN_AUTH_FILE_NAME = "auth.json"


class Keychain(ABC):
    """Resolves a target to an authenticator."""

    @abstractmethod
    async def resolve(self, target) -> Authenticator:
        """
        Looks up the most appropriate credentials for a given target.

        Args:
            target: The registry or repository for which to resolve credentials.

        Returns:
            The corresponding authenticator; ANONYMOUS if none apply.
        """


class CredentialHelper:
    """
    Executes a docker credential helper; https://github.com/docker/docker-credential-helpers
    """

    NOT_FOUND = "credentials not found in native keychain"

    def __init__(self, name: str):
        """
        Args:
            name: The name of the helper; the binary is "docker-credential-<name>".
        """
        self.name = name
        self.binary = f"docker-credential-{name}"

    async def get(self, server_url: str) -> AuthConfig:
        """
        Retrieves the credentials for a given server.

        Args:
            server_url: The server for which to retrieve credentials.

        Returns:
            The retrieved credentials; empty if the helper does not have any.
        """
        try:
            process = await asyncio.create_subprocess_exec(
                self.binary,
                "get",
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exception:
            raise CredentialHelperError(
                f"Unable to execute {self.binary}: {exception}"
            ) from exception
        stdout, stderr = await process.communicate(server_url.encode("utf-8"))
        output = stdout.decode("utf-8", errors="replace").strip()
        error = stderr.decode("utf-8", errors="replace").strip()

        if (
            CredentialHelper.NOT_FOUND in output.lower()
            or CredentialHelper.NOT_FOUND in error.lower()
        ):
            return AuthConfig()
        if process.returncode != 0:
            raise CredentialHelperError(
                f"{self.binary} get failed with exit code {process.returncode}: "
                f"{CredentialHelper._redact(output) or error}"
            )

        try:
            payload = json.loads(output)
            username = payload.get("Username", None)
            secret = payload.get("Secret", None)
        except (AttributeError, ValueError) as exception:
            raise CredentialHelperError(
                f"{self.binary} get returned malformed output"
            ) from exception
        if username == DockerAuthentication.IDENTITY_TOKEN_USERNAME:
            return AuthConfig(identity_token=secret)
        return AuthConfig(username=username, password=secret)

    @staticmethod
    def _redact(output: str) -> str:
        """Hides helper output that could contain credentials."""
        try:
            json.loads(output)
        except ValueError:
            return output
        return "<output redacted>"


def _auths_keys(registry: str) -> List[str]:
    """Returns the "auths" keys, in order of preference, under which credentials for a registry may be stored."""
    result = []
    if registry == Indices.DOCKERHUB:
        result.append(DockerAuthentication.DOCKERHUB_CONFIG_KEY)
    for prefix in ["", "https://", "http://"]:
        for suffix in ["", "/v1/", "/v2/"]:
            result.append(f"{prefix}{registry}{suffix}")
    if registry == Indices.DOCKERHUB:
        result.extend(Indices.DOCKERHUB_ALIASES)
    return result


def _to_hostname(key: str) -> str:
    """Strips the scheme and path from an "auths" key."""
    if "://" in key:
        key = key.split("://", 1)[1]
    key = key.split("/", 1)[0]
    return Indices.DOCKERHUB if key in Indices.DOCKERHUB_ALIASES else key


class ConfigFile:
    """
    A docker config.json, or podman auth.json, file.
    """

    def __init__(self, _json: Dict, *, path: Path = None):
        self.path = path
        self.auths = _json.get("auths", None) or {}
        self.cred_helpers = _json.get("credHelpers", None) or {}
        self.creds_store = _json.get("credsStore", None)

    @staticmethod
    async def load(path: Path) -> "ConfigFile":
        """
        Loads a configuration file.

        Args:
            path: Path to the configuration file.

        Returns:
            The parsed configuration file.
        """
        LOGGER.debug("Loading registry credentials from: %s", path)
        async with aiofiles.open(path, mode="rb") as file:
            content = await file.read()
        try:
            _json = json.loads(content) if content.strip() else {}
        except ValueError as exception:
            raise RegistryError(
                f"Unable to parse configuration file: {path}"
            ) from exception
        if not isinstance(_json, dict):
            raise RegistryError(f"Malformed configuration file: {path}")
        return ConfigFile(_json, path=path)

    async def get_auth_config(self, registry: str) -> AuthConfig:
        """
        Retrieves the credentials for a given registry. Credential helpers take precedence over "auths" entries.

        Args:
            registry: The registry endpoint; <hostname>[:<port>].

        Returns:
            The corresponding credentials; empty if there are none.
        """
        helper = self.cred_helpers.get(registry, None) or self.creds_store
        if helper:
            server_url = (
                DockerAuthentication.DOCKERHUB_CONFIG_KEY
                if registry == Indices.DOCKERHUB
                else registry
            )
            return await CredentialHelper(helper).get(server_url)
        return self.get_auths_entry(registry)

    def get_auths_entry(self, registry: str) -> AuthConfig:
        """Retrieves the "auths" entry for a given registry, trying known key variants."""
        for key in _auths_keys(registry):
            if key in self.auths:
                return AuthConfig.from_json(self.auths[key])
        for key, value in self.auths.items():
            if _to_hostname(key) == registry:
                return AuthConfig.from_json(value)
        return AuthConfig()


def find_config_file() -> Optional[Path]:
    """
    Locates the registry configuration file: $DOCKER_CONFIG/config.json, then $HOME/.docker/config.json, then
    $XDG_RUNTIME_DIR/containers/auth.json.
    """
    candidates = []
    if os.environ.get("DOCKER_CONFIG", None):
        candidates.append(Path(os.environ["DOCKER_CONFIG"]).joinpath(CONFIG_FILE_NAME))
    home = os.environ.get("HOME", None)
    if home:
        candidates.append(Path(home).joinpath(".docker", CONFIG_FILE_NAME))
    if os.environ.get("XDG_RUNTIME_DIR", None):
        candidates.append(
            Path(os.environ["XDG_RUNTIME_DIR"]).joinpath(
                "containers", PODMAN_AUTH_FILE_NAME
            )
        )
    for candidate in candidates:
        if candidate.is_file():
            return candidate
    return None


class CachingKeychain(Keychain):
    """Caches resolved authenticators per target."""

    def __init__(self):
        self.cache = {}  # type: Dict[str, Authenticator]
        self._lock = None  # type: Optional[asyncio.Lock]

    def _get_lock(self) -> asyncio.Lock:
        if self._lock is None:
            self._lock = asyncio.Lock()
        return self._lock

    @abstractmethod
    async def _resolve(self, target) -> Authenticator:
        """Resolves the authenticator of a target that is not yet cached."""

    async def resolve(self, target) -> Authenticator:
        async with self._get_lock():
            key = str(target)
            if key not in self.cache:
                self.cache[key] = await self._resolve(target)
            return self.cache[key]


class DefaultKeychain(CachingKeychain):
    """
    Resolves credentials using the docker (or podman) configuration file and credential helpers.
    """

    def __init__(self, *, config_path: Path = None):
        """
        Args:
            config_path: Path to the configuration file; discovered from the environment if omitted.
        """
        super().__init__()
        self.config_path = config_path

    async def _resolve(self, target) -> Authenticator:
        path = self.config_path or find_config_file()
        if not path or not Path(path).is_file():
            return ANONYMOUS
        config_file = await ConfigFile.load(Path(path))
        auth_config = await config_file.get_auth_config(target.registry_str())
        return from_auth_config(auth_config)


class MultiKeychain(Keychain):
    """Consults keychains in order; the first non-anonymous authenticator wins."""

    def __init__(self, *keychains: Keychain):
        self.keychains = list(keychains)

    async def resolve(self, target) -> Authenticator:
        for keychain in self.keychains:
            authenticator = await keychain.resolve(target)
            if authenticator is not ANONYMOUS:
                return authenticator
        return ANONYMOUS


class GitHubKeychain(Keychain):
    """Resolves ghcr.io using the GITHUB_TOKEN (and GITHUB_ACTOR) environment variables."""

    async def resolve(self, target) -> Authenticator:
        if target.registry_str() != Indices.GHCR:
            return ANONYMOUS
        token = os.environ.get("GITHUB_TOKEN", None)
        if not token:
            return ANONYMOUS
        return Basic(os.environ.get("GITHUB_ACTOR", None) or "unset", token)


class KubernetesKeychain(Keychain):
    """
    Resolves credentials from kubernetes image pull secrets. Keys are matched against "<registry>/<repository>" by
    longest prefix, with support for "*." wildcards in hostnames; ports must match.
    """

    def __init__(self, entries: Dict[str, AuthConfig]):
        """
        Args:
            entries: Mapping of (normalized) keys to credentials.
        """
        self.entries = entries
        # Reverse lexicographical order places longer paths before their prefixes
        self.keys = sorted(entries.keys(), reverse=True)

    @staticmethod
    def _normalize(key: str) -> str:
        if "://" not in key:
            key = f"https://{key}"
        url = urlparse(key)
        host = url.netloc
        if host in Indices.DOCKERHUB_ALIASES:
            host = Indices.DOCKERHUB
        path = url.path
        if path in ["/v1/", "/v2/", "/"]:
            path = ""
        return f"{host}{path.rstrip('/')}"

    @staticmethod
    def _matches(key: str, target: str) -> bool:
        key_host, _, key_path = key.partition("/")
        target_host, _, target_path = target.partition("/")

        key_host, _, key_port = key_host.partition(":")
        target_host, _, target_port = target_host.partition(":")
        if key_port != target_port:
            return False

        key_parts = key_host.split(".")
        target_parts = target_host.split(".")
        if len(key_parts) != len(target_parts):
            return False
        if not all(
            fnmatch.fnmatchcase(target_part, key_part)
            for key_part, target_part in zip(key_parts, target_parts)
        ):
            return False

        if not key_path:
            return True
        return target_path == key_path or target_path.startswith(f"{key_path}/")

    @staticmethod
    def from_docker_configs(configs: Iterable[Dict]) -> "KubernetesKeychain":
        """
        Initializes a keychain from the content of image pull secrets; either ".dockerconfigjson" documents (with
        an "auths" member) or legacy ".dockercfg" documents.

        Args:
            configs: The parsed documents, in order of precedence.

        Returns:
            The newly initialized keychain.
        """
        entries = {}
        for config in configs:
            auths = config.get("auths", config)
            for key, value in auths.items():
                normalized = KubernetesKeychain._normalize(key)
                if normalized not in entries:
                    entries[normalized] = AuthConfig.from_json(value)
        return KubernetesKeychain(entries)

    async def resolve(self, target) -> Authenticator:
        name = str(target)
        for key in self.keys:
            if KubernetesKeychain._matches(key, name):
                return from_auth_config(self.entries[key])
        return ANONYMOUS


def parse_auth_pair(auth_pairs: Optional[Dict[str, str]], auth_pair: str) -> Dict[str, str]:
    """
    Parses an auth pair of the form <repository>:<configuration directory> into a given mapping.

    Args:
        auth_pairs: The mapping to be updated, or None.
        auth_pair: The auth pair to be parsed.

    Returns:
        The updated mapping.
    """
    if auth_pairs is None:
        auth_pairs = {}
    reference, separator, directory = auth_pair.rpartition(":")
    if not separator or not reference or not directory:
        raise ValueError(f"Invalid auth pair: {auth_pair}")
    auth_pairs[str(ImageName.parse(reference).context())] = directory
    return auth_pairs


class AuthPairsKeychain(CachingKeychain):
    """
    Resolves repositories using per repository configuration directories, containing either a docker config.json
    or a podman auth.json. Other targets are resolved using a fallback keychain.
    """

    def __init__(self, auth_pairs: Dict[str, str], *, fallback: Keychain = None):
        """
        Args:
            auth_pairs: Mapping of repository names to configuration directories.
            fallback: The keychain used for targets without an auth pair.
        """
        super().__init__()
        self.auth_pairs = {
            str(Repository(key)): value for key, value in auth_pairs.items()
        }
        self.fallback = fallback

    async def _resolve(self, target) -> Authenticator:
        key = str(target)
        if key not in self.auth_pairs:
            fallback = self.fallback if self.fallback else get_default_keychain()
            return await fallback.resolve(target)

        directory = Path(self.auth_pairs[key])
        path = None
        for name in [CONFIG_FILE_NAME, PODMAN_AUTH_FILE_NAME]:
            if directory.joinpath(name).is_file():
                path = directory.joinpath(name)
                break
        if path is None:
            return ANONYMOUS
        config_file = await ConfigFile.load(path)
        auth_config = await config_file.get_auth_config(target.registry_str())
        return from_auth_config(auth_config)


_DEFAULT_KEYCHAIN = None  # type: Optional[Keychain]


def get_default_keychain() -> Keychain:
    """Returns the process wide default keychain, creating it on first use."""
    global _DEFAULT_KEYCHAIN  # pylint: disable=global-statement
    if _DEFAULT_KEYCHAIN is None:
        _DEFAULT_KEYCHAIN = MultiKeychain(DefaultKeychain(), GitHubKeychain())
    return _DEFAULT_KEYCHAIN


def set_default_keychain(keychain: Keychain):
    """
    Assigns the process wide default keychain. It may only be assigned once, before first use.

    Args:
        keychain: The keychain to be assigned.
    """
    global _DEFAULT_KEYCHAIN  # pylint: disable=global-statement
    if _DEFAULT_KEYCHAIN is not None:
        raise RegistryError("The default keychain has already been initialized")
    _DEFAULT_KEYCHAIN = keychain
