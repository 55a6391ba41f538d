#!/usr/bin/env python

"""
Layered HTTP round trippers.

Transports are composed, innermost first, as:

    HttpTransport -> RetryTransport (user agent, retries) -> BasicTransport | BearerTransport -> ErrorTransport

and new_transport() pings the registry to decide which authentication layer applies.
"""

import asyncio
import logging
import os
import time

from abc import ABC, abstractmethod
from copy import copy
from http import HTTPStatus
from ssl import SSLContext
from typing import Any, Awaitable, Callable, Dict, List, NamedTuple, Optional, Union
from urllib.parse import urlparse

import www_authenticate

from aiohttp import ClientError, ClientResponse, ClientSession, Fingerprint
from aiohttp.helpers import BasicAuth

from .authn import AuthConfig, Authenticator
from .errors import (
    error_from_status,
    HTTPError,
    ProtocolError,
    TransientError,
    UnauthorizedError,
)
from .imagename import Registry
from .retry import Backoff, DEFAULT_BACKOFF, retry
from .specs import DockerAuthentication, MediaTypes
from .utils import check_canceled

LOGGER = logging.getLogger(__name__)

DEBUG = os.environ.get("ORCA_DEBUG", "")
DEFAULT_PROTOCOL = os.environ.get("ORCA_DEFAULT_PROTOCOL", "https")
# Seconds before expiry at which a bearer token is refreshed
TOKEN_EXPIRY_MARGIN = 10
TOKEN_EXPIRES_IN_DEFAULT = 60


class Request:
    # pylint: disable=too-many-instance-attributes
    """A single HTTP request."""

    def __init__(
        self,
        method: str,
        url: str,
        *,
        allow_redirects: bool = True,
        data: Any = None,
        expected: List[int] = None,
        headers: Dict[str, str] = None,
        params: Any = None,
    ):
        # pylint: disable=too-many-arguments
        """
        Args:
            method: The HTTP method.
            url: The absolute url.
        Keyword Args:
            allow_redirects: If True, redirects are followed.
            data: The request body; bytes (replayable) or an asynchronous iterable (not replayable).
            expected: The status codes that indicate success.
            headers: The request headers.
            params: The query parameters.
        """
        self.allow_redirects = allow_redirects
        self.data = data
        self.expected = list(expected) if expected else [HTTPStatus.OK]
        self.headers = dict(headers) if headers else {}
        self.method = method
        self.params = params
        self.url = url

    def __repr__(self):
        return f"Request({self.method} {self.url})"

    def is_replayable(self) -> bool:
        """Checks if the request can be issued more than once."""
        return self.data is None or isinstance(self.data, (bytes, bytearray, str))

    def netloc(self) -> str:
        """Returns the (lowercase) <hostname>[:<port>] of the request url."""
        return urlparse(self.url).netloc.lower()

    def with_headers(self, headers: Dict[str, str]) -> "Request":
        """Returns a copy of the request with additional headers."""
        result = copy(self)
        result.headers = {**self.headers, **headers}
        return result


class RoundTripper(ABC):
    """Executes a request and returns the (unreleased) response."""

    @abstractmethod
    async def round_trip(self, request: Request) -> ClientResponse:
        """
        Executes a given request.

        Args:
            request: The request to be executed.

        Returns:
            The response; the caller is responsible for releasing it.
        """


def _redact(headers: Dict[str, str]) -> Dict[str, str]:
    return {
        key: ("<redacted>" if key.lower() == "authorization" else value)
        for key, value in headers.items()
    }


class HttpTransport(RoundTripper):
    """Executes requests using an aiohttp client session."""

    def __init__(
        self,
        session_factory: Callable[[], Awaitable[ClientSession]],
        *,
        no_proxy: List[str] = None,
        proxies: Dict[str, str] = None,
        proxy_auth: BasicAuth = None,
        ssl: Union[None, bool, Fingerprint, SSLContext] = None,
    ):
        # pylint: disable=too-many-arguments
        """
        Args:
            session_factory: Initializes and / or retrieves the client session.
        Keyword Args:
            no_proxy: A list of endpoints to exclude from proxying.
            proxies: Mapping of protocols to proxy urls, optionally including credentials.
            proxy_auth: The credentials to use when proxying.
            ssl: SSL context.
        """
        self.no_proxy = no_proxy if no_proxy else []
        self.proxies = proxies if proxies else {}
        self.proxy_auth = proxy_auth
        self.session_factory = session_factory
        self.ssl = ssl

    def _get_proxy(self, *, endpoint: str, protocol: str) -> Optional[str]:
        """
        Retrieves the proxy configuration for a given endpoint.

        Args:
            endpoint: The endpoint for which to retrieve the proxy configuration.
            protocol: The protocol used to connect to the endpoint.
        """
        result = None
        if endpoint not in self.no_proxy and protocol in self.proxies:
            result = self.proxies[protocol]
        return result

    async def round_trip(self, request: Request) -> ClientResponse:
        check_canceled()
        url = urlparse(request.url)
        kwargs = {}
        if self.ssl is not None:
            kwargs["ssl"] = self.ssl
        proxy = self._get_proxy(endpoint=url.netloc, protocol=url.scheme)
        if proxy:
            kwargs["proxy"] = proxy
            kwargs["proxy_auth"] = self.proxy_auth
        if DEBUG:
            LOGGER.debug(
                "%s %s %s", request.method, request.url, _redact(request.headers)
            )
        client_session = await self.session_factory()
        client_response = await client_session.request(
            request.method,
            request.url,
            allow_redirects=request.allow_redirects,
            data=request.data,
            headers=request.headers,
            params=request.params,
            **kwargs,
        )
        if DEBUG:
            LOGGER.debug(
                "%s %s -> %s", request.method, request.url, client_response.status
            )
        return client_response


class RetryTransport(RoundTripper):
    """Assigns the user agent, and retries replayable requests on network errors, 429 and 5xx responses."""

    def __init__(
        self,
        inner: RoundTripper,
        *,
        backoff: Backoff = DEFAULT_BACKOFF,
        user_agent: str = None,
    ):
        self.backoff = backoff
        self.inner = inner
        self.user_agent = user_agent

    async def _attempt(self, request: Request) -> ClientResponse:
        client_response = await self.inner.round_trip(request)
        status = client_response.status
        if status not in request.expected and (
            status == HTTPStatus.TOO_MANY_REQUESTS or status >= 500
        ):
            body = await client_response.read()
            client_response.release()
            raise error_from_status(
                status, body=body, method=request.method, url=request.url
            )
        return client_response

    async def round_trip(self, request: Request) -> ClientResponse:
        if self.user_agent and "User-Agent" not in request.headers:
            request = request.with_headers({"User-Agent": self.user_agent})
        if not request.is_replayable():
            return await self.inner.round_trip(request)
        return await retry(lambda: self._attempt(request), backoff=self.backoff)


class BasicTransport(RoundTripper):
    """Assigns basic (or registry token) credentials to requests bound for the registry."""

    def __init__(self, inner: RoundTripper, auth_config: AuthConfig, registry: Registry):
        self.auth_config = auth_config
        self.inner = inner
        self.registry = registry

    async def round_trip(self, request: Request) -> ClientResponse:
        # Note: Credentials must not leak to other hosts (e.g. blob storage redirects).
        if (
            request.netloc() == self.registry.registry_str().lower()
            and "Authorization" not in request.headers
        ):
            if self.auth_config.registry_token:
                request = request.with_headers(
                    {"Authorization": f"Bearer {self.auth_config.registry_token}"}
                )
            else:
                credentials = self.auth_config.basic_credentials()
                if credentials:
                    request = request.with_headers(
                        {"Authorization": f"Basic {credentials}"}
                    )
        return await self.inner.round_trip(request)


def parse_challenge(client_response: ClientResponse) -> Dict[str, Any]:
    """
    Parses the WWW-Authenticate header of a given response.

    Returns:
        Mapping of (lowercase) authentication schemes to their parameters; empty if the header is absent.
    """
    header = client_response.headers.get("WWW-Authenticate", None)
    if not header:
        return {}
    try:
        return {
            str(key).lower(): value
            for key, value in www_authenticate.parse(header).items()
        }
    except ValueError:
        LOGGER.debug("Unable to parse WWW-Authenticate: %s", header)
        return {}


class BearerTransport(RoundTripper):
    # pylint: disable=too-many-instance-attributes
    """
    Acquires, assigns and refreshes bearer tokens for requests bound for the registry.

    Concurrent refreshes are serialized and coalesced onto a single token request.
    """

    def __init__(
        self,
        inner: RoundTripper,
        auth_config: AuthConfig,
        registry: Registry,
        *,
        realm: str,
        scopes: List[str],
        service: Optional[str],
    ):
        # pylint: disable=too-many-arguments
        """
        Args:
            inner: The underlying round tripper.
            auth_config: The credentials used to acquire tokens.
            registry: The registry for which tokens are acquired.
        Keyword Args:
            realm: The token endpoint.
            scopes: The scopes to be requested.
            service: The service name advertised by the registry.
        """
        self.auth_config = auth_config
        self.expiry = 0.0
        self.generation = 0
        self.inner = inner
        self.realm = realm
        self.registry = registry
        self.scopes = list(scopes)
        self.service = service
        self.token = None  # type: Optional[str]
        self._lock = None  # type: Optional[asyncio.Lock]

    def _get_lock(self) -> asyncio.Lock:
        if self._lock is None:
            self._lock = asyncio.Lock()
        return self._lock

    def _parse_token(self, payload: Any) -> str:
        if not isinstance(payload, dict):
            raise ProtocolError(None, url=self.realm, message="Malformed token response")
        token = payload.get("token", None) or payload.get("access_token", None)
        if not token:
            raise ProtocolError(
                None, url=self.realm, message="Token response does not contain a token"
            )
        expires_in = payload.get("expires_in", None)
        if not isinstance(expires_in, (int, float)) or expires_in <= 0:
            expires_in = TOKEN_EXPIRES_IN_DEFAULT
        self.expiry = time.monotonic() + expires_in - min(TOKEN_EXPIRY_MARGIN, expires_in / 2)
        return token

    async def _request_token(self, request: Request) -> Any:
        client_response = await self.inner.round_trip(request)
        try:
            body = await client_response.read()
            if client_response.status != HTTPStatus.OK:
                raise error_from_status(
                    client_response.status,
                    body=body,
                    method=request.method,
                    url=request.url,
                )
            try:
                return await client_response.json(content_type=None)
            except ValueError as exception:
                raise ProtocolError(
                    client_response.status,
                    body=body,
                    method=request.method,
                    url=request.url,
                    message="Malformed token response",
                ) from exception
        finally:
            client_response.release()

    async def _fetch_oauth(self) -> str:
        """https://docs.docker.com/registry/spec/auth/oauth/"""
        data = {
            "client_id": DockerAuthentication.CLIENT_ID,
            "grant_type": "refresh_token",
            "refresh_token": self.auth_config.identity_token,
            "scope": " ".join(self.scopes),
        }
        if self.service:
            data["service"] = self.service
        request = Request(
            "POST",
            self.realm,
            data=data,
            headers={"Content-Type": "application/x-www-form-urlencoded"},
        )
        return self._parse_token(await self._request_token(request))

    async def _fetch_token(self) -> str:
        """https://docs.docker.com/registry/spec/auth/token/"""
        params = [("scope", scope) for scope in self.scopes]
        if self.service:
            params.append(("service", self.service))
        headers = {"Accept": MediaTypes.APPLICATION_JSON}
        credentials = self.auth_config.basic_credentials()
        if credentials:
            headers["Authorization"] = f"Basic {credentials}"
        request = Request("GET", self.realm, headers=headers, params=params)
        return self._parse_token(await self._request_token(request))

    async def _refresh(self, generation: int):
        """
        Refreshes the token, unless another task already did so since the given generation was observed.

        Args:
            generation: The token generation observed by the caller.
        """
        async with self._get_lock():
            if generation != self.generation:
                return
            if self.auth_config.registry_token:
                token = self.auth_config.registry_token
                self.expiry = float("inf")
            elif self.auth_config.identity_token:
                try:
                    token = await self._fetch_oauth()
                except HTTPError as exception:
                    if exception.status not in [
                        HTTPStatus.NOT_FOUND,
                        HTTPStatus.METHOD_NOT_ALLOWED,
                        HTTPStatus.UNAUTHORIZED,
                        HTTPStatus.FORBIDDEN,
                    ]:
                        raise
                    LOGGER.debug("OAuth2 token request failed, falling back to GET: %s", exception)
                    token = await self._fetch_token()
            else:
                token = await self._fetch_token()
            self.token = token
            self.generation += 1

    def _authorize(self, request: Request) -> Request:
        return request.with_headers({"Authorization": f"Bearer {self.token}"})

    async def _add_scope(self, client_response: ClientResponse) -> bool:
        """Adds the scope advertised by an "insufficient_scope" challenge; returns True if it was new."""
        bearer = parse_challenge(client_response).get("bearer", None)
        if not isinstance(bearer, dict) or bearer.get("error", None) != "insufficient_scope":
            return False
        added = False
        for scope in str(bearer.get("scope", "")).split(" "):
            if scope and scope not in self.scopes:
                self.scopes.append(scope)
                added = True
        return added

    async def round_trip(self, request: Request) -> ClientResponse:
        if request.netloc() != self.registry.registry_str().lower():
            return await self.inner.round_trip(request)

        generation = self.generation
        if self.token is None or time.monotonic() >= self.expiry:
            await self._refresh(generation)
            generation = self.generation

        client_response = await self.inner.round_trip(self._authorize(request))
        status = client_response.status
        if status in request.expected or not request.is_replayable():
            return client_response

        if status == HTTPStatus.UNAUTHORIZED:
            await self._add_scope(client_response)
        elif not (status == HTTPStatus.FORBIDDEN and await self._add_scope(client_response)):
            return client_response

        # Refresh once and retry exactly once; a second failure is surfaced.
        client_response.release()
        await self._refresh(generation)
        return await self.inner.round_trip(self._authorize(request))


class ErrorTransport(RoundTripper):
    """Normalizes unexpected responses into exceptions."""

    def __init__(self, inner: RoundTripper):
        self.inner = inner

    async def round_trip(self, request: Request) -> ClientResponse:
        client_response = await self.inner.round_trip(request)
        if client_response.status in request.expected:
            return client_response
        try:
            body = await client_response.read()
        finally:
            client_response.release()
        raise error_from_status(
            client_response.status, body=body, method=request.method, url=request.url
        )


class PingResult(NamedTuple):
    # pylint: disable=missing-class-docstring
    protocol: str
    challenge: Optional[str]
    parameters: Dict[str, Any]


async def ping(
    transport: RoundTripper, registry: Registry, *, protocol: str = DEFAULT_PROTOCOL
) -> PingResult:
    """
    Determines the protocol and authentication challenge of a registry.

    Args:
        transport: The round tripper used to issue the ping.
        registry: The registry to be pinged.
        protocol: The protocol tried first; plain http is tried afterwards only for insecure registries.

    Returns:
        protocol: The protocol that responded.
        challenge: "basic", "bearer", or None if the registry does not require authentication.
        parameters: The challenge parameters (realm, service, ...).
    """
    protocols = [protocol]
    if registry.scheme() == "http" and "http" not in protocols:
        protocols.append("http")

    errors = []
    for _protocol in protocols:
        url = f"{_protocol}://{registry.registry_str()}/v2/"
        request = Request(
            "GET", url, expected=[HTTPStatus.OK, HTTPStatus.UNAUTHORIZED]
        )
        try:
            client_response = await transport.round_trip(request)
        except (ClientError, asyncio.TimeoutError, OSError, TransientError) as exception:
            LOGGER.debug("Ping failed: %s: %s", url, exception)
            errors.append(exception)
            continue
        try:
            if client_response.status == HTTPStatus.OK:
                return PingResult(protocol=_protocol, challenge=None, parameters={})
            if client_response.status == HTTPStatus.UNAUTHORIZED:
                challenges = parse_challenge(client_response)
                for challenge in ["bearer", "basic"]:
                    if challenge in challenges:
                        parameters = challenges[challenge]
                        return PingResult(
                            protocol=_protocol,
                            challenge=challenge,
                            parameters=parameters if isinstance(parameters, dict) else {},
                        )
                raise ProtocolError(
                    client_response.status,
                    method="GET",
                    url=url,
                    message=f"Unrecognized WWW-Authenticate challenge: {client_response.headers.get('WWW-Authenticate')}",
                )
            body = await client_response.read()
            raise error_from_status(
                client_response.status, body=body, method="GET", url=url
            )
        finally:
            client_response.release()

    raise TransientError(
        None,
        url=registry.registry_str(),
        message=f"Unable to ping registry {registry}: {'; '.join(str(error) for error in errors)}",
    ) from (errors[-1] if errors else None)


class Transport(RoundTripper):
    """
    An authenticated round tripper bound to a registry and a set of scopes.
    """

    def __init__(
        self,
        inner: RoundTripper,
        *,
        protocol: str,
        registry: Registry,
        scopes: List[str],
    ):
        self.inner = inner
        self.protocol = protocol
        self.registry = registry
        self.scopes = scopes

    async def round_trip(self, request: Request) -> ClientResponse:
        return await self.inner.round_trip(request)

    def url(self, path: str) -> str:
        """Returns the absolute url of a given registry path."""
        return f"{self.protocol}://{self.registry.registry_str()}{path}"


async def new_transport(
    registry: Registry,
    authenticator: Authenticator,
    http_transport: RoundTripper,
    scopes: List[str],
    *,
    backoff: Backoff = DEFAULT_BACKOFF,
    protocol: str = DEFAULT_PROTOCOL,
    user_agent: str = None,
) -> Transport:
    # pylint: disable=too-many-arguments
    """
    Pings a registry and composes the round tripper used to access it.

    Args:
        registry: The registry to be accessed.
        authenticator: Provides the credentials for the registry.
        http_transport: The underlying (unauthenticated) round tripper.
        scopes: The token scopes to request.
    Keyword Args:
        backoff: The retry policy for network errors, 429 and 5xx responses.
        protocol: The protocol tried first.
        user_agent: The User-Agent request header.

    Returns:
        The composed transport.
    """
    inner = RetryTransport(http_transport, backoff=backoff, user_agent=user_agent)
    result = await ping(inner, registry, protocol=protocol)
    auth_config = await authenticator.authorization()

    if result.challenge == "bearer":
        realm = result.parameters.get("realm", None)
        if not realm:
            raise UnauthorizedError(
                HTTPStatus.UNAUTHORIZED,
                url=registry.registry_str(),
                message=f"Bearer challenge from {registry} does not include a realm",
            )
        inner = BearerTransport(
            inner,
            auth_config,
            registry,
            realm=realm,
            scopes=scopes,
            service=result.parameters.get("service", None),
        )
    elif result.challenge == "basic":
        inner = BasicTransport(inner, auth_config, registry)

    return Transport(
        ErrorTransport(inner),
        protocol=result.protocol,
        registry=registry,
        scopes=scopes,
    )
