#!/usr/bin/env python

# pylint: disable=too-many-lines,too-many-public-methods

"""Asynchronous OCI Distribution Registry Client."""

import asyncio
import logging
import os

from http import HTTPStatus
from ssl import create_default_context, SSLContext
from typing import AsyncIterator, Dict, List, Optional, Union
from urllib.parse import urljoin

from aiohttp import (
    AsyncResolver,
    ClientResponse,
    ClientSession,
    Fingerprint,
    TCPConnector,
)
from aiohttp.helpers import BasicAuth
from yarl import URL

from .authn import Authenticator
from .formattedsha256 import FormattedSHA256
from .hashinggenerator import HashingGenerator
from .imagename import ImageName, Registry, Repository
from .keychain import get_default_keychain, Keychain
from .manifest import Manifest
from .retry import Backoff, DEFAULT_BACKOFF
from .specs import ACCEPTED_MANIFEST_TYPES, MediaTypes
from .transport import HttpTransport, new_transport, ping, Request, RetryTransport, Transport
from .typing import (
    RegistryClientAsyncResult,
    RegistryClientAsyncGetBlob,
    RegistryClientAsyncGetBlobUpload,
    RegistryClientAsyncGetCatalog,
    RegistryClientAsyncGetManifest,
    RegistryClientAsyncGetTags,
    RegistryClientAsyncGetVersion,
    RegistryClientAsyncHeadBlob,
    RegistryClientAsyncHeadManifest,
    RegistryClientAsyncPatchBlobUpload,
    RegistryClientAsyncPostBlob,
    RegistryClientAsyncPutBlobUpload,
    RegistryClientAsyncPutManifest,
    UtilsChunkToFile,
)
from .utils import CHUNK_SIZE, chunk_to_file, must_be_equal

LOGGER = logging.getLogger(__name__)

ACTIONS_PULL = "pull"
ACTIONS_PUSH = "pull,push"


def _scope_atoms(scopes: List[str]) -> Dict[str, List[str]]:
    """Splits scopes of the form <type>:<name>:<actions> into a mapping of <type>:<name> to actions."""
    result = {}
    for scope in scopes:
        resource, _, actions = scope.rpartition(":")
        for action in actions.split(","):
            if action and action not in result.setdefault(resource, []):
                result[resource].append(action)
    return result


def _scopes_cover(have: List[str], want: List[str]) -> bool:
    have_atoms = _scope_atoms(have)
    for resource, actions in _scope_atoms(want).items():
        granted = have_atoms.get(resource, [])
        if "*" not in granted and not all(action in granted for action in actions):
            return False
    return True


def _scopes_merge(*scopes: List[str]) -> List[str]:
    atoms = _scope_atoms([scope for _scopes in scopes for scope in _scopes])
    return [f"{resource}:{','.join(actions)}" for resource, actions in atoms.items()]


def _parse_digest(value: Optional[str]) -> Optional[FormattedSHA256]:
    try:
        return FormattedSHA256.parse(value) if value else None
    except ValueError:
        LOGGER.debug("Ignoring malformed digest header: %s", value)
        return None


def _parse_size(value: Optional[str]) -> Optional[int]:
    try:
        return int(value) if value is not None else None
    except ValueError:
        return None


class RegistryClientAsync:
    # pylint: disable=too-many-instance-attributes
    """
    AIOHTTP based Python REST client for the OCI Distribution (Docker Registry v2) API.
    """

    DEBUG = os.environ.get("ORCA_DEBUG", "")
    DEFAULT_MEDIA_TYPES_BLOB = (
        f"{MediaTypes.APPLICATION_JSON};q=1.0,{MediaTypes.ANY_ANY};q=0.1"
    )
    DEFAULT_MEDIA_TYPES_MANIFEST = ",".join(ACCEPTED_MANIFEST_TYPES)
    DEFAULT_PROTOCOL = os.environ.get("ORCA_DEFAULT_PROTOCOL", "https")

    def __init__(
        self,
        *,
        auth: Authenticator = None,
        backoff: Backoff = DEFAULT_BACKOFF,
        client_session: ClientSession = None,
        client_session_kwargs: Dict = None,
        insecure_registries: List[str] = None,
        keychain: Keychain = None,
        no_proxy: str = None,
        protocol: str = None,
        proxies: Dict[str, str] = None,
        proxy_auth: BasicAuth = None,
        resolver_kwargs: Dict = None,
        ssl: Union[None, bool, Fingerprint, SSLContext] = None,
        tcp_connector_kwargs: Dict = None,
        tolerate_dockerhub_digest_mismatch: bool = True,
        user_agent: str = None,
    ):
        # pylint: disable=too-many-arguments,too-many-branches,too-many-locals
        """
        Args:
            auth: Authenticator used for every registry, bypassing the keychain.
            backoff: Retry policy for network errors, 429 and 5xx responses.
            client_session: The underlying client session to use when making connections.
            client_session_kwargs: Arguments to be passed to the client session.
            insecure_registries: Registry endpoints for which plain http is permitted.
            keychain: Resolves registries to authenticators; the process wide default keychain if omitted.
            no_proxy: A comma separated list of domains to exclude from proxying.
            protocol: Protocol tried first when connecting to a registry.
            proxies: Mapping of protocols to proxy urls, optionally including credentials.
            proxy_auth: The credentials to use when proxying.
            resolver_kwargs: Arguments to be passed to the resolver
            ssl: SSL context.
            tcp_connector_kwargs: Arguments to be passed to the TCP connector.
            tolerate_dockerhub_digest_mismatch: If True, a Docker-Content-Digest header from Docker Hub that does not
                                                match a manifest pulled by tag is ignored.
            user_agent: The User-Agent request header.
        """
        if not client_session_kwargs:
            client_session_kwargs = {}
        if not proxies:
            proxies = {}
        http_proxy = os.environ.get("HTTP_PROXY", os.environ.get("http_proxy"))
        if http_proxy and "http" not in proxies:
            proxies["http"] = http_proxy
        https_proxy = os.environ.get("HTTPS_PROXY", os.environ.get("https_proxy"))
        if https_proxy and "https" not in proxies:
            proxies["https"] = https_proxy
        if not no_proxy:
            no_proxy = os.environ.get("NO_PROXY", os.environ.get("no_proxy"))
        no_proxy = no_proxy.split(",") if no_proxy else []
        if not resolver_kwargs:
            resolver_kwargs = {}
        if not ssl:
            cacerts = os.environ.get("ORCA_CACERTS", None)
            if cacerts:
                if RegistryClientAsync.DEBUG:
                    LOGGER.debug("Using cacerts: %s", cacerts)
                ssl = create_default_context(cafile=str(cacerts))
        if isinstance(ssl, SSLContext) and RegistryClientAsync.DEBUG:
            LOGGER.debug("SSL Context: %s", ssl.cert_store_stats())
        if not tcp_connector_kwargs:
            tcp_connector_kwargs = {}
        if not user_agent:
            # Note: This cannot be imported above, as it causes a circular import!
            from . import __version__  # pylint: disable=import-outside-toplevel

            user_agent = f"oci-registry-client-async/{__version__}"

        self.auth = auth
        self.backoff = backoff
        self.client_session = client_session
        self.client_session_kwargs = client_session_kwargs
        self.insecure_registries = insecure_registries if insecure_registries else []
        self.keychain = keychain
        self.protocol = protocol if protocol else RegistryClientAsync.DEFAULT_PROTOCOL
        self.resolver_kwargs = resolver_kwargs
        self.ssl = ssl
        self.tcp_connector_kwargs = tcp_connector_kwargs
        self.tolerate_dockerhub_digest_mismatch = tolerate_dockerhub_digest_mismatch
        self.user_agent = user_agent

        self.http_transport = HttpTransport(
            self._get_client_session,
            no_proxy=no_proxy,
            proxies=proxies,
            proxy_auth=proxy_auth,
            ssl=ssl,
        )
        # Target -> transport
        self.transports = {}  # type: Dict[str, Transport]
        self._lock = None  # type: Optional[asyncio.Lock]

    async def __aenter__(self) -> "RegistryClientAsync":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def close(self):
        """Gracefully closes this instance."""
        if self.client_session:
            await self.client_session.close()
        self.client_session = None
        self.transports = {}

    async def _get_client_session(self) -> ClientSession:
        """
        Initializes and / or retrieves an AIOHTTP client session.

        Returns:
            The AIOHTTP client session.
        """
        if not self.client_session:
            if "resolver" not in self.tcp_connector_kwargs:
                self.tcp_connector_kwargs["resolver"] = AsyncResolver(
                    **self.resolver_kwargs
                )
            if "ssl" not in self.tcp_connector_kwargs and self.ssl is not None:
                self.tcp_connector_kwargs["ssl"] = self.ssl
            if "connector" not in self.client_session_kwargs:
                self.client_session_kwargs["connector"] = TCPConnector(
                    **self.tcp_connector_kwargs
                )
            self.client_session = ClientSession(**self.client_session_kwargs)

        return self.client_session

    def _get_registry(self, registry: Registry) -> Registry:
        if registry.insecure or registry.registry_str() not in self.insecure_registries:
            return registry
        return Registry(registry.registry_str(), insecure=True)

    async def get_authenticator(self, target) -> Authenticator:
        """
        Resolves the authenticator for a given registry or repository.

        Args:
            target: The registry or repository.

        Returns:
            The corresponding authenticator.
        """
        if self.auth is not None:
            return self.auth
        keychain = self.keychain if self.keychain else get_default_keychain()
        return await keychain.resolve(target)

    async def get_transport(
        self,
        target: Union[ImageName, Registry, Repository],
        actions: str = ACTIONS_PULL,
        *,
        scopes: List[str] = None,
    ) -> Transport:
        """
        Retrieves, or creates, the authenticated transport for a given registry or repository.

        Args:
            target: The registry, or repository, to be accessed.
            actions: The repository actions required; ignored for registries.
        Keyword Args:
            scopes: Additional scopes required (e.g. pull access to a mount source).

        Returns:
            The corresponding transport.
        """
        if isinstance(target, ImageName):
            target = target.context()
        if isinstance(target, Registry):
            registry = target
            required = [target.scope()]
        else:
            registry = target.registry
            required = [target.scope(actions)]
        required = _scopes_merge(required, scopes if scopes else [])
        key = str(target)

        if self._lock is None:
            self._lock = asyncio.Lock()
        async with self._lock:
            transport = self.transports.get(key, None)
            if transport and _scopes_cover(transport.scopes, required):
                return transport
            if transport:
                required = _scopes_merge(transport.scopes, required)
            authenticator = await self.get_authenticator(target)
            transport = await new_transport(
                self._get_registry(registry),
                authenticator,
                self.http_transport,
                required,
                backoff=self.backoff,
                protocol=self.protocol,
                user_agent=self.user_agent,
            )
            self.transports[key] = transport
            return transport

    @staticmethod
    def _get_repository(target: Union[ImageName, Repository]) -> Repository:
        if isinstance(target, ImageName):
            return target.context()
        return target

    @staticmethod
    def _get_location(client_response: ClientResponse) -> str:
        """Resolves the (possibly relative) "Location" header of a response against the request url."""
        location = client_response.headers.get("Location", "")
        return urljoin(str(client_response.url), location)

    # OCI Distribution API methods

    async def delete_blob(
        self, repository: Union[ImageName, Repository], digest: FormattedSHA256
    ) -> RegistryClientAsyncResult:
        """
        Delete the blob identified by name and digest.

        Args:
            repository: The repository.
            digest: Digest of the blob.

        Returns:
            client_response: The underlying client response.
            result: True if the blob was deleted.
        """
        repository = RegistryClientAsync._get_repository(repository)
        transport = await self.get_transport(repository, ACTIONS_PUSH)
        client_response = await transport.round_trip(
            Request(
                "DELETE",
                transport.url(f"/v2/{repository.repository_str()}/blobs/{digest}"),
                expected=[HTTPStatus.ACCEPTED],
            )
        )
        client_response.release()
        return RegistryClientAsyncResult(client_response=client_response, result=True)

    async def delete_blob_upload(
        self, repository: Union[ImageName, Repository], location: str
    ) -> RegistryClientAsyncResult:
        """
        Cancel outstanding upload processes, releasing associated resources. If this is not called, the unfinished
        uploads will eventually timeout.

        Args:
            repository: The repository.
            location: Value of the previous location header.

        Returns:
            client_response: The underlying client response.
            result: True if the upload was canceled.
        """
        transport = await self.get_transport(
            RegistryClientAsync._get_repository(repository), ACTIONS_PUSH
        )
        client_response = await transport.round_trip(
            Request("DELETE", location, expected=[HTTPStatus.NO_CONTENT])
        )
        client_response.release()
        return RegistryClientAsyncResult(client_response=client_response, result=True)

    async def delete_manifest(self, image_name: ImageName) -> RegistryClientAsyncResult:
        """
        Delete the manifest identified by name and reference. Note that most registries only permit deletion by
        digest.

        Args:
            image_name: The image name.

        Returns:
            client_response: The underlying client response.
            result: True if the manifest was deleted.
        """
        transport = await self.get_transport(image_name, ACTIONS_PUSH)
        client_response = await transport.round_trip(
            Request(
                "DELETE",
                transport.url(
                    f"/v2/{image_name.resolve_image()}/manifests/{image_name.resolve_identifier()}"
                ),
                expected=[HTTPStatus.ACCEPTED],
            )
        )
        client_response.release()
        return RegistryClientAsyncResult(client_response=client_response, result=True)

    async def _get_blob(
        self,
        repository: Union[ImageName, Repository],
        digest: FormattedSHA256,
        *,
        accept: str = None,
    ) -> ClientResponse:
        """
        Retrieve the blob from the registry identified by digest.

        Args:
            repository: The repository.
            digest: Digest of the blob.
            accept: The "Accept" HTTP request header.

        Returns:
            The underlying (unreleased) client response.
        """
        repository = RegistryClientAsync._get_repository(repository)
        if accept is None:
            accept = RegistryClientAsync.DEFAULT_MEDIA_TYPES_BLOB
        transport = await self.get_transport(repository)
        return await transport.round_trip(
            Request(
                "GET",
                transport.url(f"/v2/{repository.repository_str()}/blobs/{digest}"),
                headers={"Accept": accept},
            )
        )

    async def get_blob(
        self,
        repository: Union[ImageName, Repository],
        digest: FormattedSHA256,
        *,
        accept: str = None,
    ) -> RegistryClientAsyncGetBlob:
        """
        Retrieve the blob from the registry identified by digest.

        Args:
            repository: The repository.
            digest: Digest of the blob.
            accept: The "Accept" HTTP request header.

        Returns:
            blob: The corresponding blob (bytes).
            client_response: The underlying client response.
        """
        client_response = await self._get_blob(repository, digest, accept=accept)
        try:
            data = await client_response.read()
        finally:
            client_response.release()
        return RegistryClientAsyncGetBlob(blob=data, client_response=client_response)

    async def get_blob_stream(
        self,
        repository: Union[ImageName, Repository],
        digest: FormattedSHA256,
        *,
        accept: str = None,
        chunk_size: int = CHUNK_SIZE,
    ) -> AsyncIterator[bytes]:
        """
        Streams the blob from the registry identified by digest.

        Args:
            repository: The repository.
            digest: Digest of the blob.
            accept: The "Accept" HTTP request header.
            chunk_size: The maximum size of each chunk.

        Returns:
            The blob content, in chunks.
        """
        client_response = await self._get_blob(repository, digest, accept=accept)
        try:
            async for chunk in client_response.content.iter_chunked(chunk_size):
                yield chunk
        finally:
            client_response.release()

    async def get_blob_to_disk(
        self,
        repository: Union[ImageName, Repository],
        digest: FormattedSHA256,
        file,
        *,
        accept: str = None,
        file_is_async: bool = True,
    ) -> UtilsChunkToFile:
        """
        Retrieve the blob identified by digest to a given file, verifying its digest.

        Args:
            repository: The repository.
            digest: Digest of the blob.
            file: The file to which to store the blob.
            accept: The "Accept" HTTP request header.
            file_is_async: If True, all file IO operations will be awaited.

        Returns:
            digest: The digest value of the blob.
            size: The byte size of the blob.
        """
        result = await chunk_to_file(
            self.get_blob_stream(repository, digest, accept=accept),
            file,
            file_is_async=file_is_async,
        )
        must_be_equal(digest, result.digest, "Blob digest mismatch")
        return result

    async def get_blob_upload(
        self, repository: Union[ImageName, Repository], location: str
    ) -> RegistryClientAsyncGetBlobUpload:
        """
        Retrieve status of an upload.

        Args:
            repository: The repository.
            location: Value of the previous location header.

        Returns:
            client_response: The underlying client response.
            location: The location of the upload.
            range: Range indicating the current progress of the upload.
        """
        transport = await self.get_transport(
            RegistryClientAsync._get_repository(repository), ACTIONS_PUSH
        )
        client_response = await transport.round_trip(
            Request("GET", location, expected=[HTTPStatus.NO_CONTENT])
        )
        client_response.release()
        return RegistryClientAsyncGetBlobUpload(
            client_response=client_response,
            location=RegistryClientAsync._get_location(client_response)
            if "Location" in client_response.headers
            else location,
            range=client_response.headers.get("Range", None),
        )

    async def get_catalog(
        self,
        registry: Registry,
        *,
        last: str = None,
        n: int = None,
        url: str = None,
    ) -> RegistryClientAsyncGetCatalog:
        # pylint: disable=invalid-name
        """
        List a set of available repositories in the registry.

        Args:
            registry: The registry.
            last: Result set will include values lexically after last.
            n: Limit the number of entries in each response.
            url: The url of a subsequent page; overrides last and n.

        Returns:
            catalog: The corresponding catalog.
            client_response: The underlying client response.
            next_url: The url of the next page, if any.
        """
        transport = await self.get_transport(registry)
        params = {}
        if url is None:
            url = transport.url("/v2/_catalog")
            if last:
                params["last"] = last
            if n:
                params["n"] = str(n)
        client_response = await transport.round_trip(
            Request(
                "GET",
                url,
                headers={"Accept": MediaTypes.APPLICATION_JSON},
                params=params if params else None,
            )
        )
        try:
            catalog = await client_response.json(content_type=None)
        finally:
            client_response.release()
        return RegistryClientAsyncGetCatalog(
            catalog=catalog,
            client_response=client_response,
            next_url=RegistryClientAsync._get_next_url(client_response),
        )

    @staticmethod
    def _get_next_url(client_response: ClientResponse) -> Optional[str]:
        """Resolves the "next" Link header of a paginated response, if any."""
        link = client_response.links.get("next", None)
        if not link:
            return None
        return urljoin(str(client_response.url), str(link.get("url")))

    async def _get_manifest(
        self, image_name: ImageName, *, accept: str = None
    ) -> ClientResponse:
        """
        Fetch the manifest identified by name and reference where reference can be a tag or digest.

        Args:
            image_name: The image name.
            accept: The "Accept" HTTP request header.

        Returns:
            The underlying (unreleased) client response.
        """
        if accept is None:
            accept = RegistryClientAsync.DEFAULT_MEDIA_TYPES_MANIFEST
        transport = await self.get_transport(image_name)
        return await transport.round_trip(
            Request(
                "GET",
                transport.url(
                    f"/v2/{image_name.resolve_image()}/manifests/{image_name.resolve_identifier()}"
                ),
                headers={"Accept": accept},
            )
        )

    async def get_manifest(
        self, image_name: ImageName, *, accept: str = None
    ) -> RegistryClientAsyncGetManifest:
        """
        Fetch the manifest identified by name and reference where reference can be a tag or digest.

        Args:
            image_name: The image name.
            accept: The "Accept" HTTP request header.

        Returns:
            client_response: The underlying client response.
            digest: The value of the Docker-Content-Digest header, if any.
            manifest: The manifest; exactly the bytes returned by the registry.
        """
        client_response = await self._get_manifest(image_name, accept=accept)
        try:
            data = await client_response.read()
        finally:
            client_response.release()
        media_type = client_response.headers.get("Content-Type", "").split(";")[0].strip()
        if media_type in ["", MediaTypes.APPLICATION_JSON, MediaTypes.APPLICATION_OCTET_STREAM]:
            media_type = None
        return RegistryClientAsyncGetManifest(
            client_response=client_response,
            digest=_parse_digest(client_response.headers.get("Docker-Content-Digest")),
            manifest=Manifest(data, media_type=media_type),
        )

    async def get_tags(
        self,
        repository: Union[ImageName, Repository],
        *,
        last: str = None,
        n: int = None,
        url: str = None,
    ) -> RegistryClientAsyncGetTags:
        # pylint: disable=invalid-name
        """
        Fetch the tags under the repository identified by name.

        Args:
            repository: The repository.
            last: Result set will include values lexically after last.
            n: Limit the number of entries in each response.
            url: The url of a subsequent page; overrides last and n.

        Returns:
            client_response: The underlying client response.
            next_url: The url of the next page, if any.
            tags: The corresponding tags document.
        """
        repository = RegistryClientAsync._get_repository(repository)
        transport = await self.get_transport(repository)
        params = {}
        if url is None:
            url = transport.url(f"/v2/{repository.repository_str()}/tags/list")
            if last:
                params["last"] = last
            if n:
                params["n"] = str(n)
        client_response = await transport.round_trip(
            Request(
                "GET",
                url,
                headers={"Accept": MediaTypes.APPLICATION_JSON},
                params=params if params else None,
            )
        )
        try:
            tags = await client_response.json(content_type=None)
        finally:
            client_response.release()
        return RegistryClientAsyncGetTags(
            client_response=client_response,
            next_url=RegistryClientAsync._get_next_url(client_response),
            tags=tags,
        )

    async def get_version(self, registry: Registry) -> RegistryClientAsyncGetVersion:
        """
        Checks that the registry implements the OCI Distribution API, and retrieves its authentication challenge.

        Args:
            registry: The registry.

        Returns:
            challenge: The authentication scheme ("basic", "bearer") or None.
            parameters: The challenge parameters.
            protocol: The protocol that responded.
            result: True if the registry responded.
        """
        result = await ping(
            RetryTransport(
                self.http_transport, backoff=self.backoff, user_agent=self.user_agent
            ),
            self._get_registry(registry),
            protocol=self.protocol,
        )
        return RegistryClientAsyncGetVersion(
            challenge=result.challenge,
            parameters=result.parameters,
            protocol=result.protocol,
            result=True,
        )

    async def head_blob(
        self, repository: Union[ImageName, Repository], digest: FormattedSHA256, *, actions: str = ACTIONS_PULL
    ) -> RegistryClientAsyncHeadBlob:
        """
        Verify existence of a blob.

        Args:
            repository: The repository.
            digest: Digest of the blob.
        Keyword Args:
            actions: The repository actions of the transport used; push clients reuse their push transport.

        Returns:
            client_response: The underlying client response.
            digest: The value of the Docker-Content-Digest header, if any.
            result: True if the blob exists, False otherwise.
            size: The size of the blob, if it exists.
        """
        repository = RegistryClientAsync._get_repository(repository)
        transport = await self.get_transport(repository, actions)
        client_response = await transport.round_trip(
            Request(
                "HEAD",
                transport.url(f"/v2/{repository.repository_str()}/blobs/{digest}"),
                expected=[HTTPStatus.OK, HTTPStatus.NOT_FOUND],
            )
        )
        client_response.release()
        exists = client_response.status == HTTPStatus.OK
        return RegistryClientAsyncHeadBlob(
            client_response=client_response,
            digest=_parse_digest(client_response.headers.get("Docker-Content-Digest")),
            result=exists,
            size=_parse_size(client_response.headers.get("Content-Length"))
            if exists
            else None,
        )

    async def head_manifest(
        self, image_name: ImageName, *, accept: str = None, actions: str = ACTIONS_PULL
    ) -> RegistryClientAsyncHeadManifest:
        """
        Verify existence of a manifest.

        Args:
            image_name: The image name.
            accept: The "Accept" HTTP request header.
        Keyword Args:
            actions: The repository actions of the transport used.

        Returns:
            client_response: The underlying client response.
            digest: The value of the Docker-Content-Digest header, if any.
            media_type: The media type of the manifest, if it exists.
            result: True if the manifest exists, False otherwise.
            size: The size of the manifest, if it exists.
        """
        if accept is None:
            accept = RegistryClientAsync.DEFAULT_MEDIA_TYPES_MANIFEST
        transport = await self.get_transport(image_name, actions)
        client_response = await transport.round_trip(
            Request(
                "HEAD",
                transport.url(
                    f"/v2/{image_name.resolve_image()}/manifests/{image_name.resolve_identifier()}"
                ),
                expected=[HTTPStatus.OK, HTTPStatus.NOT_FOUND],
                headers={"Accept": accept},
            )
        )
        client_response.release()
        exists = client_response.status == HTTPStatus.OK
        return RegistryClientAsyncHeadManifest(
            client_response=client_response,
            digest=_parse_digest(client_response.headers.get("Docker-Content-Digest")),
            media_type=(
                client_response.headers.get("Content-Type", "").split(";")[0].strip()
                or None
            )
            if exists
            else None,
            result=exists,
            size=_parse_size(client_response.headers.get("Content-Length"))
            if exists
            else None,
        )

    async def patch_blob_upload(
        self,
        repository: Union[ImageName, Repository],
        location: str,
        chunk: bytes,
        *,
        offset: int,
    ) -> RegistryClientAsyncPatchBlobUpload:
        """
        Upload a chunk of data for the specified upload.

        Args:
            repository: The repository.
            location: Value of the previous location header.
            chunk: The chunk to be uploaded.
            offset: The offset of the chunk within the blob.

        Returns:
            client_response: The underlying client response.
            docker_upload_uuid: Identifies the upload uuid for the current request.
            location: The location to be used for the next request.
            range: Range indicating the current progress of the upload.
            result: True if the chunk was accepted; False if the registry rejected the range (416).
        """
        transport = await self.get_transport(
            RegistryClientAsync._get_repository(repository), ACTIONS_PUSH
        )
        client_response = await transport.round_trip(
            Request(
                "PATCH",
                location,
                data=chunk,
                expected=[HTTPStatus.ACCEPTED, HTTPStatus.REQUESTED_RANGE_NOT_SATISFIABLE],
                headers={
                    "Content-Length": str(len(chunk)),
                    "Content-Range": f"{offset}-{offset + len(chunk) - 1}",
                    "Content-Type": MediaTypes.APPLICATION_OCTET_STREAM,
                },
            )
        )
        client_response.release()
        return RegistryClientAsyncPatchBlobUpload(
            client_response=client_response,
            docker_upload_uuid=client_response.headers.get("Docker-Upload-UUID", None),
            location=RegistryClientAsync._get_location(client_response)
            if "Location" in client_response.headers
            else location,
            range=client_response.headers.get("Range", None),
            result=client_response.status == HTTPStatus.ACCEPTED,
        )

    async def post_blob(
        self,
        repository: Union[ImageName, Repository],
        *,
        digest: FormattedSHA256 = None,
        source: Repository = None,
    ) -> RegistryClientAsyncPostBlob:
        """
        Initiate a resumable blob upload, or attempt to mount a blob from another repository.

        Args:
            repository: The repository.
            digest: Digest of the blob to be mounted.
            source: The repository from which to mount the blob.

        Returns:
            client_response: The underlying client response.
            docker_upload_uuid: Identifies the upload uuid for the current request.
            location: The location of the upload; or of the blob, if it was mounted.
            mounted: True if the blob was mounted (201); False if an upload was initiated (202).
        """
        repository = RegistryClientAsync._get_repository(repository)
        params = None
        scopes = None
        if digest and source:
            params = {"from": source.repository_str(), "mount": str(digest)}
            scopes = [source.scope(ACTIONS_PULL)]
        transport = await self.get_transport(repository, ACTIONS_PUSH, scopes=scopes)
        client_response = await transport.round_trip(
            Request(
                "POST",
                transport.url(f"/v2/{repository.repository_str()}/blobs/uploads/"),
                expected=[HTTPStatus.CREATED, HTTPStatus.ACCEPTED],
                headers={"Content-Length": "0"},
                params=params,
            )
        )
        client_response.release()
        return RegistryClientAsyncPostBlob(
            client_response=client_response,
            docker_upload_uuid=client_response.headers.get("Docker-Upload-UUID", None),
            location=RegistryClientAsync._get_location(client_response),
            mounted=client_response.status == HTTPStatus.CREATED,
        )

    async def put_blob_upload(
        self,
        repository: Union[ImageName, Repository],
        location: str,
        digest: FormattedSHA256,
        *,
        data: bytes = None,
    ) -> RegistryClientAsyncPutBlobUpload:
        """
        Complete the upload specified by uuid, optionally appending the body as the final chunk.

        Args:
            repository: The repository.
            location: Value of the previous location header.
            digest: Digest of the blob.
            data: The final chunk, if any.

        Returns:
            client_response: The underlying client response.
            digest: The value of the Docker-Content-Digest header, if any.
            location: The location of the blob.
        """
        transport = await self.get_transport(
            RegistryClientAsync._get_repository(repository), ACTIONS_PUSH
        )
        url = str(URL(location).update_query(digest=str(digest)))
        data = data if data else b""
        client_response = await transport.round_trip(
            Request(
                "PUT",
                url,
                data=data,
                expected=[HTTPStatus.CREATED, HTTPStatus.NO_CONTENT],
                headers={
                    "Content-Length": str(len(data)),
                    "Content-Type": MediaTypes.APPLICATION_OCTET_STREAM,
                },
            )
        )
        client_response.release()
        return RegistryClientAsyncPutBlobUpload(
            client_response=client_response,
            digest=_parse_digest(client_response.headers.get("Docker-Content-Digest")),
            location=RegistryClientAsync._get_location(client_response),
        )

    async def put_blob_upload_from_disk(
        self,
        repository: Union[ImageName, Repository],
        location: str,
        digest: FormattedSHA256,
        file,
        *,
        file_is_async: bool = True,
    ) -> RegistryClientAsyncPutBlobUpload:
        """
        Complete the upload specified by uuid, streaming the content of a given file as the final chunk.

        Args:
            repository: The repository.
            location: Value of the previous location header.
            digest: Digest of the blob.
            file: The file from which to read the blob; rewound once read.
            file_is_async: If True, all file IO operations will be awaited.

        Returns:
            client_response: The underlying client response.
            digest: The value of the Docker-Content-Digest header, if any.
            location: The location of the blob.
        """
        transport = await self.get_transport(
            RegistryClientAsync._get_repository(repository), ACTIONS_PUSH
        )
        url = str(URL(location).update_query(digest=str(digest)))
        data = HashingGenerator(file, file_is_async=file_is_async)
        client_response = await transport.round_trip(
            Request(
                "PUT",
                url,
                data=data,
                expected=[HTTPStatus.CREATED, HTTPStatus.NO_CONTENT],
                headers={"Content-Type": MediaTypes.APPLICATION_OCTET_STREAM},
            )
        )
        client_response.release()
        must_be_equal(digest, data.get_digest(), "Blob digest mismatch")
        return RegistryClientAsyncPutBlobUpload(
            client_response=client_response,
            digest=_parse_digest(client_response.headers.get("Docker-Content-Digest")),
            location=RegistryClientAsync._get_location(client_response),
        )

    async def put_manifest(
        self, image_name: ImageName, manifest: Manifest
    ) -> RegistryClientAsyncPutManifest:
        """
        Put the manifest identified by name and reference where reference can be a tag or digest.

        Args:
            image_name: The image name.
            manifest: The manifest to be assigned; its exact bytes are uploaded.

        Returns:
            client_response: The underlying client response.
            digest: The value of the Docker-Content-Digest header, if any.
        """
        transport = await self.get_transport(image_name, ACTIONS_PUSH)
        client_response = await transport.round_trip(
            Request(
                "PUT",
                transport.url(
                    f"/v2/{image_name.resolve_image()}/manifests/{image_name.resolve_identifier()}"
                ),
                data=manifest.get_bytes(),
                expected=[HTTPStatus.CREATED],
                headers={"Content-Type": manifest.get_media_type()},
            )
        )
        client_response.release()
        return RegistryClientAsyncPutManifest(
            client_response=client_response,
            digest=_parse_digest(client_response.headers.get("Docker-Content-Digest")),
        )

