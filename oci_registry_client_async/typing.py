#!/usr/bin/env python

# pylint: disable=missing-class-docstring,too-few-public-methods

"""Typing classes."""

from typing import Any, NamedTuple, Optional

from aiohttp import ClientResponse

from .formattedsha256 import FormattedSHA256
from .manifest import Manifest


class RegistryClientAsyncResult(NamedTuple):
    client_response: ClientResponse
    result: bool


class RegistryClientAsyncGetBlob(NamedTuple):
    client_response: ClientResponse
    blob: bytes


class RegistryClientAsyncGetBlobUpload(NamedTuple):
    client_response: ClientResponse
    location: str
    range: Optional[str]


class RegistryClientAsyncGetCatalog(NamedTuple):
    client_response: ClientResponse
    catalog: Any
    next_url: Optional[str]


class RegistryClientAsyncGetManifest(NamedTuple):
    client_response: ClientResponse
    digest: Optional[FormattedSHA256]
    manifest: Manifest


class RegistryClientAsyncGetTags(NamedTuple):
    client_response: ClientResponse
    next_url: Optional[str]
    tags: Any


class RegistryClientAsyncGetVersion(NamedTuple):
    challenge: Optional[str]
    parameters: Any
    protocol: str
    result: bool


class RegistryClientAsyncHeadBlob(NamedTuple):
    client_response: ClientResponse
    digest: Optional[FormattedSHA256]
    result: bool
    size: Optional[int]


class RegistryClientAsyncHeadManifest(NamedTuple):
    client_response: ClientResponse
    digest: Optional[FormattedSHA256]
    media_type: Optional[str]
    result: bool
    size: Optional[int]


class RegistryClientAsyncPostBlob(NamedTuple):
    client_response: ClientResponse
    docker_upload_uuid: Optional[str]
    location: str
    mounted: bool


class RegistryClientAsyncPatchBlobUpload(NamedTuple):
    client_response: ClientResponse
    docker_upload_uuid: Optional[str]
    location: str
    range: Optional[str]
    result: bool


class RegistryClientAsyncPutBlobUpload(NamedTuple):
    client_response: ClientResponse
    digest: Optional[FormattedSHA256]
    location: str


class RegistryClientAsyncPutManifest(NamedTuple):
    client_response: ClientResponse
    digest: Optional[FormattedSHA256]


class ImageNameParseString(NamedTuple):
    digest: Optional[FormattedSHA256]
    endpoint: Optional[str]
    image: str
    tag: Optional[str]


class UtilsChunkToFile(NamedTuple):
    digest: FormattedSHA256
    size: int


class HashChunks(NamedTuple):
    digest: FormattedSHA256
    size: int
