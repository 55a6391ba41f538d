#!/usr/bin/env python

"""
Lazy, verified, access to images stored in a registry.

Every byte read is verified: manifests against the digest reference and the Docker-Content-Digest header, blobs
against their descriptors, and uncompressed layers against the DiffIDs of the image configuration.
"""

import logging

from typing import AsyncIterator, List, Optional

from .cache import BlobCache
from .descriptor import Descriptor, Platform
from .errors import IntegrityError
from .formattedsha256 import FormattedSHA256
from .hashinggenerator import VerifyingIterator
from .image import gunzip, Image, Index, Layer
from .imageconfig import ImageConfig
from .imagename import Digest, ImageName, Repository
from .manifest import Manifest
from .registryclientasync import RegistryClientAsync
from .specs import GZIP_LAYER_TYPES

LOGGER = logging.getLogger(__name__)

DEFAULT_PLATFORM = Platform(os="linux", architecture="amd64")


async def _read(chunks: AsyncIterator[bytes]) -> bytes:
    return b"".join([chunk async for chunk in chunks])


async def _fetch_blob(
    client: RegistryClientAsync,
    repository: Repository,
    descriptor: Descriptor,
    cache: Optional[BlobCache],
) -> AsyncIterator[bytes]:
    """Streams a verified blob, consulting and populating a cache if one is given."""
    if cache:
        chunks = await cache.load(descriptor.digest)
        if chunks is None:
            remote = VerifyingIterator(
                client.get_blob_stream(
                    repository, descriptor.digest, accept=descriptor.media_type or None
                ),
                descriptor.digest,
                descriptor.size,
            )
            if await cache.store(descriptor.digest, remote):
                chunks = await cache.load(descriptor.digest)
        if chunks is not None:
            async for chunk in VerifyingIterator(chunks, descriptor.digest, descriptor.size):
                yield chunk
            return

    async for chunk in VerifyingIterator(
        client.get_blob_stream(
            repository, descriptor.digest, accept=descriptor.media_type or None
        ),
        descriptor.digest,
        descriptor.size,
    ):
        yield chunk


async def _fetch_manifest(
    client: RegistryClientAsync, image_name: ImageName, cache: Optional[BlobCache]
) -> Manifest:
    # Note: Tags are mutable; only digest addressed manifests are cached.
    if cache and isinstance(image_name, Digest):
        chunks = await cache.load(image_name.digest)
        if chunks is not None:
            return Manifest(
                await _read(VerifyingIterator(chunks, image_name.digest))
            )

    response = await client.get_manifest(image_name)
    manifest = response.manifest
    digest = manifest.get_digest()
    if isinstance(image_name, Digest) and digest != image_name.digest:
        raise IntegrityError(
            f"Manifest digest mismatch for {image_name}: {digest} != {image_name.digest}"
        )
    if response.digest and response.digest != digest:
        if (
            image_name.context().registry.is_dockerhub()
            and not isinstance(image_name, Digest)
            and client.tolerate_dockerhub_digest_mismatch
        ):
            LOGGER.warning(
                "Ignoring Docker-Content-Digest mismatch for %s: %s != %s",
                image_name,
                response.digest,
                digest,
            )
        else:
            raise IntegrityError(
                f"Docker-Content-Digest mismatch for {image_name}: {response.digest} != {digest}"
            )

    if cache and isinstance(image_name, Digest):

        async def _chunks():
            yield manifest.get_bytes()

        await cache.store(digest, _chunks())
    return manifest


class RemoteLayer(Layer):
    """A layer stored in a registry."""

    def __init__(
        self,
        client: RegistryClientAsync,
        repository: Repository,
        descriptor: Descriptor,
        *,
        cache: BlobCache = None,
        diff_id: FormattedSHA256 = None,
    ):
        # pylint: disable=too-many-arguments
        self.cache = cache
        self.client = client
        self.descriptor = descriptor
        self.diff_id = diff_id
        self.repository = repository

    async def compressed(self, offset: int = 0) -> AsyncIterator[bytes]:
        # Note: The entire blob is always read, so that it can be verified; bytes before the offset are discarded.
        async for chunk in _fetch_blob(
            self.client, self.repository, self.descriptor, self.cache
        ):
            if offset >= len(chunk):
                offset -= len(chunk)
                continue
            yield chunk[offset:] if offset else chunk
            offset = 0

    async def get_descriptor(self) -> Descriptor:
        return self.descriptor

    async def get_diff_id(self) -> FormattedSHA256:
        if self.diff_id is None:
            raise IntegrityError(f"Diff id of layer {self.descriptor.digest} is unknown")
        return self.diff_id

    async def get_digest(self) -> FormattedSHA256:
        return self.descriptor.digest

    async def get_media_type(self) -> str:
        return self.descriptor.media_type

    async def get_size(self) -> int:
        return self.descriptor.size

    async def uncompressed(self) -> AsyncIterator[bytes]:
        chunks = self.compressed()
        if self.descriptor.media_type in GZIP_LAYER_TYPES:
            chunks = gunzip(chunks)
        if self.diff_id is not None:
            chunks = VerifyingIterator(chunks, self.diff_id)
        async for chunk in chunks:
            yield chunk


class RemoteImage(Image):
    """An image stored in a registry; the configuration is fetched on first use."""

    def __init__(
        self,
        client: RegistryClientAsync,
        repository: Repository,
        manifest: Manifest,
        *,
        cache: BlobCache = None,
    ):
        self.cache = cache
        self.client = client
        self.config = None  # type: Optional[ImageConfig]
        self.manifest = manifest
        self.repository = repository

    async def get_config(self) -> ImageConfig:
        if self.config is None:
            descriptor = self.manifest.get_config_descriptor()
            data = await _read(
                _fetch_blob(self.client, self.repository, descriptor, self.cache)
            )
            self.config = ImageConfig(data)
        return self.config

    async def get_config_layer(self) -> Layer:
        return RemoteLayer(
            self.client,
            self.repository,
            self.manifest.get_config_descriptor(),
            cache=self.cache,
        )

    async def get_layers(self) -> List[Layer]:
        descriptors = self.manifest.get_layer_descriptors()
        diff_ids = (await self.get_config()).get_diff_ids()
        if len(diff_ids) != len(descriptors):
            raise IntegrityError(
                f"Image {self.manifest.get_digest()} has {len(descriptors)} layers but {len(diff_ids)} diff ids"
            )
        return [
            RemoteLayer(
                self.client,
                self.repository,
                descriptor,
                cache=self.cache,
                diff_id=diff_id,
            )
            for descriptor, diff_id in zip(descriptors, diff_ids)
        ]

    async def get_manifest(self) -> Manifest:
        return self.manifest


class RemoteIndex(Index):
    """An index (manifest list) stored in a registry; children are fetched on demand."""

    def __init__(
        self,
        client: RegistryClientAsync,
        repository: Repository,
        manifest: Manifest,
        *,
        cache: BlobCache = None,
    ):
        self.cache = cache
        self.client = client
        self.manifest = manifest
        self.repository = repository

    async def get_child(self, descriptor: Descriptor):
        remote = await get(
            self.client, self.repository.digest(descriptor.digest), cache=self.cache
        )
        return remote.artifact()

    async def get_manifest(self) -> Manifest:
        return self.manifest


class RemoteDescriptor:
    """The manifest a reference resolved to, from which an image or index is obtained."""

    def __init__(
        self,
        client: RegistryClientAsync,
        image_name: ImageName,
        manifest: Manifest,
        *,
        cache: BlobCache = None,
    ):
        self.cache = cache
        self.client = client
        self.image_name = image_name
        self.manifest = manifest

    def artifact(self):
        """Returns the image or index, according to the manifest media type."""
        if self.manifest.is_index():
            return self.index()
        return RemoteImage(
            self.client, self.image_name.context(), self.manifest, cache=self.cache
        )

    def descriptor(self) -> Descriptor:
        """Returns the descriptor that points to the manifest."""
        return self.manifest.get_descriptor()

    async def image(self, platform: Platform = DEFAULT_PLATFORM) -> Image:
        """
        Returns the image; for an index, the child image that satisfies a given platform.

        Args:
            platform: The platform used to resolve an index.
        """
        if self.manifest.is_index():
            return await self.index().image_for_platform(platform)
        return RemoteImage(
            self.client, self.image_name.context(), self.manifest, cache=self.cache
        )

    def index(self) -> RemoteIndex:
        """Returns the index; raises IntegrityError if the manifest is not an index."""
        if not self.manifest.is_index():
            raise IntegrityError(
                f"Manifest of {self.image_name} is not an index: {self.manifest.get_media_type()}"
            )
        return RemoteIndex(
            self.client, self.image_name.context(), self.manifest, cache=self.cache
        )


async def get(
    client: RegistryClientAsync, image_name: ImageName, *, cache: BlobCache = None
) -> RemoteDescriptor:
    """
    Resolves a reference to its (verified) manifest.

    Args:
        client: The registry client.
        image_name: The tag or digest reference.
        cache: Optional blob cache for digest addressed manifests and blobs.

    Returns:
        The resolved descriptor.
    """
    manifest = await _fetch_manifest(client, image_name, cache)
    return RemoteDescriptor(client, image_name, manifest, cache=cache)


async def image(
    client: RegistryClientAsync,
    image_name: ImageName,
    *,
    cache: BlobCache = None,
    platform: Platform = DEFAULT_PLATFORM,
) -> Image:
    """Resolves a reference to an image, selecting the child for a given platform when it resolves to an index."""
    return await (await get(client, image_name, cache=cache)).image(platform)


async def index(
    client: RegistryClientAsync, image_name: ImageName, *, cache: BlobCache = None
) -> Index:
    """Resolves a reference to an index."""
    return (await get(client, image_name, cache=cache)).index()
