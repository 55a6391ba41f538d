#!/usr/bin/env python

"""
Images as content addressed graphs: an artifact (image or index) is a manifest whose descriptors point to blobs or
to other artifacts.
"""

import gzip
import zlib

from abc import ABC, abstractmethod
from typing import AsyncIterable, AsyncIterator, Dict, List, Optional, Sequence, Tuple

from .descriptor import Descriptor, Platform
from .errors import BlobUploadError, IntegrityError
from .formattedsha256 import FormattedSHA256
from .imageconfig import ImageConfig
from .manifest import Manifest
from .specs import DockerMediaTypes, GZIP_LAYER_TYPES, OCIMediaTypes
from .utils import CHUNK_SIZE


async def gunzip(chunks: AsyncIterable[bytes]) -> AsyncIterator[bytes]:
    """
    Decompresses a gzip stream on the fly.

    Args:
        chunks: The compressed stream.

    Returns:
        The decompressed stream.
    """
    decompressor = zlib.decompressobj(16 + zlib.MAX_WBITS)
    try:
        async for chunk in chunks:
            while chunk:
                data = decompressor.decompress(chunk)
                if data:
                    yield data
                # Note: Concatenated gzip members are decompressed in sequence.
                chunk = decompressor.unused_data if decompressor.eof else b""
                if decompressor.eof:
                    decompressor = zlib.decompressobj(16 + zlib.MAX_WBITS)
        data = decompressor.flush()
    except zlib.error as exception:
        raise IntegrityError(f"Unable to decompress layer: {exception}") from exception
    if data:
        yield data


async def _iterate(data: bytes, offset: int = 0) -> AsyncIterator[bytes]:
    for i in range(offset, len(data), CHUNK_SIZE):
        yield data[i : i + CHUNK_SIZE]


class Layer(ABC):
    """A blob referenced by an image manifest."""

    # Layers that cannot be re-read from an arbitrary offset cannot resume interrupted uploads
    seekable = True

    @abstractmethod
    def compressed(self, offset: int = 0) -> AsyncIterator[bytes]:
        """
        Streams the layer content as stored in the registry.

        Args:
            offset: The position from which to start streaming.
        """

    @abstractmethod
    async def get_digest(self) -> FormattedSHA256:
        """Returns the digest of the (compressed) layer content."""

    @abstractmethod
    async def get_diff_id(self) -> FormattedSHA256:
        """Returns the digest of the uncompressed layer content."""

    @abstractmethod
    async def get_media_type(self) -> str:
        """Returns the media type of the layer."""

    @abstractmethod
    async def get_size(self) -> int:
        """Returns the size of the (compressed) layer content."""

    async def get_descriptor(self) -> Descriptor:
        """Returns the descriptor that points to the layer."""
        return Descriptor(
            media_type=await self.get_media_type(),
            size=await self.get_size(),
            digest=await self.get_digest(),
        )

    async def uncompressed(self) -> AsyncIterator[bytes]:
        """Streams the uncompressed layer content."""
        chunks = self.compressed()
        if await self.get_media_type() in GZIP_LAYER_TYPES:
            chunks = gunzip(chunks)
        async for chunk in chunks:
            yield chunk


class Artifact(ABC):
    """Capabilities common to images and indices."""

    @abstractmethod
    async def get_manifest(self) -> Manifest:
        """Returns the manifest of the artifact."""

    async def get_descriptor(self) -> Descriptor:
        """Returns the descriptor that points to the artifact."""
        return (await self.get_manifest()).get_descriptor()

    async def get_digest(self) -> FormattedSHA256:
        """Returns the digest of the manifest bytes."""
        return (await self.get_manifest()).get_digest()

    async def get_media_type(self) -> str:
        """Returns the media type of the manifest."""
        return (await self.get_manifest()).get_media_type()

    async def get_raw_manifest(self) -> bytes:
        """Returns the exact manifest bytes."""
        return (await self.get_manifest()).get_bytes()

    async def get_size(self) -> int:
        """Returns the size of the manifest bytes."""
        return (await self.get_manifest()).get_size()


class Image(Artifact):
    """An artifact whose manifest references a config and an ordered list of layers."""

    @abstractmethod
    async def get_config(self) -> ImageConfig:
        """Returns the image configuration."""

    @abstractmethod
    async def get_layers(self) -> List[Layer]:
        """Returns the layers, oldest first."""

    async def get_config_layer(self) -> Layer:
        """Returns the image configuration as a (config) blob."""
        descriptor = (await self.get_manifest()).get_config_descriptor()
        config = await self.get_config()
        return StaticLayer(config.get_bytes(), media_type=descriptor.media_type)

    async def get_layer_by_diff_id(self, diff_id: FormattedSHA256) -> Layer:
        """Returns the layer with a given uncompressed digest."""
        for layer in await self.get_layers():
            if await layer.get_diff_id() == diff_id:
                return layer
        raise IntegrityError(f"Unknown diff id: {diff_id}")

    async def get_layer_by_digest(self, digest: FormattedSHA256) -> Layer:
        """Returns the layer with a given (compressed) digest."""
        for layer in await self.get_layers():
            if await layer.get_digest() == digest:
                return layer
        raise IntegrityError(f"Unknown layer digest: {digest}")


class Index(Artifact):
    """An artifact whose manifest references other artifacts."""

    @abstractmethod
    async def get_child(self, descriptor: Descriptor) -> Artifact:
        """Returns the artifact a given child descriptor points to."""

    async def get_children(self) -> List[Descriptor]:
        """Returns the descriptors of the child manifests."""
        return (await self.get_manifest()).get_manifest_descriptors()

    async def image_for_platform(self, platform: Platform) -> Image:
        """
        Resolves the child image that satisfies a given platform.

        Args:
            platform: The required platform.

        Returns:
            The first child image whose platform satisfies the requirement.
        """
        for descriptor in await self.get_children():
            if descriptor.platform and descriptor.platform.satisfies(platform):
                child = await self.get_child(descriptor)
                if isinstance(child, Image):
                    return child
        raise IntegrityError(f"No child manifest matches platform: {platform}")


class StaticLayer(Layer):
    """A layer held in memory."""

    def __init__(
        self,
        data: bytes,
        *,
        diff_id: FormattedSHA256 = None,
        media_type: str = OCIMediaTypes.IMAGE_LAYER_GZIP_V1,
    ):
        """
        Args:
            data: The (compressed) layer content.
            diff_id: The digest of the uncompressed content; computed if omitted.
            media_type: The media type of the layer.
        """
        self.data = data
        self.digest = FormattedSHA256.calculate(data)
        self.diff_id = diff_id
        self.media_type = media_type

    @staticmethod
    def from_uncompressed(
        data: bytes, *, media_type: str = OCIMediaTypes.IMAGE_LAYER_GZIP_V1
    ) -> "StaticLayer":
        """
        Initializes a gzip compressed layer from uncompressed content. Compression is reproducible.

        Args:
            data: The uncompressed layer content.
            media_type: The media type of the layer.

        Returns:
            The newly initialized layer.
        """
        return StaticLayer(
            gzip.compress(data, mtime=0),
            diff_id=FormattedSHA256.calculate(data),
            media_type=media_type,
        )

    async def compressed(self, offset: int = 0) -> AsyncIterator[bytes]:
        async for chunk in _iterate(self.data, offset):
            yield chunk

    async def get_diff_id(self) -> FormattedSHA256:
        if self.diff_id is None:
            if self.media_type in GZIP_LAYER_TYPES:
                self.diff_id = FormattedSHA256.calculate(gzip.decompress(self.data))
            else:
                self.diff_id = self.digest
        return self.diff_id

    async def get_digest(self) -> FormattedSHA256:
        return self.digest

    async def get_media_type(self) -> str:
        return self.media_type

    async def get_size(self) -> int:
        return len(self.data)


class StreamLayer(Layer):
    """
    A layer backed by a single use stream; the digest and size must be known in advance.
    """

    seekable = False

    def __init__(
        self,
        chunks: AsyncIterable[bytes],
        *,
        digest: FormattedSHA256,
        size: int,
        diff_id: FormattedSHA256 = None,
        media_type: str = OCIMediaTypes.IMAGE_LAYER_GZIP_V1,
    ):
        # pylint: disable=too-many-arguments
        self.chunks = chunks
        self.consumed = False
        self.diff_id = diff_id
        self.digest = digest
        self.media_type = media_type
        self.size = size

    async def compressed(self, offset: int = 0) -> AsyncIterator[bytes]:
        if offset or self.consumed:
            raise BlobUploadError(
                f"Stream for {self.digest} is not seekable and cannot be re-read"
            )
        self.consumed = True
        async for chunk in self.chunks:
            yield chunk

    async def get_diff_id(self) -> FormattedSHA256:
        if self.diff_id is None:
            raise IntegrityError(f"Diff id of stream layer {self.digest} is unknown")
        return self.diff_id

    async def get_digest(self) -> FormattedSHA256:
        return self.digest

    async def get_media_type(self) -> str:
        return self.media_type

    async def get_size(self) -> int:
        return self.size


class StaticImage(Image):
    """An image held in memory."""

    def __init__(self, manifest: Manifest, config: ImageConfig, layers: Sequence[Layer]):
        self.config = config
        self.layers = list(layers)
        self.manifest = manifest

    @staticmethod
    async def build(
        config: Dict,
        layers: Sequence[Layer],
        *,
        media_type: str = OCIMediaTypes.IMAGE_MANIFEST_V1,
    ) -> "StaticImage":
        """
        Builds an image from a configuration and layers; the rootfs of the configuration is derived from the layers.

        Args:
            config: The image configuration, in JSON form.
            layers: The layers, oldest first.
            media_type: The media type of the manifest.

        Returns:
            The newly built image.
        """
        config = dict(config)
        config["rootfs"] = {
            "diff_ids": [str(await layer.get_diff_id()) for layer in layers],
            "type": "layers",
        }
        image_config = ImageConfig.from_json(config)
        config_media_type = (
            DockerMediaTypes.CONTAINER_IMAGE_V1
            if media_type == DockerMediaTypes.DISTRIBUTION_MANIFEST_V2
            else OCIMediaTypes.IMAGE_CONFIG_V1
        )
        _json = {
            "config": Descriptor(
                media_type=config_media_type,
                size=image_config.get_size(),
                digest=image_config.get_digest(),
            ).to_json(),
            "layers": [(await layer.get_descriptor()).to_json() for layer in layers],
            "mediaType": media_type,
            "schemaVersion": 2,
        }
        manifest = Manifest.from_json(_json, media_type=media_type)
        return StaticImage(manifest, image_config, layers)

    async def get_config(self) -> ImageConfig:
        return self.config

    async def get_layers(self) -> List[Layer]:
        return list(self.layers)

    async def get_manifest(self) -> Manifest:
        return self.manifest


class StaticIndex(Index):
    """An index held in memory."""

    def __init__(self, manifest: Manifest, children: Dict[FormattedSHA256, Artifact]):
        self.children = children
        self.manifest = manifest

    @staticmethod
    async def build(
        children: Sequence[Tuple[Artifact, Optional[Platform]]],
        *,
        media_type: str = OCIMediaTypes.IMAGE_INDEX_V1,
    ) -> "StaticIndex":
        """
        Builds an index from child artifacts.

        Args:
            children: The child artifacts, each with an optional platform.
            media_type: The media type of the index.

        Returns:
            The newly built index.
        """
        manifests = []
        mapping = {}
        for artifact, platform in children:
            descriptor = await artifact.get_descriptor()
            manifests.append(descriptor._replace(platform=platform).to_json())
            mapping[descriptor.digest] = artifact
        _json = {"manifests": manifests, "mediaType": media_type, "schemaVersion": 2}
        return StaticIndex(Manifest.from_json(_json, media_type=media_type), mapping)

    async def get_child(self, descriptor: Descriptor) -> Artifact:
        if descriptor.digest not in self.children:
            raise IntegrityError(f"Unknown child manifest: {descriptor.digest}")
        return self.children[descriptor.digest]

    async def get_manifest(self) -> Manifest:
        return self.manifest
