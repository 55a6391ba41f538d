#!/usr/bin/env python

"""
Abstraction of an image manifest or index, as defined in:

* https://github.com/docker/distribution/tree/master/docs/spec
* https://github.com/opencontainers/image-spec/blob/master/media-types.md
"""

from typing import List, Optional

from .descriptor import Descriptor
from .errors import IntegrityError
from .jsonbytes import JsonBytes
from .specs import (
    DockerMediaTypes,
    INDEX_MANIFEST_TYPES,
    MediaTypes,
    OCIMediaTypes,
)


class Manifest(JsonBytes):
    """
    Abstract class to retrieve and manipulate image manifests.
    """

    def __init__(self, manifest: bytes, *, media_type: str = None):
        """
        Args:
            manifest: The raw image manifest value.
            media_type: The media type of the image manifest.
        """
        self.media_type = None
        self._set_media_type(media_type)
        super().__init__(manifest)

    def _detect_media_type(self):
        """
        Attempts to detect the media type of the image manifest.
        """
        # Is there a declared media type (applies to all of Docker manifest v2.2)?
        if "mediaType" in self.json:
            self._set_media_type(self.json["mediaType"])

        # Is this an OCI image index?
        elif "manifests" in self.json:
            self._set_media_type(OCIMediaTypes.IMAGE_INDEX_V1)

        # Is this an OCI image manifest?
        elif "layers" in self.json:
            self._set_media_type(OCIMediaTypes.IMAGE_MANIFEST_V1)

        # Is this a Docker manifest v2.1?
        elif "fsLayers" in self.json:
            self._set_media_type(DockerMediaTypes.DISTRIBUTION_MANIFEST_V1_SIGNED)

        # Give up
        else:
            self._set_media_type(MediaTypes.APPLICATION_JSON)

    def _set_bytes(self, _bytes: bytes):
        super()._set_bytes(_bytes)
        if not isinstance(self.json, dict):
            raise IntegrityError("Manifest is not a JSON object")
        if not self.media_type:
            self._detect_media_type()

    def _set_json(self, _json):
        super()._set_json(_json)
        if not self.media_type:
            self._detect_media_type()

    def _set_media_type(self, media_type: str):
        """
        Assigns the media type of the image manifest.

        Args:
            media_type: The media type of the image manifest.
        """
        self.media_type = media_type

    def get_config_descriptor(self) -> Descriptor:
        """
        Retrieves the descriptor of the image configuration.

        Returns:
            The config descriptor.
        """
        if self.is_index() or "config" not in self.json:
            raise IntegrityError(
                f"Manifest of type {self.media_type} does not reference a config"
            )
        return Descriptor.from_json(self.json["config"])

    def get_descriptor(self) -> Descriptor:
        """Retrieves the descriptor that points to this manifest."""
        return Descriptor(
            media_type=self.get_media_type(),
            size=self.get_size(),
            digest=self.get_digest(),
        )

    def get_layer_descriptors(self) -> List[Descriptor]:
        """
        Retrieves the ordered (oldest first) layer descriptors of an image manifest.

        Returns:
            The layer descriptors.
        """
        if self.is_index():
            raise IntegrityError(
                f"Manifest of type {self.media_type} does not reference layers"
            )
        layers = self.json.get("layers", [])
        if not isinstance(layers, list):
            raise IntegrityError("Manifest layers is not a list")
        return [Descriptor.from_json(layer) for layer in layers]

    def get_manifest_descriptors(self) -> List[Descriptor]:
        """
        Retrieves the child manifest descriptors of an index.

        Returns:
            The manifest descriptors.
        """
        if not self.is_index():
            raise IntegrityError(
                f"Manifest of type {self.media_type} does not reference manifests"
            )
        manifests = self.json.get("manifests", [])
        if not isinstance(manifests, list):
            raise IntegrityError("Index manifests is not a list")
        return [Descriptor.from_json(manifest) for manifest in manifests]

    def get_media_type(self) -> str:
        """
        Retrieves the media type of the image manifest.

        Returns:
            The media type of the image manifest.
        """
        return self.media_type

    def get_schema_version(self) -> Optional[int]:
        """Retrieves the declared schema version."""
        return self.json.get("schemaVersion", None)

    def is_index(self) -> bool:
        """Checks if this manifest is an index (manifest list)."""
        return self.media_type in INDEX_MANIFEST_TYPES
