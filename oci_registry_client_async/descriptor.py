#!/usr/bin/env python

"""Content descriptors and platforms, as found within manifests and indices."""

from typing import Any, Dict, List, NamedTuple, Optional

from .errors import IntegrityError
from .formattedsha256 import FormattedSHA256


class Platform(NamedTuple):
    """The platform an image is built for; https://github.com/opencontainers/image-spec/blob/main/image-index.md"""

    os: str
    architecture: str
    variant: Optional[str] = None
    os_version: Optional[str] = None

    def __str__(self):
        result = f"{self.os}/{self.architecture}"
        if self.variant:
            result = f"{result}/{self.variant}"
        if self.os_version:
            result = f"{result}:{self.os_version}"
        return result

    @staticmethod
    def from_json(_json: Optional[Dict]) -> Optional["Platform"]:
        """Initializes a platform from its JSON representation, if any."""
        if not _json:
            return None
        return Platform(
            os=_json.get("os", ""),
            architecture=_json.get("architecture", ""),
            variant=_json.get("variant", None),
            os_version=_json.get("os.version", None),
        )

    @staticmethod
    def parse(platform: str) -> "Platform":
        """
        Initializes a platform from a string of the form <os>/<arch>[/<variant>][:<os version>].

        Args:
            platform: The string to be parsed.

        Returns:
            The newly initialized platform.
        """
        os_version = None
        if ":" in platform:
            platform, os_version = platform.split(":", 1)
        parts = platform.split("/")
        if len(parts) < 2 or len(parts) > 3 or not all(parts):
            raise ValueError(f"Invalid platform: {platform}")
        return Platform(
            os=parts[0],
            architecture=parts[1],
            variant=parts[2] if len(parts) == 3 else None,
            os_version=os_version,
        )

    def satisfies(self, required: "Platform") -> bool:
        """
        Checks if this platform satisfies a required platform; unspecified optional fields of the requirement
        match anything.

        Args:
            required: The required platform.

        Returns:
            True if this platform satisfies the requirement, False otherwise.
        """
        if self.os != required.os or self.architecture != required.architecture:
            return False
        if required.variant and self.variant != required.variant:
            return False
        if required.os_version and self.os_version != required.os_version:
            return False
        return True

    def to_json(self) -> Dict:
        # pylint: disable=missing-function-docstring
        result = {"architecture": self.architecture, "os": self.os}
        if self.variant:
            result["variant"] = self.variant
        if self.os_version:
            result["os.version"] = self.os_version
        return result


class Descriptor(NamedTuple):
    """A pointer to content; https://github.com/opencontainers/image-spec/blob/main/descriptor.md"""

    media_type: str
    size: int
    digest: FormattedSHA256
    platform: Optional[Platform] = None
    urls: Optional[List[str]] = None
    annotations: Optional[Dict[str, str]] = None

    @staticmethod
    def from_json(_json: Any) -> "Descriptor":
        """
        Initializes a descriptor from its JSON representation.

        Args:
            _json: The JSON representation.

        Returns:
            The newly initialized descriptor.
        """
        try:
            size = _json["size"]
            if not isinstance(size, int) or size < 0:
                raise ValueError(f"Invalid size: {size}")
            return Descriptor(
                media_type=_json.get("mediaType", ""),
                size=size,
                digest=FormattedSHA256.parse(_json["digest"]),
                platform=Platform.from_json(_json.get("platform", None)),
                urls=_json.get("urls", None),
                annotations=_json.get("annotations", None),
            )
        except (AttributeError, KeyError, TypeError, ValueError) as exception:
            raise IntegrityError(f"Invalid descriptor: {_json}") from exception

    def to_json(self) -> Dict:
        """Returns the JSON representation of this descriptor."""
        result = {
            "digest": str(self.digest),
            "mediaType": self.media_type,
            "size": self.size,
        }
        if self.platform:
            result["platform"] = self.platform.to_json()
        if self.urls:
            result["urls"] = list(self.urls)
        if self.annotations:
            result["annotations"] = dict(self.annotations)
        return result
