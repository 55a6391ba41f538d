#!/usr/bin/env python

"""
Abstraction of an image configuration, as defined in:

https://github.com/opencontainers/image-spec/blob/main/config.md
"""

from typing import List, Optional

from .descriptor import Platform
from .errors import IntegrityError
from .formattedsha256 import FormattedSHA256
from .jsonbytes import JsonBytes


class ImageConfig(JsonBytes):
    """
    Image configuration; runtime metadata and the (uncompressed) layer digests.
    """

    def _set_bytes(self, _bytes: bytes):
        super()._set_bytes(_bytes)
        if not isinstance(self.json, dict):
            raise IntegrityError("Image configuration is not a JSON object")

    def get_diff_ids(self) -> List[FormattedSHA256]:
        """
        Retrieves the ordered (oldest first) digests of the uncompressed layers.

        Returns:
            The list of DiffIDs.
        """
        try:
            return [
                FormattedSHA256.parse(diff_id)
                for diff_id in self.json.get("rootfs", {}).get("diff_ids", [])
            ]
        except (AttributeError, TypeError, ValueError) as exception:
            raise IntegrityError("Invalid rootfs diff_ids") from exception

    def get_platform(self) -> Optional[Platform]:
        """Retrieves the platform described by the configuration, if any."""
        if "os" not in self.json or "architecture" not in self.json:
            return None
        return Platform(
            os=self.json["os"],
            architecture=self.json["architecture"],
            variant=self.json.get("variant", None),
            os_version=self.json.get("os.version", None),
        )
