#!/usr/bin/env python

"""Content digests."""

import hashlib
import re

HEX_PATTERN = re.compile(r"^[a-f0-9]{64}$")


class FormattedSHA256(str):
    """
    An algorithm prefixed SHA256 hash value; the only digest algorithm supported by this client.

    Equality is equality of the formatted string, so instances compare equal to plain strings of the form
    "sha256:<hex>".
    """

    ALGORITHM = "sha256"

    def __new__(cls, sha256: str):
        if sha256 and sha256.startswith(f"{FormattedSHA256.ALGORITHM}:"):
            sha256 = sha256[len(FormattedSHA256.ALGORITHM) + 1 :]
        if not sha256 or not HEX_PATTERN.match(sha256):
            raise ValueError(sha256)
        obj = super().__new__(cls, f"{FormattedSHA256.ALGORITHM}:{sha256}")
        obj.sha256 = sha256
        return obj

    @property
    def algorithm(self) -> str:
        """The digest algorithm."""
        return FormattedSHA256.ALGORITHM

    @property
    def hex(self) -> str:
        """The hexadecimal digest value, without the algorithm prefix."""
        return self.sha256  # pylint: disable=no-member

    @staticmethod
    def parse(digest: str) -> "FormattedSHA256":
        """
        Initializes a FormattedSHA256 from a given, algorithm prefixed, digest value.

        Args:
            digest: A SHA256 digest value in form sha256:<digest value>.

        Returns:
            The newly initialized object.
        """
        if not digest or ":" not in digest:
            raise ValueError(digest)
        algorithm, _ = digest.split(":", 1)
        if algorithm != FormattedSHA256.ALGORITHM or len(digest) != 71:
            raise ValueError(digest)
        return FormattedSHA256(digest[7:])

    @staticmethod
    def calculate(data: bytes) -> "FormattedSHA256":
        """
        Calculates the digest value for given data.

        Args:
            data: The data for which to calculate the digest value.

        Returns:
            The FormattedSHA256 containing the corresponding digest value.
        """
        return FormattedSHA256(hashlib.sha256(data).hexdigest())

    @staticmethod
    def from_hasher(hasher) -> "FormattedSHA256":
        """Formats the current value of a hashlib sha256 object."""
        return FormattedSHA256(hasher.hexdigest())
