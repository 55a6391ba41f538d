#!/usr/bin/env python

"""Classes that provide parsing, validation and formatting of image references."""

import os
import re

from abc import ABC, abstractmethod
from copy import deepcopy
from typing import Optional, Union

from .formattedsha256 import FormattedSHA256
from .specs import DockerAuthentication, Indices
from .typing import ImageNameParseString

# Note: https://github.com/distribution/distribution/blob/main/reference/regexp.go
HOSTNAME_COMPONENT = r"(?:[a-zA-Z0-9]|[a-zA-Z0-9][a-zA-Z0-9-]*[a-zA-Z0-9])"
REGISTRY_PATTERN = re.compile(
    rf"^(?:{HOSTNAME_COMPONENT}(?:\.{HOSTNAME_COMPONENT})*|\[[0-9a-fA-F:]+\])(?::[0-9]+)?$"
)
REPOSITORY_COMPONENT = r"[a-z0-9]+(?:(?:[._]|__|-+)[a-z0-9]+)*"
REPOSITORY_PATTERN = re.compile(
    rf"^{REPOSITORY_COMPONENT}(?:/{REPOSITORY_COMPONENT})*$"
)
TAG_PATTERN = re.compile(r"^[\w][\w.-]{0,127}$")
REPOSITORY_MAX_LENGTH = 255


class BadReferenceError(ValueError):
    """Raised when an image reference cannot be parsed or fails validation."""


class Registry:
    """
    A registry endpoint; <hostname>[:<port>].
    """

    DEFAULT_REGISTRY = os.environ.get("ORCA_DEFAULT_REGISTRY", Indices.DOCKERHUB)

    def __init__(self, name: str = "", *, strict: bool = False, insecure: bool = False):
        """
        Args:
            name: The hostname, with optional port, of the registry.
        Keyword Args:
            strict: If True, the registry may not be elided.
            insecure: If True, plain http is permitted when connecting to the registry.
        """
        if not name:
            if strict:
                raise BadReferenceError(
                    "strict validation requires the registry to be explicitly defined"
                )
            name = Registry.DEFAULT_REGISTRY
        if not REGISTRY_PATTERN.match(name):
            raise BadReferenceError(f"Invalid registry: {name}")
        if name in Indices.DOCKERHUB_ALIASES:
            name = Indices.DOCKERHUB
        self.name = name
        self.insecure = insecure

    def __eq__(self, other):
        return str(self) == str(other)

    def __hash__(self):
        return hash(str(self))

    def __repr__(self):
        return f"Registry({self.name!r})"

    def __str__(self):
        return self.name

    def hostname(self) -> str:
        """Returns the registry hostname, without port."""
        if self.name.startswith("["):
            return self.name[1 : self.name.index("]")]
        return self.name.split(":")[0]

    def is_dockerhub(self) -> bool:
        """Checks if this is the default Docker Hub registry."""
        return self.name == Indices.DOCKERHUB

    def is_local(self) -> bool:
        """Heuristic that identifies registries that are (likely) only reachable over plain http."""
        hostname = self.hostname()
        return (
            hostname in ["localhost", "::1"]
            or hostname.startswith("127.")
            or hostname.endswith(".local")
            or hostname.endswith(".localhost")
        )

    def registry_str(self) -> str:
        """Returns the registry portion of the reference; <hostname>[:<port>]."""
        return self.name

    def repository(self, name: str, *, strict: bool = False) -> "Repository":
        """Returns a repository within this registry."""
        return Repository(f"{self.name}/{name}", strict=strict, insecure=self.insecure)

    def scheme(self) -> str:
        """Returns the least secure scheme that may be used to connect to the registry."""
        return "http" if self.insecure or self.is_local() else "https"

    @staticmethod
    def scope(action: str = "*") -> str:
        # pylint: disable=unused-argument
        """Returns the token scope for registry wide operations (catalog)."""
        return DockerAuthentication.SCOPE_REGISTRY_CATALOG


class Repository:
    """
    A repository within a registry.
    """

    DEFAULT_NAMESPACE = os.environ.get("ORCA_DEFAULT_NAMESPACE", "library")

    def __init__(self, name: str, *, strict: bool = False, insecure: bool = False):
        """
        Args:
            name: The repository name, optionally prefixed by a registry endpoint.
        Keyword Args:
            strict: If True, the registry may not be elided.
            insecure: If True, plain http is permitted when connecting to the registry.
        """
        endpoint, repository = Repository._split(name)
        if not repository:
            raise BadReferenceError(f"Empty repository: {name}")
        if len(repository) > REPOSITORY_MAX_LENGTH:
            raise BadReferenceError(
                f"Repository longer than {REPOSITORY_MAX_LENGTH} characters: {name}"
            )
        if not REPOSITORY_PATTERN.match(repository):
            raise BadReferenceError(
                f"Repository can only contain the characters 'abcdefghijklmnopqrstuvwxyz0123456789_-./': "
                f"{repository}"
            )
        self.registry = Registry(endpoint, strict=strict, insecure=insecure)
        self.repository = repository

    def __eq__(self, other):
        return str(self) == str(other)

    def __hash__(self):
        return hash(str(self))

    def __lt__(self, other):
        return str(self) < str(other)

    def __repr__(self):
        return f"Repository({str(self)!r})"

    def __str__(self):
        return f"{self.registry_str()}/{self.repository_str()}"

    @staticmethod
    def _split(name: str):
        """Splits a string into its (optional) registry endpoint and repository."""
        if name.startswith("/"):
            name = name[1:]
        parts = name.split("/", 1)
        # Assumption: That endpoint addresses will contain at least one '.' (period) or ':' (port) character, or be
        #             'localhost', and by convention image namespaces will not.
        if len(parts) == 1 or (
            not any(x in parts[0] for x in [".", ":"]) and parts[0] != "localhost"
        ):
            return "", name
        return parts[0], parts[1]

    def child(self, name: str) -> "Repository":
        """Returns a repository nested below this repository."""
        return Repository(
            f"{self.registry_str()}/{self.repository_str()}/{name}",
            insecure=self.registry.insecure,
        )

    def digest(self, digest: Union[FormattedSHA256, str]) -> "Digest":
        """Returns a reference to a digest within this repository."""
        return Digest(self, FormattedSHA256.parse(str(digest)))

    def registry_str(self) -> str:
        """Returns the registry portion of the reference; <hostname>[:<port>]."""
        return self.registry.registry_str()

    def repository_str(self) -> str:
        """Returns the repository name, applying the default namespace for short Docker Hub names."""
        if self.registry.is_dockerhub() and "/" not in self.repository:
            return f"{Repository.DEFAULT_NAMESPACE}/{self.repository}"
        return self.repository

    def scope(self, actions: str) -> str:
        """
        Returns the token scope for this repository.

        Args:
            actions: Comma separated list of actions; e.g. "pull" or "pull,push".

        Returns:
            The scope; "repository:<repo>:<actions>".
        """
        return DockerAuthentication.SCOPE_REPOSITORY_PATTERN.format(
            self.repository_str(), actions
        )

    def tag(self, tag: str) -> "Tag":
        """Returns a reference to a tag within this repository."""
        return Tag(self, tag)


class ImageName(ABC):
    """
    Image reference abstraction; either a Tag or a Digest within a Repository.
    """

    DEFAULT_TAG = os.environ.get("ORCA_DEFAULT_TAG", "latest")

    def __init__(self, repository: Repository):
        self.repository = repository

    def __eq__(self, other):
        """
        Args:
            other: The instance to which "self" is compared.
        """
        return str(self) == str(other)

    def __lt__(self, other):
        """
        Args:
            other: The instance to which "self" is compared.
        """
        return str(self) < str(other)

    def __hash__(self):
        """Hash according to our string value"""
        return hash(str(self))

    def __repr__(self):
        return f"{type(self).__name__}({str(self)!r})"

    @abstractmethod
    def __str__(self):
        pass

    def clone(self) -> "ImageName":
        """
        Initializes an returns a copy of this instance.

        Returns: A copy of this instance.
        """
        return deepcopy(self)

    def context(self) -> Repository:
        """Returns the repository that owns this reference."""
        return self.repository

    @abstractmethod
    def identifier(self) -> str:
        """Returns the tag or digest used to address the manifest."""

    @staticmethod
    def _parse_string(string: str) -> ImageNameParseString:
        """
        Parses the endpoint, image, digest, and tag from a given string.

        Args:
            string: The string to be parsed.

        Returns:
            digest: The digest value.
            endpoint: The registry endpoint; address with optional port.
            image: The name of the image; the image name and optional namespace.
            tag: The tag name.
        """
        digest = None
        tag = None
        remainder = string

        if "@" in remainder:
            remainder, value = remainder.rsplit("@", 1)
            algorithm = value.split(":", 1)[0] if ":" in value else ""
            if algorithm != FormattedSHA256.ALGORITHM:
                raise BadReferenceError(
                    f"Unsupported or ambiguous digest algorithm: {value}"
                )
            try:
                digest = FormattedSHA256.parse(value)
            except ValueError as exception:
                raise BadReferenceError(f"Invalid digest: {value}") from exception

        # Note: A tag separator must follow the last path separator; otherwise it delimits a port.
        index = remainder.rfind(":")
        if index > remainder.rfind("/"):
            remainder, tag = remainder[:index], remainder[index + 1 :]
            if not TAG_PATTERN.match(tag):
                raise BadReferenceError(
                    f"Tag can only contain the characters "
                    f"'abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789_-.': {tag}"
                )

        endpoint, image = Repository._split(remainder)  # pylint: disable=protected-access
        return ImageNameParseString(
            digest=digest, endpoint=endpoint or None, image=image, tag=tag
        )

    @staticmethod
    def parse(
        image_name: str, *, strict: bool = False, insecure: bool = False
    ) -> "ImageName":
        """
        Initializes a Tag or Digest from a given image name string.

        Args:
            image_name: String containing the image name to be parsed.
        Keyword Args:
            strict: If True, neither the registry nor the tag (or digest) may be elided.
            insecure: If True, plain http is permitted when connecting to the registry.

        Returns:
            A Digest if the string contains a digest (retaining any tag), otherwise a Tag.
        """
        parsed = ImageName._parse_string(image_name)
        endpoint = f"{parsed.endpoint}/" if parsed.endpoint else ""
        repository = Repository(
            f"{endpoint}{parsed.image}", strict=strict, insecure=insecure
        )
        if parsed.digest:
            return Digest(repository, parsed.digest, tag=parsed.tag)
        return Tag(repository, parsed.tag, strict=strict)

    def registry_str(self) -> str:
        """Returns the registry portion of the reference; <hostname>[:<port>]."""
        return self.repository.registry_str()

    def resolve_digest(self) -> Optional[FormattedSHA256]:
        """
        Resolves the digest value.

        Returns:
            The explicit digest value, or None.
        """
        return None

    def resolve_endpoint(self) -> str:
        """
        Resolves the registry endpoint.

        Returns:
            The explicit registry endpoint.
        """
        return self.repository.registry_str()

    def resolve_identifier(self) -> str:
        """Resolves the tag or digest used to address the manifest."""
        return self.identifier()

    def resolve_image(self) -> str:
        """
        Resolves the name of the image.

        Returns:
            The explicit name of the image, with namespace.
        """
        return self.repository.repository_str()

    def resolve_name(self) -> str:
        """Helper function for explict formatting."""
        return str(self)

    def resolve_tag(self) -> Optional[str]:
        """
        Resolves the tag name.

        Returns:
            The tag name, or None.
        """
        return None

    def scope(self, actions: str) -> str:
        """Returns the token scope for the repository that owns this reference."""
        return self.repository.scope(actions)


class Tag(ImageName):
    """A reference to a (mutable) tag."""

    def __init__(
        self, repository: Repository, tag: Optional[str] = None, *, strict: bool = False
    ):
        """
        Args:
            repository: The repository that owns the tag.
            tag: The tag name.
        Keyword Args:
            strict: If True, the tag may not be elided.
        """
        super().__init__(repository)
        if not tag:
            if strict:
                raise BadReferenceError(
                    "strict validation requires the tag to be explicitly defined"
                )
            tag = ImageName.DEFAULT_TAG
        if not TAG_PATTERN.match(tag):
            raise BadReferenceError(f"Invalid tag: {tag}")
        self.tag = tag

    def __str__(self):
        return f"{self.repository}:{self.tag}"

    def identifier(self) -> str:
        return self.tag

    def resolve_tag(self) -> str:
        return self.tag


class Digest(ImageName):
    """A reference to an (immutable) content digest."""

    def __init__(
        self,
        repository: Repository,
        digest: FormattedSHA256,
        *,
        tag: Optional[str] = None,
    ):
        """
        Args:
            repository: The repository that owns the digest.
            digest: The manifest digest.
        Keyword Args:
            tag: The tag that accompanied the digest in a "tag@digest" form, if any.
        """
        super().__init__(repository)
        if not isinstance(digest, FormattedSHA256):
            digest = FormattedSHA256.parse(digest)
        self.digest = digest
        self.tag = tag

    def __str__(self):
        # Note: A digest does not require a tag, but if a tag exists, the digest must come after it.
        if self.tag:
            return f"{self.repository}:{self.tag}@{self.digest}"
        return f"{self.repository}@{self.digest}"

    def identifier(self) -> str:
        return str(self.digest)

    def resolve_digest(self) -> FormattedSHA256:
        return self.digest

    def resolve_tag(self) -> Optional[str]:
        return self.tag

    def untagged(self) -> "Digest":
        """Returns this reference without the accompanying tag."""
        return Digest(self.repository, self.digest)

    def write_target(self) -> ImageName:
        """Returns the reference to be used when writing; the tag, if one accompanied the digest."""
        if self.tag:
            return Tag(self.repository, self.tag)
        return self.untagged()
