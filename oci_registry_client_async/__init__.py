#!/usr/bin/env python

"""An AIOHTTP based Python client for OCI Distribution (Docker Registry v2) registries."""

from .authn import ANONYMOUS, AuthConfig, Authenticator, Basic, Bearer, FromConfig
from .cache import BlobCache, FilesystemCache, MemoryCache, ReadOnlyCache
from .catalog import catalog, list_tags, ManifestInfo, Tags, walk
from .copier import copy, copy_repository, diff_images, rename
from .descriptor import Descriptor, Platform
from .errors import (
    BlobUploadError,
    CanceledError,
    CredentialHelperError,
    HTTPError,
    IntegrityError,
    NotFoundError,
    ProtocolError,
    RegistryError,
    RepositoryCopyError,
    TransientError,
    UnauthorizedError,
)
from .formattedsha256 import FormattedSHA256
from .image import Image, Index, Layer, StaticImage, StaticIndex, StaticLayer, StreamLayer
from .imageconfig import ImageConfig
from .imagename import BadReferenceError, Digest, ImageName, Registry, Repository, Tag
from .jsonbytes import JsonBytes
from .keychain import (
    AuthPairsKeychain,
    DefaultKeychain,
    GitHubKeychain,
    get_default_keychain,
    Keychain,
    KubernetesKeychain,
    MultiKeychain,
)
from .manifest import Manifest
from .registryclientasync import RegistryClientAsync
from .remoteimage import get, RemoteDescriptor, RemoteImage, RemoteIndex, RemoteLayer
from .remotewriter import delete, tag, upload_blob, write, write_index
from .retry import Backoff, DEFAULT_BACKOFF, gcr_backoff
from .specs import (
    DockerAuthentication,
    DockerMediaTypes,
    Indices,
    MediaTypes,
    OCIMediaTypes,
)

__version__ = "0.2.0"
