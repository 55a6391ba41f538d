#!/usr/bin/env python

"""
Paginated repository and tag listings, and a depth first walk of repository trees.

Some registries (e.g. Google Container Registry) extend the tag listing with the names of child repositories and
with per digest manifest metadata; both are parsed when present.
"""

import asyncio
import logging

from datetime import datetime, timezone
from typing import Awaitable, Callable, Dict, List, NamedTuple, Optional, Tuple

from aiohttp import ClientError

from .errors import CanceledError, IntegrityError, RegistryError
from .imagename import Registry, Repository
from .registryclientasync import RegistryClientAsync
from .utils import check_canceled

LOGGER = logging.getLogger(__name__)


class ManifestInfo(NamedTuple):
    # pylint: disable=missing-class-docstring
    size: int = 0
    media_type: str = ""
    created: Optional[datetime] = None
    uploaded: Optional[datetime] = None
    tags: Tuple[str, ...] = ()

    @staticmethod
    def from_json(_json: Dict) -> "ManifestInfo":
        """
        Parses a manifest entry of an extended tag listing; numbers are encoded as strings and timestamps are
        milliseconds since the unix epoch.
        """
        try:
            return ManifestInfo(
                size=int(_json.get("imageSizeBytes") or 0),
                media_type=_json.get("mediaType", ""),
                created=from_unix_ms(_json.get("timeCreatedMs")),
                uploaded=from_unix_ms(_json.get("timeUploadedMs")),
                tags=tuple(_json.get("tag") or ()),
            )
        except (AttributeError, TypeError, ValueError) as exception:
            raise IntegrityError(f"Invalid manifest info: {_json}") from exception


class Tags(NamedTuple):
    # pylint: disable=missing-class-docstring
    name: str
    tags: List[str]
    children: List[str]
    manifests: Dict[str, ManifestInfo]


def from_unix_ms(value) -> Optional[datetime]:
    """Converts a (string encoded) number of milliseconds since the unix epoch to a datetime."""
    if value in [None, ""]:
        return None
    milliseconds = int(value)
    return datetime.fromtimestamp(milliseconds // 1000, tz=timezone.utc).replace(
        microsecond=(milliseconds % 1000) * 1000
    )


async def list_tags(
    client: RegistryClientAsync, repository: Repository, *, page_size: int = None
) -> Tags:
    """
    Lists the tags of a repository, following pagination to the end.

    Args:
        client: The registry client.
        repository: The repository.
        page_size: The number of entries requested per page; the registry default if omitted.

    Returns:
        The tags, child repositories and manifest metadata of the repository.
    """
    children = []
    manifests = {}
    name = repository.repository_str()
    tags = []
    url = None
    while True:
        check_canceled()
        response = await client.get_tags(repository, n=page_size, url=url)
        document = response.tags if isinstance(response.tags, dict) else {}
        name = document.get("name", name)
        tags.extend(document.get("tags") or [])
        for child in document.get("child") or []:
            if child not in children:
                children.append(child)
        for digest, info in (document.get("manifest") or {}).items():
            manifests[digest] = ManifestInfo.from_json(info)
        url = response.next_url
        if not url:
            break
    return Tags(name=name, tags=tags, children=children, manifests=manifests)


async def catalog(
    client: RegistryClientAsync, registry: Registry, *, page_size: int = None
) -> List[str]:
    """
    Lists the repositories of a registry, following pagination to the end.

    Args:
        client: The registry client.
        registry: The registry.
        page_size: The number of entries requested per page; the registry default if omitted.

    Returns:
        The names of the repositories.
    """
    result = []
    url = None
    while True:
        check_canceled()
        response = await client.get_catalog(registry, n=page_size, url=url)
        document = response.catalog if isinstance(response.catalog, dict) else {}
        result.extend(document.get("repositories") or [])
        url = response.next_url
        if not url:
            break
    return result


WalkFunction = Callable[
    [Repository, Optional[Tags], Optional[BaseException]], Awaitable[Optional[Tags]]
]


async def _list_or_error(client, repository, page_size):
    try:
        return await list_tags(client, repository, page_size=page_size), None
    except CanceledError:
        raise
    except (ClientError, RegistryError, asyncio.TimeoutError) as exception:
        # The walk function decides what to do with listing failures.
        return None, exception


async def walk(
    client: RegistryClientAsync,
    root: Repository,
    walk_fn: WalkFunction,
    *,
    cancel_event: asyncio.Event = None,
    page_size: int = None,
):
    """
    Visits a repository and, depth first, all of its child repositories.

    Args:
        client: The registry client.
        root: The repository at which to start.
        walk_fn: Invoked with (repository, tags, error) for every repository; error is set, and tags is None, if
                 the repository could not be listed. The children of such a repository are visited only if walk_fn
                 returns a listing in its place. Exceptions raised by walk_fn terminate the walk.
        cancel_event: When set, the walk terminates with CanceledError before the next request.
        page_size: The number of entries requested per page.
    """

    async def _walk_fn(repository, tags, error):
        check_canceled(cancel_event)
        return await walk_fn(repository, tags, error)

    async def _list(repository):
        check_canceled(cancel_event)
        return await _list_or_error(client, repository, page_size)

    tags, error = await _list(root)

    async def _recurse(repository, tags, error):
        relisted = await _walk_fn(repository, tags, error)
        if error is not None:
            if relisted is None:
                return
            tags = relisted
        for path in tags.children:
            child = repository.child(path)
            child_tags, child_error = await _list(child)
            await _recurse(child, child_tags, child_error)

    await _recurse(root, tags, error)


async def get_manifest_infos(
    client: RegistryClientAsync, repository: Repository, tags: Tags
) -> Dict[str, ManifestInfo]:
    """
    Returns the manifest metadata of a listing, keyed by digest. Listings without the manifest extension are
    resolved by querying each tag.

    Args:
        client: The registry client.
        repository: The repository that was listed.
        tags: The listing.

    Returns:
        Mapping of digest to manifest metadata.
    """
    if tags.manifests or not tags.tags:
        return dict(tags.manifests)

    result = {}  # type: Dict[str, ManifestInfo]
    for tag in tags.tags:
        check_canceled()
        image_name = repository.tag(tag)
        head = await client.head_manifest(image_name)
        if not head.result:
            LOGGER.debug("Tag disappeared while listing: %s", image_name)
            continue
        digest, media_type, size = head.digest, head.media_type, head.size
        if digest is None:
            manifest = (await client.get_manifest(image_name)).manifest
            digest = manifest.get_digest()
            media_type = manifest.get_media_type()
            size = manifest.get_size()
        info = result.get(str(digest), ManifestInfo(size=size or 0, media_type=media_type or ""))
        result[str(digest)] = info._replace(tags=info.tags + (tag,))
    return result
