#!/usr/bin/env python

"""
Copies images between repositories, and mirrors whole repository trees.

A recursive copy walks the source tree, diffs every repository against its destination, and feeds the missing
digests to a bounded pool of workers. Only missing content is transferred; tags that point at content already
present at the destination are assigned without transferring any blobs.
"""

import asyncio
import logging

from functools import partial
from typing import Dict, List, NamedTuple, Optional

from aiohttp import ClientError

from .cache import BlobCache
from .catalog import get_manifest_infos, list_tags, ManifestInfo, Tags, walk
from .errors import CanceledError, NotFoundError, RegistryError, RepositoryCopyError
from .formattedsha256 import FormattedSHA256
from .imagename import ImageName, Repository
from .manifest import Manifest
from .registryclientasync import ACTIONS_PUSH, RegistryClientAsync
from .remoteimage import get, RemoteLayer
from .remotewriter import DEFAULT_JOBS, put_manifest, tag, write_blobs
from .retry import Backoff, gcr_backoff, retry
from .specs import INDEX_MANIFEST_TYPES
from .utils import CANCEL_EVENT, CHUNK_SIZE, check_canceled

LOGGER = logging.getLogger(__name__)


class CopyTask(NamedTuple):
    # pylint: disable=missing-class-docstring
    digest: str
    manifest: ManifestInfo
    source: Repository
    destination: Repository
    done: Optional[asyncio.Future] = None


def diff_images(
    want: Dict[str, ManifestInfo], have: Dict[str, ManifestInfo]
) -> Dict[str, ManifestInfo]:
    """
    Computes the manifests that must be copied for a destination to contain a source.

    Args:
        want: Manifest metadata of the source, keyed by digest.
        have: Manifest metadata of the destination, keyed by digest.

    Returns:
        The digests missing from the destination (with all of their tags), and the digests present at the
        destination but missing some tags (with only the missing tags).
    """
    need = {}
    for digest, wanted in want.items():
        if digest not in have:
            need[digest] = wanted
            continue
        missing = [t for t in wanted.tags if t not in have[digest].tags]
        if missing:
            need[digest] = wanted._replace(tags=tuple(missing))
    return need


def rename(repository: Repository, source: Repository, destination: Repository) -> Repository:
    """
    Maps a repository below a source root to the corresponding repository below a destination root.

    Args:
        repository: The repository to be mapped.
        source: The source root.
        destination: The destination root.

    Returns:
        The destination repository.
    """
    replaced = str(repository).replace(str(source), str(destination), 1)
    return Repository(replaced, strict=True, insecure=destination.registry.insecure)


async def _copy_manifest(
    client: RegistryClientAsync,
    source: Repository,
    destination: ImageName,
    manifest: Manifest,
    **kwargs,
) -> FormattedSHA256:
    repository = destination.context()
    if manifest.is_index():
        for descriptor in manifest.get_manifest_descriptors():
            target = repository.digest(descriptor.digest)
            head = await client.head_manifest(target, actions=ACTIONS_PUSH)
            if head.result:
                LOGGER.debug("Manifest already exists: %s", target)
                continue
            child = await get(client, source.digest(descriptor.digest), cache=kwargs.get("cache"))
            await _copy_manifest(client, source, target, child.manifest, **kwargs)
    else:
        descriptors = []
        if "config" in manifest.json:
            descriptors.append(manifest.get_config_descriptor())
        descriptors.extend(manifest.get_layer_descriptors())
        await write_blobs(
            client,
            repository,
            [
                RemoteLayer(client, source, descriptor, cache=kwargs.get("cache"))
                for descriptor in descriptors
            ],
            chunk_size=kwargs.get("chunk_size", CHUNK_SIZE),
            jobs=kwargs.get("jobs"),
        )
    return await put_manifest(client, destination, manifest)


async def copy(
    client: RegistryClientAsync,
    source: ImageName,
    destination: ImageName,
    *,
    cache: BlobCache = None,
    chunk_size: int = CHUNK_SIZE,
    jobs: int = None,
) -> FormattedSHA256:
    """
    Copies an image, index or other manifest, byte for byte. Blobs are mounted when both references are on the
    same registry.

    Args:
        client: The registry client.
        source: The source tag or digest.
        destination: The destination tag or digest.
        cache: Optional blob cache.
        chunk_size: The size of each uploaded chunk.
        jobs: The maximum number of concurrent blob uploads.

    Returns:
        The digest of the copied manifest.
    """
    # pylint: disable=too-many-arguments
    remote = await get(client, source, cache=cache)
    digest = await _copy_manifest(
        client,
        source.context(),
        destination,
        remote.manifest,
        cache=cache,
        chunk_size=chunk_size,
        jobs=jobs,
    )
    LOGGER.info("Copied %s to %s: %s", source, destination, digest)
    return digest


async def _copy_task(client: RegistryClientAsync, task: CopyTask, **kwargs):
    target = task.destination.digest(task.digest)
    tags = list(task.manifest.tags)
    head = await client.head_manifest(target, actions=ACTIONS_PUSH)
    if not head.result:
        await copy(
            client,
            task.source.digest(task.digest),
            task.destination.tag(tags.pop(0)) if tags else target,
            **kwargs,
        )
    if not tags:
        return

    # Retag content already present at the destination.
    remote = await get(client, target, cache=kwargs.get("cache"))
    artifact = remote.artifact()
    for other in tags:
        await tag(client, task.destination.tag(other), artifact)


async def _diff_repository(
    client: RegistryClientAsync,
    source: Repository,
    destination: Repository,
    tags: Tags,
    page_size: Optional[int],
) -> Dict[str, ManifestInfo]:
    # pylint: disable=too-many-arguments
    want = await get_manifest_infos(client, source, tags)
    try:
        have_tags = await list_tags(client, destination, page_size=page_size)
        have = await get_manifest_infos(client, destination, have_tags)
    except NotFoundError:
        LOGGER.debug("Destination does not exist: %s", destination)
        have = {}
    return diff_images(want, have)


async def copy_repository(
    client: RegistryClientAsync,
    source: Repository,
    destination: Repository,
    *,
    backoff: Backoff = None,
    cache: BlobCache = None,
    cancel_event: asyncio.Event = None,
    chunk_size: int = CHUNK_SIZE,
    jobs: int = None,
    page_size: int = None,
):
    """
    Mirrors a repository, and all of its child repositories, transferring only missing content.

    Args:
        client: The registry client.
        source: The root of the source tree.
        destination: The root of the destination tree.
        backoff: Retry policy applied to every listing and copy; gcr_backoff() if omitted.
        cache: Optional blob cache.
        cancel_event: When set, workers stop taking tasks and in flight requests are aborted.
        chunk_size: The size of each uploaded chunk.
        jobs: The number of workers; defaults to the processor count.
        page_size: The number of entries requested per listing page.

    Raises:
        RepositoryCopyError: If one or more repositories could not be listed or diffed; the others are copied.
    """
    # pylint: disable=too-many-arguments,too-many-locals
    backoff = backoff if backoff else gcr_backoff()
    cancel_event = cancel_event if cancel_event else asyncio.Event()
    jobs = jobs if jobs else DEFAULT_JOBS
    errors = {}  # type: Dict[str, BaseException]
    queue = asyncio.Queue(maxsize=2 * jobs)
    copy_kwargs = {"cache": cache, "chunk_size": chunk_size, "jobs": jobs}

    async def _enqueue(tasks: List[CopyTask]):
        for task in tasks:
            check_canceled(cancel_event)
            await queue.put(task)

    async def _walk_fn(repository: Repository, tags: Optional[Tags], error) -> Optional[Tags]:
        target = rename(repository, source, destination)
        try:
            if error is not None:
                LOGGER.warning("Failed to list %s: %s", repository, error)
                tags = await retry(
                    partial(list_tags, client, repository, page_size=page_size),
                    backoff=backoff,
                )
        except CanceledError:
            raise
        except (ClientError, RegistryError, asyncio.TimeoutError) as exception:
            LOGGER.warning("Skipping %s and its children: %s", repository, exception)
            errors[str(repository)] = exception
            return None

        try:
            need = await retry(
                partial(_diff_repository, client, repository, target, tags, page_size),
                backoff=backoff,
            )
        except CanceledError:
            raise
        except (ClientError, RegistryError, asyncio.TimeoutError) as exception:
            LOGGER.warning("Failed to diff %s: %s", repository, exception)
            errors[str(repository)] = exception
            return tags

        loop = asyncio.get_event_loop()
        images, indices = [], []
        for digest, info in sorted(need.items()):
            task = CopyTask(digest, info, repository, target, loop.create_future())
            (indices if info.media_type in INDEX_MANIFEST_TYPES else images).append(task)
        LOGGER.debug(
            "Copying %d manifests from %s to %s", len(images) + len(indices), repository, target
        )
        await _enqueue(images)
        if indices:
            # Indices may reference the images enqueued above.
            await asyncio.gather(*[task.done for task in images])
            await _enqueue(indices)
        return tags

    async def _produce():
        await walk(client, source, _walk_fn, cancel_event=cancel_event, page_size=page_size)
        for _ in range(jobs):
            await queue.put(None)

    async def _consume():
        while True:
            task = await queue.get()
            if task is None:
                return
            check_canceled(cancel_event)
            await retry(partial(_copy_task, client, task, **copy_kwargs), backoff=backoff)
            task.done.set_result(True)

    token = CANCEL_EVENT.set(cancel_event)
    try:
        tasks = [asyncio.ensure_future(_produce())] + [
            asyncio.ensure_future(_consume()) for _ in range(jobs)
        ]
    finally:
        CANCEL_EVENT.reset(token)
    watcher = asyncio.ensure_future(cancel_event.wait())
    pending = set(tasks)
    try:
        while pending:
            done, pending = await asyncio.wait(
                pending | {watcher}, return_when=asyncio.FIRST_COMPLETED
            )
            pending.discard(watcher)
            for task in done - {watcher}:
                task.result()
            if watcher in done:
                # Sleeping retries and in flight requests are interrupted as well.
                raise CanceledError("Repository copy canceled")
    except BaseException:
        cancel_event.set()
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise
    finally:
        watcher.cancel()

    if errors:
        raise RepositoryCopyError(errors)
