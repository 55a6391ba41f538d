#!/usr/bin/env python

"""
Pushes images and indices to a registry.

Blobs are checked with HEAD, mounted from other repositories on the same registry where possible, and otherwise
uploaded in chunks; manifests are only put once everything they reference is present.
"""

import logging
import os

from functools import partial
from typing import AsyncIterable, AsyncIterator, Dict, List, Sequence

from .errors import BlobUploadError, IntegrityError, NotFoundError, ProtocolError
from .formattedsha256 import FormattedSHA256
from .image import Artifact, Image, Index, Layer
from .imagename import ImageName, Repository, Tag
from .manifest import Manifest
from .registryclientasync import ACTIONS_PUSH, RegistryClientAsync
from .remoteimage import RemoteLayer
from .specs import FOREIGN_LAYER_TYPES
from .utils import CHUNK_SIZE, parse_range, run_bounded

LOGGER = logging.getLogger(__name__)

DEFAULT_JOBS = os.cpu_count() or 4

# Maximum number of times a single upload is restarted after the registry rejects a range
MAX_RESUMES = 8


async def _rechunk(chunks: AsyncIterable[bytes], chunk_size: int) -> AsyncIterator[bytes]:
    buffer = bytearray()
    try:
        async for chunk in chunks:
            buffer.extend(chunk)
            while len(buffer) >= chunk_size:
                yield bytes(buffer[:chunk_size])
                del buffer[:chunk_size]
        if buffer:
            yield bytes(buffer)
    finally:
        if hasattr(chunks, "aclose"):
            await chunks.aclose()


def _mount_sources(
    repository: Repository, layer: Layer, mount_sources: Sequence[Repository]
) -> List[Repository]:
    """Selects the repositories, on the same registry, from which a layer may be mounted."""
    candidates = list(mount_sources) if mount_sources else []
    if isinstance(layer, RemoteLayer):
        candidates.append(layer.repository)
    result = []
    for source in candidates:
        if (
            source.registry_str() == repository.registry_str()
            and str(source) != str(repository)
            and str(source) not in [str(r) for r in result]
        ):
            result.append(source)
    return result


async def _cancel_upload(client: RegistryClientAsync, repository: Repository, location: str):
    try:
        await client.delete_blob_upload(repository, location)
    except (NotFoundError, ProtocolError) as exception:
        LOGGER.debug("Unable to cancel upload %s: %s", location, exception)


async def _upload_chunks(
    client: RegistryClientAsync,
    repository: Repository,
    location: str,
    layer: Layer,
    digest: FormattedSHA256,
    chunk_size: int,
) -> str:
    """Uploads the content of a layer to an upload session, resuming when the registry rejects a range."""
    # pylint: disable=too-many-arguments
    offset = 0
    resumes = 0
    while True:
        resumed = False
        chunks = _rechunk(layer.compressed(offset), chunk_size)
        try:
            async for chunk in chunks:
                response = await client.patch_blob_upload(
                    repository, location, chunk, offset=offset
                )
                location = response.location
                if response.result:
                    offset += len(chunk)
                    continue

                end = parse_range(response.range)
                if end is None:
                    status = await client.get_blob_upload(repository, location)
                    location = status.location
                    end = parse_range(status.range)
                resumes += 1
                if not layer.seekable:
                    raise BlobUploadError(
                        f"Registry rejected the upload range of {digest} and the source cannot be re-read"
                    )
                if resumes > MAX_RESUMES:
                    raise BlobUploadError(
                        f"Upload of {digest} was restarted too many times"
                    )
                offset = end + 1 if end is not None else 0
                LOGGER.warning(
                    "Registry rejected the upload range of %s; resuming at offset %d",
                    digest,
                    offset,
                )
                resumed = True
                break
        finally:
            await chunks.aclose()
        if not resumed:
            return location


async def upload_blob(
    client: RegistryClientAsync,
    repository: Repository,
    layer: Layer,
    *,
    chunk_size: int = CHUNK_SIZE,
    mount_sources: Sequence[Repository] = None,
) -> bool:
    """
    Ensures that a blob is present in a repository.

    Args:
        client: The registry client.
        repository: The destination repository.
        layer: The blob to be uploaded.
        chunk_size: The size of each uploaded chunk.
        mount_sources: Repositories from which a cross repository mount is attempted.

    Returns:
        True if bytes were transferred; False if the blob already existed or was mounted.
    """
    digest = await layer.get_digest()
    head = await client.head_blob(repository, digest, actions=ACTIONS_PUSH)
    if head.result:
        LOGGER.debug("Blob already exists: %s@%s", repository, digest)
        return False

    location = None
    sources = _mount_sources(repository, layer, mount_sources)
    for source in sources:
        if location is not None:
            await _cancel_upload(client, repository, location)
        response = await client.post_blob(repository, digest=digest, source=source)
        if response.mounted:
            LOGGER.debug("Mounted blob %s from %s into %s", digest, source, repository)
            return False
        location = response.location

    if location is None:
        location = (await client.post_blob(repository)).location
    location = await _upload_chunks(
        client, repository, location, layer, digest, chunk_size
    )
    response = await client.put_blob_upload(repository, location, digest)
    if response.digest and response.digest != digest:
        raise IntegrityError(
            f"Registry committed blob {response.digest} instead of {digest}"
        )
    LOGGER.debug("Uploaded blob: %s@%s", repository, digest)
    return True


async def write_blobs(
    client: RegistryClientAsync,
    repository: Repository,
    layers: Sequence[Layer],
    *,
    chunk_size: int = CHUNK_SIZE,
    jobs: int = None,
    mount_sources: Sequence[Repository] = None,
) -> int:
    """
    Uploads blobs concurrently; duplicate digests are uploaded once and foreign layers are skipped.

    Args:
        client: The registry client.
        repository: The destination repository.
        layers: The blobs to be uploaded.
        chunk_size: The size of each uploaded chunk.
        jobs: The maximum number of concurrent uploads.
        mount_sources: Repositories from which cross repository mounts are attempted.

    Returns:
        The number of blobs for which bytes were transferred.
    """
    # pylint: disable=too-many-arguments
    unique = {}  # type: Dict[FormattedSHA256, Layer]
    for layer in layers:
        if await layer.get_media_type() in FOREIGN_LAYER_TYPES:
            LOGGER.debug("Skipping foreign layer: %s", await layer.get_digest())
            continue
        unique.setdefault(await layer.get_digest(), layer)

    results = await run_bounded(
        [
            partial(
                upload_blob,
                client,
                repository,
                layer,
                chunk_size=chunk_size,
                mount_sources=mount_sources,
            )
            for layer in unique.values()
        ],
        limit=jobs if jobs else DEFAULT_JOBS,
    )
    return sum(1 for result in results if result)


async def put_manifest(
    client: RegistryClientAsync, image_name: ImageName, manifest: Manifest
) -> FormattedSHA256:
    """Puts the exact bytes of a manifest, returning its digest."""
    digest = manifest.get_digest()
    response = await client.put_manifest(image_name, manifest)
    if response.digest and response.digest != digest:
        LOGGER.warning(
            "Registry reported digest %s for manifest %s of %s",
            response.digest,
            digest,
            image_name,
        )
    LOGGER.debug("Put manifest %s: %s", image_name, digest)
    return digest


async def write(
    client: RegistryClientAsync,
    image_name: ImageName,
    image: Image,
    *,
    chunk_size: int = CHUNK_SIZE,
    jobs: int = None,
    mount_sources: Sequence[Repository] = None,
) -> FormattedSHA256:
    """
    Pushes an image: every blob (config included) is made present before the manifest is put.

    Args:
        client: The registry client.
        image_name: The destination tag or digest.
        image: The image to be pushed.
        chunk_size: The size of each uploaded chunk.
        jobs: The maximum number of concurrent uploads; defaults to the processor count.
        mount_sources: Repositories, on the destination registry, from which blobs may be mounted.

    Returns:
        The digest of the pushed manifest.
    """
    # pylint: disable=too-many-arguments
    layers = await image.get_layers()
    layers.append(await image.get_config_layer())
    await write_blobs(
        client,
        image_name.context(),
        layers,
        chunk_size=chunk_size,
        jobs=jobs,
        mount_sources=mount_sources,
    )
    return await put_manifest(client, image_name, await image.get_manifest())


async def write_index(
    client: RegistryClientAsync,
    image_name: ImageName,
    index: Index,
    *,
    chunk_size: int = CHUNK_SIZE,
    jobs: int = None,
    mount_sources: Sequence[Repository] = None,
) -> FormattedSHA256:
    """
    Pushes an index: every child manifest (recursively) is pushed, by digest, before the index itself.

    Args:
        client: The registry client.
        image_name: The destination tag or digest.
        index: The index to be pushed.
        chunk_size: The size of each uploaded chunk.
        jobs: The maximum number of concurrent uploads per image.
        mount_sources: Repositories, on the destination registry, from which blobs may be mounted.

    Returns:
        The digest of the pushed index.
    """
    # pylint: disable=too-many-arguments
    repository = image_name.context()
    for descriptor in await index.get_children():
        target = repository.digest(descriptor.digest)
        head = await client.head_manifest(target, actions=ACTIONS_PUSH)
        if head.result:
            LOGGER.debug("Manifest already exists: %s", target)
            continue
        child = await index.get_child(descriptor)
        kwargs = {"chunk_size": chunk_size, "jobs": jobs, "mount_sources": mount_sources}
        if isinstance(child, Index):
            await write_index(client, target, child, **kwargs)
        elif isinstance(child, Image):
            await write(client, target, child, **kwargs)
        else:
            raise IntegrityError(f"Unsupported child artifact: {descriptor.digest}")
    return await put_manifest(client, image_name, await index.get_manifest())


async def tag(client: RegistryClientAsync, image_name: Tag, artifact: Artifact) -> FormattedSHA256:
    """
    Points a tag at an artifact that is already present in the destination repository; no blobs are transferred.

    Args:
        client: The registry client.
        image_name: The tag to be assigned.
        artifact: The image or index.

    Returns:
        The digest of the tagged manifest.
    """
    return await put_manifest(client, image_name, await artifact.get_manifest())


async def delete(client: RegistryClientAsync, image_name: ImageName):
    """Deletes a manifest by tag or digest."""
    await client.delete_manifest(image_name)
    LOGGER.debug("Deleted manifest: %s", image_name)
