#!/usr/bin/env python

"""Catalog, tag listing and walk tests."""

import asyncio

from datetime import datetime, timezone

import pytest

from oci_registry_client_async import (
    CanceledError,
    catalog,
    IntegrityError,
    list_tags,
    ManifestInfo,
    NotFoundError,
    Registry,
    RegistryClientAsync,
    Repository,
    walk,
)
from oci_registry_client_async.catalog import from_unix_ms, get_manifest_infos

from .fakeregistry import Fault, FakeRegistry
from .testutils import make_image

pytestmark = [pytest.mark.asyncio]

ROOT = Repository("example.com/root")


async def _seed_tree(registry: FakeRegistry):
    image = await make_image(b"content")
    for name in ["root", "root/a", "root/a/b", "root/c"]:
        await registry.put_image(f"example.com/{name}", image, "latest")


async def test_list_tags(gcr_registry: FakeRegistry, gcr_client: RegistryClientAsync):
    """Test that tag listings are followed to the end, including the listing extensions."""
    image = await make_image(b"content")
    digest = await gcr_registry.put_image("example.com/root", image, "t0", "t1", "t2", "t3", "t4")
    other = await gcr_registry.put_image("example.com/root", await make_image(b"other"))
    await gcr_registry.put_image("example.com/root/a", image, "latest")
    await gcr_registry.put_image("example.com/root/b", image, "latest")

    tags = await list_tags(gcr_client, ROOT)
    assert tags.name == "root"
    assert tags.tags == ["t0", "t1", "t2", "t3", "t4"]
    assert tags.children == ["a", "b"]
    assert set(tags.manifests) == {digest, other}
    assert len(gcr_registry.get_requests("GET", "/tags/list")) == 3

    info = tags.manifests[digest]
    assert info.tags == ("t0", "t1", "t2", "t3", "t4")
    assert info.media_type == (await image.get_manifest()).get_media_type()
    assert info.size == len((await image.get_manifest()).get_bytes())
    assert info.created == datetime(2020, 9, 13, 12, 26, 40, tzinfo=timezone.utc)
    assert info.uploaded == datetime(2020, 9, 13, 12, 26, 41, tzinfo=timezone.utc)
    assert not tags.manifests[other].tags

    gcr_registry.requests.clear()
    await list_tags(gcr_client, ROOT, page_size=10)
    assert len(gcr_registry.get_requests("GET", "/tags/list")) == 1


async def test_list_tags_plain(registry: FakeRegistry, client: RegistryClientAsync):
    """Test that plain tag listings have no children or manifest metadata."""
    await registry.put_image("example.com/root", await make_image(b"content"), "latest")
    tags = await list_tags(client, ROOT)
    assert tags.tags == ["latest"]
    assert not tags.children
    assert not tags.manifests

    with pytest.raises(NotFoundError):
        await list_tags(client, Repository("example.com/missing"))


@pytest.mark.parametrize("null_tags", [False, True])
async def test_list_tags_empty(registry: FakeRegistry, client: RegistryClientAsync, null_tags: bool):
    """Test that repositories without tags are listed as empty, whether the tags are empty or null."""
    await registry.put_image("example.com/root", await make_image(b"content"))
    registry.null_tags = null_tags
    tags = await list_tags(client, ROOT)
    assert tags.tags == []
    assert not await get_manifest_infos(client, ROOT, tags)
    assert not registry.get_requests("HEAD")

@pytest.mark.parametrize(
    "value,expected",
    [
        ("1600000000123", datetime(2020, 9, 13, 12, 26, 40, 123000, tzinfo=timezone.utc)),
        (1600000000000, datetime(2020, 9, 13, 12, 26, 40, tzinfo=timezone.utc)),
        ("0", datetime(1970, 1, 1, tzinfo=timezone.utc)),
        ("", None),
        (None, None),
    ],
)
async def test_from_unix_ms(value, expected):
    """Test the conversion of listing timestamps."""
    assert from_unix_ms(value) == expected


async def test_manifest_info_invalid():
    """Test that malformed manifest metadata is rejected."""
    assert ManifestInfo.from_json({}) == ManifestInfo()
    with pytest.raises(IntegrityError):
        ManifestInfo.from_json({"imageSizeBytes": "large"})
    with pytest.raises(IntegrityError):
        ManifestInfo.from_json({"timeCreatedMs": "yesterday"})


async def test_manifest_info_defaults():
    """Test that manifest metadata instances do not share their tags."""
    first = ManifestInfo()
    second = first._replace(tags=first.tags + ("latest",))
    assert second.tags == ("latest",)
    assert first.tags == ()
    assert ManifestInfo().tags == ()


async def test_catalog(gcr_registry: FakeRegistry, gcr_client: RegistryClientAsync):
    """Test that the catalog is followed to the end."""
    await _seed_tree(gcr_registry)
    assert await catalog(gcr_client, Registry("example.com")) == [
        "root",
        "root/a",
        "root/a/b",
        "root/c",
    ]
    assert len(gcr_registry.get_requests("GET", "/_catalog")) == 2


async def test_walk(gcr_registry: FakeRegistry, gcr_client: RegistryClientAsync):
    """Test that repositories are visited depth first."""
    await _seed_tree(gcr_registry)
    visited = []

    async def _walk_fn(repository, tags, error):
        assert error is None
        visited.append((str(repository), tags.tags))

    await walk(gcr_client, ROOT, _walk_fn)
    assert visited == [
        ("example.com/root", ["latest"]),
        ("example.com/root/a", ["latest"]),
        ("example.com/root/a/b", ["latest"]),
        ("example.com/root/c", ["latest"]),
    ]


async def test_walk_errors(gcr_registry: FakeRegistry, gcr_client: RegistryClientAsync):
    """Test that listing failures are reported to the walk function, and their subtrees skipped."""
    await _seed_tree(gcr_registry)
    gcr_registry.faults.append(Fault("GET", "/v2/root/a/tags/list", 404))
    visited = []

    async def _walk_fn(repository, tags, error):
        visited.append((str(repository), type(error)))

    await walk(gcr_client, ROOT, _walk_fn)
    assert visited == [
        ("example.com/root", type(None)),
        ("example.com/root/a", NotFoundError),
        ("example.com/root/c", type(None)),
    ]


async def test_walk_relisted(gcr_registry: FakeRegistry, gcr_client: RegistryClientAsync):
    """Test that the subtree of a failed listing is visited when the walk function lists it again."""
    await _seed_tree(gcr_registry)
    gcr_registry.faults.append(Fault("GET", "/v2/root/a/tags/list", 404))
    visited = []

    async def _walk_fn(repository, tags, error):
        visited.append((str(repository), type(error)))
        if error is not None:
            return await list_tags(gcr_client, repository)
        return None

    await walk(gcr_client, ROOT, _walk_fn)
    assert visited == [
        ("example.com/root", type(None)),
        ("example.com/root/a", NotFoundError),
        ("example.com/root/a/b", type(None)),
        ("example.com/root/c", type(None)),
    ]


async def test_walk_fn_error(gcr_registry: FakeRegistry, gcr_client: RegistryClientAsync):
    """Test that errors raised by the walk function terminate the walk."""
    await _seed_tree(gcr_registry)
    visited = []

    async def _walk_fn(repository, tags, error):
        # pylint: disable=unused-argument
        visited.append(str(repository))
        if repository.repository_str() == "root/a":
            raise ValueError("stop")

    with pytest.raises(ValueError):
        await walk(gcr_client, ROOT, _walk_fn)
    assert visited == ["example.com/root", "example.com/root/a"]


async def test_walk_canceled(gcr_registry: FakeRegistry, gcr_client: RegistryClientAsync):
    """Test that a walk terminates once canceled."""
    await _seed_tree(gcr_registry)
    event = asyncio.Event()
    visited = []

    async def _walk_fn(repository, tags, error):
        # pylint: disable=unused-argument
        visited.append(str(repository))
        event.set()

    with pytest.raises(CanceledError):
        await walk(gcr_client, ROOT, _walk_fn, cancel_event=event)
    assert visited == ["example.com/root"]
    assert len(gcr_registry.get_requests("GET", "/tags/list")) == 1


async def test_get_manifest_infos(registry: FakeRegistry, client: RegistryClientAsync):
    """Test that plain listings are resolved to manifest metadata by querying each tag."""
    image = await make_image(b"content")
    digest = await registry.put_image("example.com/root", image, "t1", "t2")
    other = await registry.put_image("example.com/root", await make_image(b"other"), "t3")

    tags = await list_tags(client, ROOT)
    infos = await get_manifest_infos(client, ROOT, tags)
    assert set(infos) == {digest, other}
    assert infos[digest].tags == ("t1", "t2")
    assert infos[digest].size == len((await image.get_manifest()).get_bytes())
    assert infos[digest].media_type == (await image.get_manifest()).get_media_type()
    assert infos[other].tags == ("t3",)
    assert len(registry.get_requests("HEAD", "/manifests/")) == 3


async def test_get_manifest_infos_extended(
    gcr_registry: FakeRegistry, gcr_client: RegistryClientAsync
):
    """Test that extended listings are used as is."""
    digest = await gcr_registry.put_image("example.com/root", await make_image(b"content"), "t1")
    tags = await list_tags(gcr_client, ROOT)
    infos = await get_manifest_infos(gcr_client, ROOT, tags)
    assert infos[digest].tags == ("t1",)
    assert not gcr_registry.get_requests("HEAD")
