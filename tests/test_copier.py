#!/usr/bin/env python

"""Image and repository copy tests."""

import asyncio

import pytest

from oci_registry_client_async import (
    Backoff,
    CanceledError,
    copy,
    copy_repository,
    diff_images,
    ManifestInfo,
    NotFoundError,
    RegistryClientAsync,
    rename,
    Repository,
    RepositoryCopyError,
    write_index,
)

from .fakeregistry import FAST_BACKOFF, Fault, FakeRegistry
from .testutils import make_image, make_index

pytestmark = [pytest.mark.asyncio]

SOURCE = Repository("example.com/src")
DESTINATION = Repository("other.example.com/dst")


async def test_diff_images():
    """Test that missing digests, and missing tags of present digests, are selected."""
    want = {
        "d1": ManifestInfo(tags=("a", "b")),
        "d2": ManifestInfo(tags=("c",)),
        "d3": ManifestInfo(),
    }
    have = {"d1": ManifestInfo(tags=("a",)), "d3": ManifestInfo(), "d4": ManifestInfo(tags=("x",))}
    assert diff_images(want, have) == {
        "d1": ManifestInfo(tags=("b",)),
        "d2": ManifestInfo(tags=("c",)),
    }
    assert not diff_images(want, want)
    assert diff_images(want, {}) == want


@pytest.mark.parametrize(
    "repository,expected",
    [
        ("example.com/src", "other.example.com/dst"),
        ("example.com/src/a", "other.example.com/dst/a"),
        ("example.com/src/a/b", "other.example.com/dst/a/b"),
    ],
)
async def test_rename(repository: str, expected: str):
    """Test that repositories below a source root are mapped below a destination root."""
    assert str(rename(Repository(repository), SOURCE, DESTINATION)) == expected


async def test_copy_same_registry(registry: FakeRegistry, client: RegistryClientAsync):
    """Test that copies within a registry mount every blob."""
    image = await make_image(b"first", b"second")
    digest = await registry.put_image("example.com/src", image, "1.0")

    result = await copy(client, SOURCE.tag("1.0"), Repository("example.com/dst").tag("2.0"))
    assert str(result) == digest
    assert registry.tags["example.com/dst"]["2.0"] == digest
    assert not registry.get_requests("PATCH")
    assert not registry.get_requests("GET", "/blobs/")


async def test_copy_other_registry(registry: FakeRegistry, client: RegistryClientAsync):
    """Test that copies between registries transfer every blob, byte for byte."""
    image = await make_image(b"first", b"second")
    digest = await registry.put_image("example.com/src", image, "1.0")

    await copy(client, SOURCE.tag("1.0"), DESTINATION.tag("1.0"))
    assert registry.tags["other.example.com/dst"]["1.0"] == digest
    assert registry.manifests["other.example.com/dst"][digest][0] == (
        await image.get_manifest()
    ).get_bytes()
    assert len(registry.get_requests("PATCH")) == 3


async def test_copy_index(registry: FakeRegistry, client: RegistryClientAsync):
    """Test that the children of an index are copied before the index."""
    index = await make_index(["linux/amd64", "linux/arm64"])
    digest = await registry.put_index("example.com/src", index, "multi")

    await copy(client, SOURCE.tag("multi"), DESTINATION.tag("multi"))
    assert registry.tags["other.example.com/dst"]["multi"] == digest
    puts = [request.path for request in registry.get_requests("PUT", "/manifests/")]
    assert puts[-1] == "/v2/dst/manifests/multi"
    for child in await index.get_children():
        assert f"/v2/dst/manifests/{child.digest}" in puts[:-1]


async def _seed_tree(registry: FakeRegistry):
    image = await make_image(b"root")
    index = await make_index(["linux/amd64", "linux/arm64"])
    roots = await registry.put_image("example.com/src", image, "1.0", "latest")
    multi = await registry.put_index("example.com/src", index, "multi")
    child = await registry.put_image("example.com/src/a", await make_image(b"child"), "v1")
    leaf = await registry.put_image("example.com/src/a/b", await make_image(b"leaf"), "v2")
    return roots, multi, child, leaf


async def test_copy_repository(gcr_registry: FakeRegistry, gcr_client: RegistryClientAsync):
    """Test that a repository tree is mirrored, and that mirroring it again transfers nothing."""
    roots, multi, child, leaf = await _seed_tree(gcr_registry)

    await copy_repository(gcr_client, SOURCE, DESTINATION, backoff=FAST_BACKOFF, jobs=2)
    assert gcr_registry.tags["other.example.com/dst"] == {
        "1.0": roots,
        "latest": roots,
        "multi": multi,
    }
    assert gcr_registry.tags["other.example.com/dst/a"] == {"v1": child}
    assert gcr_registry.tags["other.example.com/dst/a/b"] == {"v2": leaf}
    assert set(gcr_registry.manifests["other.example.com/dst"]) == set(
        gcr_registry.manifests["example.com/src"]
    )

    gcr_registry.requests.clear()
    await copy_repository(gcr_client, SOURCE, DESTINATION, backoff=FAST_BACKOFF, jobs=2)
    assert not gcr_registry.get_requests("PUT")
    assert not gcr_registry.get_requests("POST")


async def test_copy_repository_missing_tags(
    gcr_registry: FakeRegistry, gcr_client: RegistryClientAsync
):
    """Test that tags missing at the destination are assigned without transferring blobs."""
    image = await make_image(b"content")
    digest = await gcr_registry.put_image("example.com/src", image, "a", "b")
    await gcr_registry.put_image("other.example.com/dst", image, "a")

    await copy_repository(gcr_client, SOURCE, DESTINATION, backoff=FAST_BACKOFF, jobs=2)
    assert gcr_registry.tags["other.example.com/dst"] == {"a": digest, "b": digest}
    assert not gcr_registry.get_requests("POST")
    assert [request.path for request in gcr_registry.get_requests("PUT")] == [
        "/v2/dst/manifests/b"
    ]
    assert not gcr_registry.get_requests("HEAD", "/blobs/")
    assert not gcr_registry.get_requests("GET", "/v2/src/manifests/")


async def test_copy_repository_errors(gcr_registry: FakeRegistry, gcr_client: RegistryClientAsync):
    """Test that repositories that cannot be listed are reported, after the others are copied."""
    image = await make_image(b"content")
    for name in ["src", "src/a", "src/b"]:
        await gcr_registry.put_image(f"example.com/{name}", image, "latest")
    gcr_registry.faults.extend([Fault("GET", "/v2/src/a/tags/list", 404)] * 2)

    with pytest.raises(RepositoryCopyError) as exc_info:
        await copy_repository(gcr_client, SOURCE, DESTINATION, backoff=FAST_BACKOFF, jobs=2)
    assert list(exc_info.value.errors) == ["example.com/src/a"]
    assert isinstance(exc_info.value.errors["example.com/src/a"], NotFoundError)
    assert "latest" in gcr_registry.tags["other.example.com/dst"]
    assert "latest" in gcr_registry.tags["other.example.com/dst/b"]
    assert "other.example.com/dst/a" not in gcr_registry.tags


async def test_copy_repository_listing_retried(
    gcr_registry: FakeRegistry, gcr_client: RegistryClientAsync
):
    """Test that a repository whose listing fails once is listed again."""
    image = await make_image(b"content")
    for name in ["src", "src/a"]:
        await gcr_registry.put_image(f"example.com/{name}", image, "latest")
    gcr_registry.faults.append(Fault("GET", "/v2/src/a/tags/list", 404))

    await copy_repository(gcr_client, SOURCE, DESTINATION, backoff=FAST_BACKOFF, jobs=2)
    assert "latest" in gcr_registry.tags["other.example.com/dst/a"]


async def test_copy_repository_worker_error(
    gcr_registry: FakeRegistry, gcr_client: RegistryClientAsync
):
    """Test that a failed copy terminates the mirror."""
    image = await make_image(b"content")
    await gcr_registry.put_image("example.com/src", image, "latest")
    layer = (await image.get_layers())[0]
    gcr_registry.links["example.com/src"].discard(str(await layer.get_digest()))

    with pytest.raises(NotFoundError):
        await copy_repository(gcr_client, SOURCE, DESTINATION, backoff=FAST_BACKOFF, jobs=2)
    assert "other.example.com/dst" not in gcr_registry.tags


async def test_copy_repository_canceled(
    gcr_registry: FakeRegistry, gcr_client: RegistryClientAsync
):
    """Test that a canceled mirror stops before issuing requests."""
    await _seed_tree(gcr_registry)
    event = asyncio.Event()
    event.set()
    with pytest.raises(CanceledError):
        await copy_repository(
            gcr_client, SOURCE, DESTINATION, backoff=FAST_BACKOFF, cancel_event=event, jobs=2
        )
    assert not gcr_registry.requests


async def test_copy_repository_untagged(registry: FakeRegistry, client: RegistryClientAsync):
    """Test that repositories without tags are mirrored without error, whether the tags are empty or null."""
    await registry.put_image("example.com/src", await make_image(b"content"))
    await copy_repository(client, SOURCE, DESTINATION, backoff=FAST_BACKOFF, jobs=2)
    registry.null_tags = True
    await copy_repository(client, SOURCE, DESTINATION, backoff=FAST_BACKOFF, jobs=2)
    assert not registry.get_requests("PUT")


async def test_copy_empty_index(registry: FakeRegistry, client: RegistryClientAsync):
    """Test that an index without children is copied as is."""
    digest = await write_index(client, SOURCE.tag("empty"), await make_index([]))
    registry.requests.clear()

    assert await copy(client, SOURCE.tag("empty"), DESTINATION.tag("empty")) == digest
    assert registry.tags["other.example.com/dst"]["empty"] == str(digest)
    assert [request.path for request in registry.get_requests("PUT")] == [
        "/v2/dst/manifests/empty"
    ]


async def test_copy_repository_transient_listing(
    gcr_registry: FakeRegistry, gcr_client: RegistryClientAsync
):
    """Test that the children of a repository whose listing is recovered are mirrored."""
    image = await make_image(b"content")
    for name in ["src", "src/a", "src/a/b"]:
        await gcr_registry.put_image(f"example.com/{name}", image, "latest")
    gcr_registry.faults.extend(
        [Fault("GET", "/v2/src/a/tags/list", 503)] * FAST_BACKOFF.attempts()
    )

    await copy_repository(gcr_client, SOURCE, DESTINATION, backoff=FAST_BACKOFF, jobs=2)
    assert "latest" in gcr_registry.tags["other.example.com/dst/a"]
    assert "latest" in gcr_registry.tags["other.example.com/dst/a/b"]


async def test_copy_repository_listing_failed_children(
    gcr_registry: FakeRegistry, gcr_client: RegistryClientAsync
):
    """Test that the children of a repository that cannot be listed are skipped."""
    image = await make_image(b"content")
    for name in ["src", "src/a", "src/a/b"]:
        await gcr_registry.put_image(f"example.com/{name}", image, "latest")
    gcr_registry.faults.extend([Fault("GET", "/v2/src/a/tags/list", 404)] * 2)

    with pytest.raises(RepositoryCopyError) as exc_info:
        await copy_repository(gcr_client, SOURCE, DESTINATION, backoff=FAST_BACKOFF, jobs=2)
    assert list(exc_info.value.errors) == ["example.com/src/a"]
    assert "latest" in gcr_registry.tags["other.example.com/dst"]
    assert "other.example.com/dst/a" not in gcr_registry.tags
    assert "other.example.com/dst/a/b" not in gcr_registry.tags
    assert not gcr_registry.get_requests("GET", "/v2/src/a/b/")


async def test_copy_repository_canceled_in_flight(
    gcr_registry: FakeRegistry, gcr_client: RegistryClientAsync
):
    """Test that canceling a mirror interrupts workers that are waiting to retry."""
    await gcr_registry.put_image("example.com/src", await make_image(b"content"), "latest")
    gcr_registry.faults.extend([Fault("PUT", "/v2/dst/manifests/", 503)] * 20)
    event = asyncio.Event()
    loop = asyncio.get_event_loop()
    loop.call_later(0.2, event.set)

    start = loop.time()
    with pytest.raises(CanceledError):
        await copy_repository(
            gcr_client,
            SOURCE,
            DESTINATION,
            backoff=Backoff(duration=5.0, factor=1.0, jitter=0.0, steps=3),
            cancel_event=event,
            jobs=2,
        )
    assert loop.time() - start < 2.0
    assert "other.example.com/dst" not in gcr_registry.tags
