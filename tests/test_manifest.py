#!/usr/bin/env python

# pylint: disable=redefined-outer-name

"""Manifest tests."""

from typing import TypedDict

import pytest

from oci_registry_client_async import (
    Descriptor,
    DockerMediaTypes,
    FormattedSHA256,
    ImageConfig,
    IntegrityError,
    Manifest,
    MediaTypes,
    OCIMediaTypes,
    Platform,
)

from .testutils import raw_manifests


class TypingManifestData(TypedDict):
    # pylint: disable=missing-class-docstring
    bytes: bytes
    manifest: Manifest
    media_type: str


class TypingRawManifest(TypedDict):
    # pylint: disable=missing-class-docstring
    bytes: bytes
    media_type: str


@pytest.fixture()
def manifest_data(raw_manifest: TypingRawManifest) -> TypingManifestData:
    """Provides Manifest instance and associated data."""
    manifest = Manifest(raw_manifest["bytes"], media_type=raw_manifest["media_type"])
    return {
        "bytes": raw_manifest["bytes"],
        "manifest": manifest,
        "media_type": raw_manifest["media_type"],
    }


@pytest.fixture(params=raw_manifests(), ids=lambda x: x["media_type"])
def raw_manifest(request) -> TypingRawManifest:
    """Provides raw manifest values and associated data."""
    return request.param


def test___init__(manifest_data: TypingManifestData):
    """Test that an image manifest can be instantiated."""
    manifest = manifest_data["manifest"]
    assert manifest.bytes == manifest_data["bytes"]
    assert manifest.json
    assert manifest.media_type


@pytest.mark.parametrize("_bytes", [b"[]", b'"string"', b"{"])
def test___init___invalid(_bytes: bytes):
    """Test that non-object documents are rejected."""
    with pytest.raises(IntegrityError):
        Manifest(_bytes)


def test___bytes__(manifest_data: TypingManifestData):
    """Test __bytes__ pass-through for different variants."""
    assert bytes(manifest_data["manifest"]) == manifest_data["bytes"]


def test___str__(manifest_data: TypingManifestData):
    """Test __str__ pass-through for different variants."""
    string = str(manifest_data["manifest"])
    assert string
    assert "None" not in string


def test__detect_media_type(raw_manifest: TypingRawManifest):
    """Test that media types can be detected."""
    manifest = Manifest(raw_manifest["bytes"])
    assert manifest.media_type == raw_manifest["media_type"]


def test__detect_media_type_unknown():
    """Test that undetectable manifests fall back to generic json."""
    assert Manifest(b'{"x": 1}').get_media_type() == MediaTypes.APPLICATION_JSON


def test_get_bytes(manifest_data: TypingManifestData):
    """Test raw image manifest retrieval."""
    assert manifest_data["manifest"].get_bytes() == manifest_data["bytes"]


def test_get_descriptor(manifest_data: TypingManifestData):
    """Test that a descriptor pointing to a manifest can be derived."""
    descriptor = manifest_data["manifest"].get_descriptor()
    assert descriptor.digest == FormattedSHA256.calculate(manifest_data["bytes"])
    assert descriptor.media_type == manifest_data["media_type"]
    assert descriptor.size == len(manifest_data["bytes"])


def test_get_digest(manifest_data: TypingManifestData):
    """Test raw image manifest retrieval."""
    digest = manifest_data["manifest"].get_digest()
    assert digest == FormattedSHA256.calculate(manifest_data["bytes"])


def test_get_json(manifest_data: TypingManifestData):
    """Test image manifest retrieval."""
    assert manifest_data["manifest"].get_json()


def test_get_media_type(manifest_data: TypingManifestData):
    """Test manifest media type retrieval."""
    media_type = manifest_data["manifest"].get_media_type()
    assert media_type == manifest_data["media_type"]


def test_get_schema_version(manifest_data: TypingManifestData):
    """Test schema version retrieval."""
    expected = 1 if manifest_data["media_type"] == DockerMediaTypes.DISTRIBUTION_MANIFEST_V1_SIGNED else 2
    assert manifest_data["manifest"].get_schema_version() == expected
    assert Manifest(b"{}").get_schema_version() is None


def test_descriptors():
    """Test that config, layer and child descriptors are exposed according to the manifest type."""
    image, index = [
        Manifest(raw["bytes"])
        for raw in raw_manifests()
        if raw["media_type"]
        in [DockerMediaTypes.DISTRIBUTION_MANIFEST_V2, DockerMediaTypes.DISTRIBUTION_MANIFEST_LIST_V2]
    ]
    assert not image.is_index()
    assert image.get_config_descriptor().media_type == DockerMediaTypes.CONTAINER_IMAGE_V1
    assert [d.media_type for d in image.get_layer_descriptors()] == [
        DockerMediaTypes.IMAGE_ROOTFS_DIFF
    ]
    with pytest.raises(IntegrityError):
        image.get_manifest_descriptors()

    assert index.is_index()
    children = index.get_manifest_descriptors()
    assert children[0].platform == Platform(os="linux", architecture="amd64")
    with pytest.raises(IntegrityError):
        index.get_config_descriptor()
    with pytest.raises(IntegrityError):
        index.get_layer_descriptors()


@pytest.mark.parametrize(
    "_json",
    [
        {"digest": "sha256:abc", "mediaType": "x", "size": 1},
        {"digest": str(FormattedSHA256.calculate(b"")), "mediaType": "x", "size": -1},
        {"digest": str(FormattedSHA256.calculate(b"")), "mediaType": "x", "size": "1"},
        {"mediaType": "x", "size": 1},
        "not a descriptor",
    ],
)
def test_descriptor_invalid(_json):
    """Test that malformed descriptors are rejected."""
    with pytest.raises(IntegrityError):
        Descriptor.from_json(_json)


def test_descriptor_round_trip():
    """Test that optional descriptor fields survive serialization."""
    _json = {
        "annotations": {"a": "b"},
        "digest": str(FormattedSHA256.calculate(b"")),
        "mediaType": OCIMediaTypes.IMAGE_MANIFEST_V1,
        "platform": {"architecture": "arm64", "os": "linux", "variant": "v8"},
        "size": 0,
        "urls": ["https://example.com/blob"],
    }
    assert Descriptor.from_json(_json).to_json() == _json


@pytest.mark.parametrize(
    "platform,required,result",
    [
        ("linux/amd64", "linux/amd64", True),
        ("linux/arm64/v8", "linux/arm64", True),
        ("linux/arm64", "linux/arm64/v8", False),
        ("windows/amd64:10.0.17763", "windows/amd64", True),
        ("windows/amd64:10.0.17763", "windows/amd64:10.0.14393", False),
        ("linux/amd64", "linux/arm64", False),
    ],
)
def test_platform_satisfies(platform: str, required: str, result: bool):
    """Test platform matching."""
    assert Platform.parse(platform).satisfies(Platform.parse(required)) == result


@pytest.mark.parametrize("platform", ["linux", "linux/", "a/b/c/d"])
def test_platform_parse_invalid(platform: str):
    """Test that malformed platforms are rejected."""
    with pytest.raises(ValueError):
        Platform.parse(platform)


def test_image_config():
    """Test that diff ids and the platform are exposed by the image configuration."""
    diff_id = FormattedSHA256.calculate(b"layer")
    config = ImageConfig.from_json(
        {
            "architecture": "arm64",
            "os": "linux",
            "rootfs": {"diff_ids": [str(diff_id)], "type": "layers"},
            "variant": "v8",
        }
    )
    assert config.get_diff_ids() == [diff_id]
    assert config.get_platform() == Platform(os="linux", architecture="arm64", variant="v8")

    with pytest.raises(IntegrityError):
        ImageConfig.from_json({"rootfs": {"diff_ids": ["sha256:bad"]}}).get_diff_ids()
    assert ImageConfig.from_json({}).get_platform() is None
