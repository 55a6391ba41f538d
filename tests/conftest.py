#!/usr/bin/env python

# pylint: disable=redefined-outer-name

"""Configures execution of pytest."""

import pytest
import pytest_asyncio

from oci_registry_client_async import RegistryClientAsync

from .fakeregistry import FakeRegistry


def pytest_addoption(parser):
    """pytest add option."""
    parser.addoption(
        "--allow-online",
        action="store_true",
        default=False,
        help="Allow execution of online tests.",
    )


def pytest_collection_modifyitems(config, items):
    """pytest collection modifier."""

    skip_online = pytest.mark.skip(
        reason="Execution of online tests requires --allow-online option."
    )
    for item in items:
        if "online" in item.keywords and not config.getoption("--allow-online"):
            item.add_marker(skip_online)


def pytest_configure(config):
    """pytest configuration hook."""
    config.addinivalue_line("markers", "online: allow execution of online tests.")


@pytest.fixture(autouse=True)
def isolated_environment(monkeypatch, tmp_path):
    """Prevents tests from observing the proxies and registry credentials of the host."""
    for name in [
        "DOCKER_CONFIG",
        "GITHUB_ACTOR",
        "GITHUB_TOKEN",
        "HTTP_PROXY",
        "HTTPS_PROXY",
        "NO_PROXY",
        "XDG_RUNTIME_DIR",
        "http_proxy",
        "https_proxy",
        "no_proxy",
    ]:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("HOME", str(tmp_path.joinpath("home")))


@pytest_asyncio.fixture
async def registry() -> FakeRegistry:
    """Provides an anonymous registry."""
    fake = FakeRegistry()
    await fake.start()
    yield fake
    await fake.close()


@pytest_asyncio.fixture
async def bearer_registry() -> FakeRegistry:
    """Provides a registry that requires bearer tokens."""
    fake = FakeRegistry(auth="bearer")
    await fake.start()
    yield fake
    await fake.close()


@pytest_asyncio.fixture
async def gcr_registry() -> FakeRegistry:
    """Provides a registry that lists child repositories and manifest metadata, two entries per page."""
    fake = FakeRegistry(gcr=True, page_size=2)
    await fake.start()
    yield fake
    await fake.close()


@pytest_asyncio.fixture
async def client(registry: FakeRegistry) -> RegistryClientAsync:
    """Provides a client of the anonymous registry."""
    async with registry.client() as _client:
        yield _client


@pytest_asyncio.fixture
async def bearer_client(bearer_registry: FakeRegistry) -> RegistryClientAsync:
    """Provides a client of the bearer token registry."""
    async with bearer_registry.client() as _client:
        yield _client


@pytest_asyncio.fixture
async def gcr_client(gcr_registry: FakeRegistry) -> RegistryClientAsync:
    """Provides a client of the extended listing registry."""
    async with gcr_registry.client() as _client:
        yield _client
