"""Test configuration and fixtures."""

import pytest

from image_slimmer_core.core.auth import AnonymousKeychain
from tests.helpers import FakeRegistryClient, SAMPLE_ENTRIES, build_layer_tar, sample_image


@pytest.fixture
def fake_image():
    """Two-layer fake image."""
    return sample_image(layer_count=2)


@pytest.fixture
def fake_client(fake_image):
    """Registry client serving ``fake_image``."""
    return FakeRegistryClient(image=fake_image)


@pytest.fixture
def anonymous():
    """Keychain that never touches the local docker config."""
    return AnonymousKeychain()


@pytest.fixture
def sample_archive():
    """Layer archive with one directory, one file and one symlink."""
    return build_layer_tar(SAMPLE_ENTRIES)


# Pytest configuration
def pytest_configure(config):
    """Configure pytest markers and settings."""
    config.addinivalue_line(
        "markers", "integration: mark test as integration test requiring registry"
    )
    config.addinivalue_line("markers", "unit: mark test as unit test (default)")
