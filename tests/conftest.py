"""Pytest configuration and fixtures."""

import pytest

from dexbundler.config import EngineConfig
from dexbundler.registry.tokens import TokenRegistry
from tests.helpers.factories import make_config, make_registry
from tests.helpers.fakes import FakeChain


@pytest.fixture
def config() -> EngineConfig:
    """Config with every encoder configured and short timeouts."""
    return make_config()


@pytest.fixture
def chain() -> FakeChain:
    """Fake chain at block 100 with a 1 gwei gas price."""
    return FakeChain()


@pytest.fixture
def registry() -> TokenRegistry:
    """Registry over the built-in tokens plus GNO from a fake source."""
    return make_registry()
