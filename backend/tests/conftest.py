"""
Shared fixtures for the marketplace tests.
"""
import os
import sys

import pytest

# Add src and this directory to path for import
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))
sys.path.insert(0, os.path.dirname(__file__))

from fakes import FixedClock, Marketplace, make_location, make_provider, make_service  # noqa: E402


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def osu():
    return make_location()


@pytest.fixture
def plumber():
    """A provider in Osu offering one plumbing service."""
    return make_provider('provider-1')


@pytest.fixture
def plumbing_service():
    return make_service(
        'service-1', ['provider-1'], title='Pipe repair', tags=['plumbing'],
        category='cat-plumbing', price=200
    )


@pytest.fixture
def market(plumber, plumbing_service, clock):
    """One matching provider; fallback threshold lowered so a single match sticks."""
    return Marketplace(
        providers=[plumber],
        services=[plumbing_service],
        settings={'fallbackThreshold': 1},
        clock=clock
    )
