"""Shared fixtures for the synchronizer tests."""

import pytest
from fakes import FakeSearchClient, FakeSource


@pytest.fixture
def source() -> FakeSource:
    return FakeSource()


@pytest.fixture
def search_client() -> FakeSearchClient:
    return FakeSearchClient()
