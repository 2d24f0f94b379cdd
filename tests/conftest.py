"""Shared fixtures for docmirror tests."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from docmirror.gateway import RemoteGateway, RemotePage


def make_gateway(collection: str = "User") -> MagicMock:
    """Create a mock gateway whose calls succeed with empty results."""
    gateway = MagicMock(spec=RemoteGateway)
    gateway.collection = collection
    gateway.fetch_all = AsyncMock(return_value=RemotePage())
    gateway.paginate = AsyncMock(return_value=RemotePage())
    gateway.fetch_where = AsyncMock(return_value=RemotePage())
    gateway.fetch_by_id = AsyncMock(return_value={})
    gateway.fetch_by_name = AsyncMock(return_value={})
    gateway.create = AsyncMock(return_value={})
    gateway.update = AsyncMock(return_value={})
    gateway.replace = AsyncMock(return_value={})
    gateway.delete = AsyncMock(return_value=None)
    gateway.close = AsyncMock(return_value=None)
    return gateway


@pytest.fixture
def gateway():
    """Create a mock remote gateway for the User collection."""
    return make_gateway()
