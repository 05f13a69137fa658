"""Fixtures for SIPS tests."""

from unittest.mock import MagicMock

import pytest

from logos_sips.login import PortalClient

from .fixtures import SETTINGS


@pytest.fixture
def http_session():
    """A stand-in for requests.Session; script it via ``request.side_effect``."""
    session = MagicMock()
    session.headers = {}
    return session


@pytest.fixture
def portal_client(http_session):
    return PortalClient(SETTINGS, session=http_session)
