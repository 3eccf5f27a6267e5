"""Fixtures for API unit tests: app over in-memory services, switchable caller, AsyncClient."""

import pytest
from httpx import ASGITransport, AsyncClient

from iam_core.api.app import create_app
from iam_core.api.dependencies import get_principal


class Caller:
    """Stands in for upstream authentication; tests pick who is calling."""

    def __init__(self):
        self.principal = None

    def __call__(self):
        return self.principal


@pytest.fixture
def caller():
    return Caller()


@pytest.fixture
def app(services, caller):
    application = create_app(services)
    application.dependency_overrides[get_principal] = caller
    yield application
    application.dependency_overrides.clear()


@pytest.fixture
async def async_client(app):
    transport = ASGITransport(app=app, raise_app_exceptions=False)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
