from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

from httpx import ASGITransport, AsyncClient

from securedocs.apps.api.deps import get_storage
from securedocs.apps.api.main import create_app
from securedocs.services.storage.base import BlobStorageGateway


@asynccontextmanager
async def api_client(storage: BlobStorageGateway | None = None) -> AsyncIterator[AsyncClient]:
    # Build a fresh app per test; the blob store is swapped for the in-memory fake.
    app = create_app()
    if storage is not None:
        app.dependency_overrides[get_storage] = lambda: storage
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
