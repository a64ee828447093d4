from __future__ import annotations

from securedocs.core.config import get_settings
from securedocs.services.storage.b2 import B2StorageGateway
from securedocs.services.storage.base import BlobStorageGateway


_gateway: BlobStorageGateway | None = None


def get_storage_gateway() -> BlobStorageGateway:
    # One gateway per process so every request shares the same authorization session.
    global _gateway
    if _gateway is None:
        _gateway = B2StorageGateway.from_settings(get_settings())
    return _gateway


async def reset_storage_gateway() -> None:
    global _gateway
    if _gateway is not None:
        await _gateway.aclose()
    _gateway = None
