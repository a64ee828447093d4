from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

import httpx


@dataclass(frozen=True)
class BlobRef:
    # Opaque location of a stored document: bucket key plus the store's own file id.
    file_id: str
    file_name: str
    content_sha1: str
    size: int


class BlobStorageGateway(Protocol):
    async def put(
        self,
        *,
        owner_id: str,
        document_id: str,
        filename: str,
        data: bytes,
        content_type: str,
    ) -> BlobRef:
        ...

    async def signed_download_url(self, file_id: str) -> str:
        ...

    async def open_download(self, file_id: str) -> httpx.Response:
        ...

    async def delete(self, file_id: str, *, file_name: str | None = None) -> bool:
        ...

    async def aclose(self) -> None:
        ...
