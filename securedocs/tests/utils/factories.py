from __future__ import annotations

from dataclasses import dataclass

from securedocs.domain.models import Document, User
from securedocs.persistence.db import SessionLocal
from securedocs.services.auth.tokens import issue_owner_token, issue_session_token
from securedocs.services.capabilities import CapabilityManager, IssuedCapability
from securedocs.services.documents import DocumentService
from securedocs.services.owners import provision_owner
from securedocs.services.storage.base import BlobStorageGateway


DEFAULT_PIN = "4321"


@dataclass(frozen=True)
class OwnerFixture:
    user: User
    phone: str | None
    pin: str | None

    @property
    def id(self) -> str:
        return self.user.id


async def create_owner(
    *,
    full_name: str = "Asha Sharma",
    phone: str | None = "9812345678",
    pin: str | None = DEFAULT_PIN,
    plan_name: str | None = None,
    email: str | None = None,
) -> OwnerFixture:
    # Provision through the real service so phone and PIN are stored as in production.
    async with SessionLocal() as session:
        user = await provision_owner(
            session=session,
            full_name=full_name,
            email=email,
            phone=phone,
            pin=pin,
            plan_name=plan_name,
        )
    return OwnerFixture(user=user, phone=phone, pin=pin)


async def upload_document(
    storage: BlobStorageGateway,
    owner_id: str,
    *,
    name: str = "passport.pdf",
    content_type: str = "application/pdf",
    data: bytes = b"%PDF-1.4 test document",
) -> Document:
    async with SessionLocal() as session:
        return await DocumentService(storage=storage).upload(
            session=session,
            owner_id=owner_id,
            filename=name,
            content_type=content_type,
            data=data,
        )


async def issue_capability(owner_id: str) -> IssuedCapability:
    async with SessionLocal() as session:
        return await CapabilityManager().issue(session=session, owner_id=owner_id)


def session_headers(user_id: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {issue_session_token(user_id=user_id)}"}


def owner_headers(user_id: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {issue_owner_token(user_id=user_id)}"}
