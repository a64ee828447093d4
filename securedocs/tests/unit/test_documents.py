from __future__ import annotations

import pytest
from sqlalchemy.exc import SQLAlchemyError

from securedocs.core.config import get_settings
from securedocs.core.errors import NotFoundError, QuotaExceededError, ValidationError
from securedocs.persistence.db import SessionLocal
from securedocs.persistence.repos import documents as documents_repo
from securedocs.persistence.repos import users as users_repo
from securedocs.services.documents import DocumentService
from securedocs.tests.utils.factories import create_owner
from securedocs.tests.utils.fake_b2 import FakeB2, build_gateway


MB = 1024 * 1024


@pytest.fixture
async def storage():
    fake = FakeB2()
    gateway = build_gateway(fake)
    yield fake, gateway
    await gateway.aclose()


async def _upload(service: DocumentService, owner_id: str, **overrides):
    params = {
        "owner_id": owner_id,
        "filename": "passport.pdf",
        "content_type": "application/pdf",
        "data": b"%PDF-1.4",
    }
    params.update(overrides)
    async with SessionLocal() as session:
        return await service.upload(session=session, **params)


async def _used(owner_id: str) -> int:
    async with SessionLocal() as session:
        user = await users_repo.get_user(session, owner_id)
    assert user is not None
    return int(user.storage_used)


@pytest.mark.asyncio
async def test_upload_stores_blob_and_commits_ledger(storage) -> None:
    fake, gateway = storage
    owner = await create_owner(phone=None, pin=None)
    document = await _upload(DocumentService(storage=gateway), owner.id)

    assert document.file_id in fake.files
    assert document.file_path == f"users/{owner.id}/documents/{document.id}/passport.pdf"
    assert document.size == len(b"%PDF-1.4")
    assert await _used(owner.id) == len(b"%PDF-1.4")


@pytest.mark.asyncio
async def test_upload_over_quota_touches_nothing(storage) -> None:
    fake, gateway = storage
    owner = await create_owner(phone=None, pin=None)
    service = DocumentService(storage=gateway)
    await _upload(service, owner.id, data=b"x" * (4 * MB))

    with pytest.raises(QuotaExceededError) as excinfo:
        await _upload(service, owner.id, filename="big.pdf", data=b"x" * (2 * MB))
    assert excinfo.value.details["would_be_used"] == 6 * MB
    assert excinfo.value.details["limit"] == 5 * MB
    assert len(fake.files) == 1
    assert await _used(owner.id) == 4 * MB


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("overrides", "code"),
    [
        ({"filename": "   "}, "INVALID_NAME"),
        ({"data": b""}, "EMPTY_FILE"),
        ({"content_type": "application/x-msdownload"}, "UNSUPPORTED_FILE_TYPE"),
    ],
)
async def test_upload_validation(storage, overrides, code: str) -> None:
    fake, gateway = storage
    owner = await create_owner(phone=None, pin=None)
    with pytest.raises(ValidationError) as excinfo:
        await _upload(DocumentService(storage=gateway), owner.id, **overrides)
    assert excinfo.value.code == code
    assert fake.files == {}


@pytest.mark.asyncio
async def test_upload_size_cap(storage, monkeypatch) -> None:
    _, gateway = storage
    monkeypatch.setenv("MAX_UPLOAD_BYTES", "4")
    get_settings.cache_clear()
    owner = await create_owner(phone=None, pin=None)
    with pytest.raises(ValidationError) as excinfo:
        await _upload(DocumentService(storage=gateway), owner.id, data=b"12345")
    assert excinfo.value.code == "FILE_TOO_LARGE"


@pytest.mark.asyncio
async def test_upload_cleans_blob_when_metadata_write_fails(storage, monkeypatch) -> None:
    fake, gateway = storage
    owner = await create_owner(phone=None, pin=None)

    async def _broken_create(*args, **kwargs):
        raise SQLAlchemyError("insert failed")

    monkeypatch.setattr(documents_repo, "create_document", _broken_create)
    with pytest.raises(SQLAlchemyError):
        await _upload(DocumentService(storage=gateway), owner.id)
    assert fake.files == {}
    assert await _used(owner.id) == 0


@pytest.mark.asyncio
async def test_upload_cleans_blob_when_ledger_commit_fails(storage, monkeypatch) -> None:
    fake, gateway = storage
    owner = await create_owner(phone=None, pin=None)
    service = DocumentService(storage=gateway)

    async def _missing_owner(**kwargs):
        raise NotFoundError("User not found", code="USER_NOT_FOUND")

    monkeypatch.setattr(service._quota, "commit", _missing_owner)
    with pytest.raises(NotFoundError):
        await _upload(service, owner.id)
    assert fake.files == {}
    async with SessionLocal() as session:
        assert await documents_repo.list_documents(session, owner.id) == []


@pytest.mark.asyncio
async def test_delete_rolls_back_when_ledger_commit_fails(storage, monkeypatch) -> None:
    fake, gateway = storage
    owner = await create_owner(phone=None, pin=None)
    service = DocumentService(storage=gateway)
    document = await _upload(service, owner.id)

    async def _missing_owner(**kwargs):
        raise NotFoundError("User not found", code="USER_NOT_FOUND")

    monkeypatch.setattr(service._quota, "commit", _missing_owner)
    async with SessionLocal() as session:
        with pytest.raises(NotFoundError):
            await service.delete(session=session, owner_id=owner.id, document_id=document.id)
        assert await documents_repo.get_document_by_id(session, document.id) is not None
    assert document.file_id in fake.files
    assert await _used(owner.id) == len(b"%PDF-1.4")


@pytest.mark.asyncio
async def test_delete_releases_quota_and_blob(storage) -> None:
    fake, gateway = storage
    owner = await create_owner(phone=None, pin=None)
    service = DocumentService(storage=gateway)
    document = await _upload(service, owner.id)

    async with SessionLocal() as session:
        blob_deleted = await service.delete(session=session, owner_id=owner.id, document_id=document.id)
    assert blob_deleted is True
    assert fake.files == {}
    assert await _used(owner.id) == 0


@pytest.mark.asyncio
async def test_delete_survives_blob_store_refusal(storage) -> None:
    fake, gateway = storage
    owner = await create_owner(phone=None, pin=None)
    service = DocumentService(storage=gateway)
    document = await _upload(service, owner.id)
    fake.fail("b2_delete_file_version", times=2)

    async with SessionLocal() as session:
        blob_deleted = await service.delete(session=session, owner_id=owner.id, document_id=document.id)
        assert await documents_repo.get_document_by_id(session, document.id) is None
    assert blob_deleted is False
    assert await _used(owner.id) == 0


@pytest.mark.asyncio
async def test_rename_and_owner_scoping(storage) -> None:
    _, gateway = storage
    owner = await create_owner(phone=None, pin=None)
    other = await create_owner(full_name="Other Owner", phone=None, pin=None)
    service = DocumentService(storage=gateway)
    document = await _upload(service, owner.id)

    async with SessionLocal() as session:
        renamed = await service.rename(
            session=session, owner_id=owner.id, document_id=document.id, new_name=" Passport 2026.pdf "
        )
        assert renamed.name == "Passport 2026.pdf"
        with pytest.raises(NotFoundError) as excinfo:
            await service.get_owned(session=session, owner_id=other.id, document_id=document.id)
    assert excinfo.value.code == "DOCUMENT_NOT_FOUND"


@pytest.mark.asyncio
async def test_signed_url_and_stream(storage) -> None:
    _, gateway = storage
    owner = await create_owner(phone=None, pin=None)
    service = DocumentService(storage=gateway)
    document = await _upload(service, owner.id, data=b"hello")

    url = await service.signed_url(document)
    upstream = await service.open_stream(document)
    try:
        body = await upstream.aread()
    finally:
        await upstream.aclose()
    assert "Authorization=" in url
    assert body == b"hello"
