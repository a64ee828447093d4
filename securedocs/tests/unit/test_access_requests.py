from __future__ import annotations

from dataclasses import dataclass

import pytest
from sqlalchemy import event, func, select
from sqlalchemy.exc import SQLAlchemyError

from securedocs.core.errors import (
    InvalidCapabilityError,
    InvalidStateError,
    NotFoundOrUnauthorizedError,
    OwnershipMismatchError,
    SelfAccessError,
    ValidationError,
)
from securedocs.domain.models import AccessRequest, RequestedDocument
from securedocs.domain.types import AccessRequestStatus, PermissionLevel
from securedocs.persistence.db import SessionLocal, engine
from securedocs.persistence.repos import access_requests as access_repo
from securedocs.services.access_requests import AccessRequestService
from securedocs.services.auth.tokens import ANONYMOUS, Caller
from securedocs.services.notifications import Notification
from securedocs.tests.utils.factories import create_owner, issue_capability, upload_document
from securedocs.tests.utils.fake_b2 import FakeB2, build_gateway


class RecordingNotifier:
    def __init__(self, *, fail: bool = False) -> None:
        self.sent: list[Notification] = []
        self.fail = fail

    async def send(self, notification: Notification) -> None:
        if self.fail:
            raise RuntimeError("receiver down")
        self.sent.append(notification)

    async def aclose(self) -> None:
        return None


@dataclass
class Scenario:
    owner_id: str
    code: str
    document_ids: list[str]


async def _scenario(document_names: tuple[str, ...] = ("passport.pdf", "license.pdf", "visa.pdf")) -> Scenario:
    owner = await create_owner()
    gateway = build_gateway(FakeB2())
    try:
        documents = [await upload_document(gateway, owner.id, name=name) for name in document_names]
    finally:
        await gateway.aclose()
    capability = await issue_capability(owner.id)
    return Scenario(owner_id=owner.id, code=capability.code, document_ids=[doc.id for doc in documents])


async def _create(service: AccessRequestService, scenario: Scenario, **overrides) -> AccessRequest:
    params = {
        "code": scenario.code,
        "requester_name": "Bikash Rai",
        "requester_mobile": "9800000001",
        "document_ids": scenario.document_ids,
    }
    params.update(overrides)
    async with SessionLocal() as session:
        return await service.create(session=session, **params)


async def _count(model) -> int:
    async with SessionLocal() as session:
        return int((await session.execute(select(func.count()).select_from(model))).scalar_one())


@pytest.mark.asyncio
async def test_create_records_pending_request_and_notifies_owner() -> None:
    scenario = await _scenario()
    notifier = RecordingNotifier()
    service = AccessRequestService(notifier=notifier)
    row = await _create(service, scenario)

    assert row.status == AccessRequestStatus.PENDING.value
    assert row.permission_level is None
    assert await _count(RequestedDocument) == 3
    assert len(notifier.sent) == 1
    sent = notifier.sent[0]
    assert sent.event_type == "access_request.created"
    assert sent.owner_id == scenario.owner_id
    assert sent.payload["review_link"].endswith(f"/access-requests/{row.id}")
    assert sent.payload["documents"] == ["license.pdf", "passport.pdf", "visa.pdf"]


@pytest.mark.asyncio
async def test_create_rejects_foreign_document_without_partial_rows() -> None:
    scenario = await _scenario()
    other = await create_owner(full_name="Someone Else", phone="9811111111")
    gateway = build_gateway(FakeB2())
    try:
        foreign = await upload_document(gateway, other.id, name="foreign.pdf")
    finally:
        await gateway.aclose()

    service = AccessRequestService(notifier=RecordingNotifier())
    with pytest.raises(OwnershipMismatchError):
        await _create(service, scenario, document_ids=[scenario.document_ids[0], foreign.id])
    assert await _count(AccessRequest) == 0
    assert await _count(RequestedDocument) == 0


@pytest.mark.asyncio
async def test_create_rejects_self_access_by_name() -> None:
    scenario = await _scenario()
    service = AccessRequestService(notifier=RecordingNotifier())
    with pytest.raises(SelfAccessError):
        await _create(service, scenario, requester_name="  Asha Sharma ")
    assert await _count(AccessRequest) == 0


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("overrides", "code"),
    [
        ({"requester_name": ""}, "MISSING_FIELDS"),
        ({"requester_mobile": None}, "MISSING_FIELDS"),
        ({"requester_mobile": "98000"}, "INVALID_MOBILE"),
        ({"requester_mobile": "98000abc01"}, "INVALID_MOBILE"),
        ({"document_ids": []}, "MISSING_DOCUMENTS"),
        ({"code": ""}, "MISSING_FIELDS"),
    ],
)
async def test_create_validates_input(overrides, code: str) -> None:
    scenario = await _scenario()
    service = AccessRequestService(notifier=RecordingNotifier())
    with pytest.raises(ValidationError) as excinfo:
        await _create(service, scenario, **overrides)
    assert excinfo.value.code == code


@pytest.mark.asyncio
async def test_create_with_rotated_capability_fails() -> None:
    scenario = await _scenario()
    await issue_capability(scenario.owner_id)
    service = AccessRequestService(notifier=RecordingNotifier())
    with pytest.raises(InvalidCapabilityError):
        await _create(service, scenario)


@pytest.mark.asyncio
async def test_notification_failure_does_not_undo_creation() -> None:
    scenario = await _scenario()
    service = AccessRequestService(notifier=RecordingNotifier(fail=True))
    row = await _create(service, scenario)
    assert row.status == AccessRequestStatus.PENDING.value
    assert await _count(AccessRequest) == 1


@pytest.mark.asyncio
async def test_approve_subset_prunes_unselected_documents() -> None:
    scenario = await _scenario()
    service = AccessRequestService(notifier=RecordingNotifier())
    row = await _create(service, scenario)
    keep = scenario.document_ids[:2]

    async with SessionLocal() as session:
        result = await service.approve(
            session=session,
            request_id=row.id,
            owner_id=scenario.owner_id,
            selected_document_ids=keep,
            permission_level=PermissionLevel.VIEW_ONLY,
        )
    assert result.permission_level == PermissionLevel.VIEW_ONLY
    assert sorted(doc.id for doc in result.approved_documents) == sorted(keep)
    assert result.removed_documents == ["visa.pdf"]

    async with SessionLocal() as session:
        approved = await service.approved_documents(session=session, request_id=row.id)
    assert sorted(doc.id for doc in approved.documents) == sorted(keep)
    assert approved.permission_level == PermissionLevel.VIEW_ONLY


@pytest.mark.asyncio
async def test_approve_defaults_to_all_documents_with_download() -> None:
    scenario = await _scenario()
    service = AccessRequestService(notifier=RecordingNotifier())
    row = await _create(service, scenario)
    async with SessionLocal() as session:
        result = await service.approve(session=session, request_id=row.id, owner_id=scenario.owner_id)
    assert result.permission_level == PermissionLevel.VIEW_AND_DOWNLOAD
    assert result.removed_documents == []
    assert len(result.approved_documents) == 3


@pytest.mark.asyncio
async def test_approve_rejects_selection_outside_request() -> None:
    scenario = await _scenario()
    service = AccessRequestService(notifier=RecordingNotifier())
    row = await _create(service, scenario, document_ids=scenario.document_ids[:1])
    async with SessionLocal() as session:
        with pytest.raises(ValidationError) as excinfo:
            await service.approve(
                session=session,
                request_id=row.id,
                owner_id=scenario.owner_id,
                selected_document_ids=[scenario.document_ids[2]],
            )
    assert excinfo.value.code == "SELECTION_NOT_REQUESTED"

    async with SessionLocal() as session:
        view = await service.get_status(session=session, request_id=row.id, caller=ANONYMOUS)
    assert view.status == AccessRequestStatus.PENDING


@pytest.mark.asyncio
async def test_failed_status_flip_keeps_every_requested_document(monkeypatch) -> None:
    scenario = await _scenario()
    service = AccessRequestService(notifier=RecordingNotifier())
    row = await _create(service, scenario)

    async def _broken_mark_decided(*args, **kwargs):
        raise SQLAlchemyError("update failed")

    monkeypatch.setattr(access_repo, "mark_decided", _broken_mark_decided)
    async with SessionLocal() as session:
        with pytest.raises(SQLAlchemyError):
            await service.approve(
                session=session,
                request_id=row.id,
                owner_id=scenario.owner_id,
                selected_document_ids=scenario.document_ids[:1],
            )
    monkeypatch.undo()

    async with SessionLocal() as session:
        view = await service.get_status(
            session=session, request_id=row.id, caller=Caller(user_id=scenario.owner_id)
        )
    assert view.status == AccessRequestStatus.PENDING
    assert view.request.permission_level is None
    assert sorted(doc.id for doc in view.documents) == sorted(scenario.document_ids)
    assert await _count(RequestedDocument) == 3


@pytest.mark.asyncio
async def test_lost_decision_race_keeps_every_requested_document(monkeypatch) -> None:
    scenario = await _scenario()
    service = AccessRequestService(notifier=RecordingNotifier())
    row = await _create(service, scenario)

    async def _already_decided(*args, **kwargs):
        return False

    monkeypatch.setattr(access_repo, "mark_decided", _already_decided)
    async with SessionLocal() as session:
        with pytest.raises(InvalidStateError):
            await service.approve(
                session=session,
                request_id=row.id,
                owner_id=scenario.owner_id,
                selected_document_ids=scenario.document_ids[:2],
            )
    assert await _count(RequestedDocument) == 3


@pytest.mark.asyncio
async def test_terminal_states_are_final() -> None:
    scenario = await _scenario()
    service = AccessRequestService(notifier=RecordingNotifier())
    row = await _create(service, scenario)
    async with SessionLocal() as session:
        await service.deny(session=session, request_id=row.id, owner_id=scenario.owner_id)

    async with SessionLocal() as session:
        with pytest.raises(InvalidStateError):
            await service.approve(session=session, request_id=row.id, owner_id=scenario.owner_id)
        with pytest.raises(InvalidStateError):
            await service.deny(session=session, request_id=row.id, owner_id=scenario.owner_id)

    async with SessionLocal() as session:
        view = await service.get_status(session=session, request_id=row.id, caller=ANONYMOUS)
    assert view.status == AccessRequestStatus.DENIED
    assert view.request.permission_level is None


@pytest.mark.asyncio
async def test_only_the_owner_can_decide() -> None:
    scenario = await _scenario()
    intruder = await create_owner(full_name="Intruder", phone=None, pin=None)
    service = AccessRequestService(notifier=RecordingNotifier())
    row = await _create(service, scenario)
    async with SessionLocal() as session:
        with pytest.raises(NotFoundOrUnauthorizedError):
            await service.approve(session=session, request_id=row.id, owner_id=intruder.id)
        with pytest.raises(NotFoundOrUnauthorizedError):
            await service.deny(session=session, request_id="missing", owner_id=scenario.owner_id)


@pytest.mark.asyncio
async def test_status_hides_documents_until_approved() -> None:
    scenario = await _scenario()
    service = AccessRequestService(notifier=RecordingNotifier())
    row = await _create(service, scenario)

    async with SessionLocal() as session:
        anonymous_view = await service.get_status(session=session, request_id=row.id, caller=ANONYMOUS)
        owner_view = await service.get_status(
            session=session, request_id=row.id, caller=Caller(user_id=scenario.owner_id)
        )
    assert anonymous_view.documents == []
    assert anonymous_view.is_owner is False
    assert owner_view.is_owner is True
    assert len(owner_view.documents) == 3

    async with SessionLocal() as session:
        await service.approve(session=session, request_id=row.id, owner_id=scenario.owner_id)
    async with SessionLocal() as session:
        approved_view = await service.get_status(session=session, request_id=row.id, caller=ANONYMOUS)
    assert approved_view.status == AccessRequestStatus.APPROVED
    assert len(approved_view.documents) == 3


@pytest.mark.asyncio
async def test_approved_documents_requires_approval() -> None:
    scenario = await _scenario()
    service = AccessRequestService(notifier=RecordingNotifier())
    row = await _create(service, scenario)
    async with SessionLocal() as session:
        with pytest.raises(NotFoundOrUnauthorizedError):
            await service.approved_documents(session=session, request_id=row.id)


@pytest.mark.asyncio
async def test_list_for_owner_filters_by_status() -> None:
    scenario = await _scenario()
    service = AccessRequestService(notifier=RecordingNotifier())
    first = await _create(service, scenario)
    await _create(service, scenario, requester_name="Chandra Gurung")
    async with SessionLocal() as session:
        await service.deny(session=session, request_id=first.id, owner_id=scenario.owner_id)
    async with SessionLocal() as session:
        pending = await service.list_for_owner(
            session=session, owner_id=scenario.owner_id, status=AccessRequestStatus.PENDING
        )
        everything = await service.list_for_owner(session=session, owner_id=scenario.owner_id)
    assert [row.requester_name for row in pending] == ["Chandra Gurung"]
    assert len(everything) == 2


@pytest.mark.asyncio
async def test_status_and_documents_come_from_one_read() -> None:
    scenario = await _scenario()
    service = AccessRequestService(notifier=RecordingNotifier())
    row = await _create(service, scenario)
    selects: list[str] = []

    def _capture(conn, cursor, statement, parameters, context, executemany) -> None:
        if statement.lstrip().upper().startswith("SELECT"):
            selects.append(statement)

    event.listen(engine.sync_engine, "before_cursor_execute", _capture)
    try:
        async with SessionLocal() as session:
            owner_view = await service.get_status(
                session=session, request_id=row.id, caller=Caller(user_id=scenario.owner_id)
            )
    finally:
        event.remove(engine.sync_engine, "before_cursor_execute", _capture)

    assert len(selects) == 1
    assert owner_view.status == AccessRequestStatus.PENDING
    assert [doc.name for doc in owner_view.documents] == ["license.pdf", "passport.pdf", "visa.pdf"]
