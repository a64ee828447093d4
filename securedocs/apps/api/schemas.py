from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from securedocs.domain.models import AccessRequest, Document, SubscriptionPlan
from securedocs.domain.types import AccessRequestStatus, PermissionLevel


class DocumentResponse(BaseModel):
    id: str
    name: str
    content_type: str
    size: int
    created_at: datetime | None = None
    updated_at: datetime | None = None


def to_document_response(doc: Document) -> DocumentResponse:
    return DocumentResponse(
        id=doc.id,
        name=doc.name,
        content_type=doc.content_type,
        size=int(doc.size),
        created_at=doc.created_at,
        updated_at=doc.updated_at,
    )


def to_document_list(docs: list[Document]) -> list[DocumentResponse]:
    return [to_document_response(doc) for doc in docs]


class CapabilityResponse(BaseModel):
    id: str
    code: str
    qr_code_url: str
    expires_at: datetime


class CapabilityValidationResponse(BaseModel):
    qr_code_id: str
    owner_id: str
    owner_name: str
    documents: list[DocumentResponse]


class AccessRequestCreate(BaseModel):
    # Optional at the schema level so missing fields surface with domain error codes.
    qr_code: str | None = None
    requester_name: str | None = None
    requester_mobile: str | None = None
    document_ids: list[str] | None = None

    model_config = {"extra": "forbid"}


class AccessRequestCreated(BaseModel):
    request_id: str
    status: AccessRequestStatus


class OwnerVerifyRequest(BaseModel):
    mobile: str | None = None
    pin: str | None = None

    model_config = {"extra": "forbid"}


class OwnerProfile(BaseModel):
    id: str
    full_name: str
    email: str | None = None


class OwnerVerifyResponse(BaseModel):
    token: str
    token_type: str = "bearer"
    expires_in: int
    user: OwnerProfile
    documents: list[DocumentResponse]


class ApproveRequest(BaseModel):
    # Omitted document_ids keeps everything that was requested.
    document_ids: list[str] | None = None
    permission_level: PermissionLevel | None = None

    model_config = {"extra": "forbid"}


class ApprovalResponse(BaseModel):
    request_id: str
    status: AccessRequestStatus
    permission_level: PermissionLevel
    approved_documents: list[DocumentResponse]
    removed_documents: list[str]


class DenialResponse(BaseModel):
    request_id: str
    status: AccessRequestStatus


class AccessRequestResponse(BaseModel):
    id: str
    status: AccessRequestStatus
    permission_level: PermissionLevel | None = None
    requester_name: str
    # Present only for the owner.
    requester_mobile: str | None = None
    created_at: datetime | None = None
    decided_at: datetime | None = None
    documents: list[DocumentResponse] = Field(default_factory=list)


def to_access_request_response(
    row: AccessRequest,
    *,
    documents: list[Document] | None = None,
    include_contact: bool = False,
) -> AccessRequestResponse:
    status = AccessRequestStatus(row.status)
    return AccessRequestResponse(
        id=row.id,
        status=status,
        permission_level=PermissionLevel(row.permission_level)
        if status is AccessRequestStatus.APPROVED and row.permission_level
        else None,
        requester_name=row.requester_name,
        requester_mobile=row.requester_mobile if include_contact else None,
        created_at=row.created_at,
        decided_at=row.decided_at,
        documents=to_document_list(documents or []),
    )


class ApprovedDocumentsResponse(BaseModel):
    request_id: str
    permission_level: PermissionLevel
    documents: list[DocumentResponse]


class StorageCheckRequest(BaseModel):
    file_size: int | None = None

    model_config = {"extra": "forbid"}


class StorageCheckResponse(BaseModel):
    allowed: bool
    used: int
    limit: int
    would_be_used: int
    plan_name: str


class RenameRequest(BaseModel):
    name: str | None = None

    model_config = {"extra": "forbid"}


class DocumentMetadataResponse(BaseModel):
    document: DocumentResponse
    permission_level: PermissionLevel
    # Direct store link; withheld from view-only grants.
    url: str | None = None


class DocumentDeleteResponse(BaseModel):
    id: str
    blob_deleted: bool


class PlanResponse(BaseModel):
    id: int
    name: str
    storage_limit: int
    price: float | None = None
    features: dict[str, Any] | None = None


def to_plan_response(plan: SubscriptionPlan) -> PlanResponse:
    return PlanResponse(
        id=plan.id,
        name=plan.name,
        storage_limit=int(plan.storage_limit),
        price=float(plan.price) if plan.price is not None else None,
        features=plan.features_json,
    )


class StorageUsageResponse(BaseModel):
    used: int
    limit: int
    has_available_storage: bool
    plan_name: str


class UpdatePlanRequest(BaseModel):
    plan_id: int

    model_config = {"extra": "forbid"}
