from __future__ import annotations

from dataclasses import dataclass
import hashlib
import hmac
import logging
import re

from sqlalchemy.ext.asyncio import AsyncSession
from starlette.requests import Request

from securedocs.core.config import get_settings
from securedocs.core.errors import InvalidCredentialsError, NoDocumentsError, ValidationError
from securedocs.domain.models import Document, User
from securedocs.persistence.repos import documents as documents_repo
from securedocs.persistence.repos import users as users_repo
from securedocs.services.audit import record_event
from securedocs.services.auth.tokens import issue_owner_token
from securedocs.services.telemetry import increment_counter


logger = logging.getLogger(__name__)

_NON_DIGITS = re.compile(r"\D")


def hash_pin(pin: str) -> str:
    # A bare digest of a short numeric PIN is reversible; stored hashes are keyed.
    key = get_settings().pin_hash_secret.encode("utf-8")
    return hmac.new(key, pin.encode("utf-8"), hashlib.sha256).hexdigest()


def normalize_phone(phone: str, *, country_code: str | None = None) -> str:
    """Canonical ``+<cc><local>`` form used when storing and matching owner phones.

    Formatting is stripped first; a leading country code is removed only when
    the remaining digits are longer than a local number, then re-applied.
    """
    code = country_code or get_settings().owner_phone_country_code
    digits = _NON_DIGITS.sub("", phone)
    if digits.startswith(code) and len(digits) > 10:
        digits = digits[len(code):]
    return f"+{code}{digits}"


def phone_candidates(phone: str) -> list[str]:
    # Legacy rows may hold the number as typed; match those spellings too.
    raw = phone.strip()
    candidates = [normalize_phone(raw), raw, raw.lstrip("+")]
    return list(dict.fromkeys(candidate for candidate in candidates if candidate))


def pin_matches(pin: str, stored_hash: str | None) -> bool:
    if not stored_hash:
        return False
    return hmac.compare_digest(hash_pin(pin), stored_hash)


@dataclass(frozen=True)
class OwnerVerification:
    token: str
    user: User
    documents: list[Document]


async def verify(
    *,
    session: AsyncSession,
    phone: str,
    pin: str,
    request: Request | None = None,
) -> OwnerVerification:
    """Exchange phone + PIN for a short-lived owner-elevated token.

    An unknown phone and a wrong PIN fail identically so the response never
    reveals whether an owner exists for a number. An owner with no documents
    gets ``NoDocumentsError`` instead of a token.
    """
    if not phone or not phone.strip() or not pin:
        raise ValidationError("Mobile number and PIN are required", code="MISSING_CREDENTIALS")

    matched: User | None = None
    for user in await users_repo.find_users_by_phone(session, phone_candidates(phone)):
        # Check every candidate so timing does not depend on which row matches.
        if pin_matches(pin, user.pin_hash) and matched is None:
            matched = user

    if matched is None:
        increment_counter("owner_verification_failed_total")
        logger.info("owner_verification_failed")
        await record_event(
            owner_id=None,
            actor_type="anonymous",
            actor_id=None,
            event_type="owner.verification.failed",
            outcome="failure",
            request=request,
            error_code=InvalidCredentialsError.code,
        )
        raise InvalidCredentialsError()

    documents = await documents_repo.list_documents(session, matched.id)
    if not documents:
        logger.info("owner_verification_no_documents owner_id=%s", matched.id)
        raise NoDocumentsError()

    token = issue_owner_token(user_id=matched.id, email=matched.email)
    increment_counter("owner_verification_succeeded_total")
    logger.info("owner_verified owner_id=%s documents=%s", matched.id, len(documents))
    await record_event(
        session=session,
        owner_id=matched.id,
        actor_type="owner",
        actor_id=matched.id,
        event_type="owner.verification.succeeded",
        outcome="success",
        resource_type="user",
        resource_id=matched.id,
        request=request,
        commit=True,
    )
    return OwnerVerification(token=token, user=matched, documents=documents)
