"""
Dating API — HTTP surface of the matching core.

Endpoints (mounted under ``settings.API_V1_STR``):
    POST /profiles                        createProfile
    PUT  /profiles/{user_id}              updateProfile (re-commit)
    POST /profiles/{user_id}/deactivate   deactivateProfile
    GET  /profiles/{user_id}              public record
    GET  /profiles/{user_id}/candidates   candidate stream
    POST /cards                           AnonymousCard from a proof
    POST /swipes                          swipe
    POST /matches/{match_id}/unlock       unlockDetail
    POST /matches/{match_id}/messages     postMessage (encrypted message hash)
    GET  /matches/{match_id}/messages     getMatchMessages
    GET  /matches?user=                   listMatches
    GET  /aura/{user_id}                  getAuraBalance
    GET  /aura/{user_id}/history          listAuraHistory
    GET  /stats                           getStats
    GET  /health                          liveness

Openings (attributes + salts) never cross this surface. Clients build
compatibility proofs locally and submit only the proof.
"""

import logging
import time
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse
from pydantic import Field

from zklove.core.crypto.commitment import CommitmentSalts
from zklove.core.crypto.compatibility import CompatibilityProof
from zklove.core.errors import (
    ChatLockedError,
    DuplicateIdentityError,
    DuplicateSwipeError,
    GatewaySubmissionError,
    IncompatibleError,
    InsufficientAuraError,
    InvalidAttributeError,
    LedgerIntegrityError,
    MatchNotFoundError,
    NotMatchedError,
    ProfileInactiveError,
    ProfileNotFoundError,
    ProofCancelledError,
    ProofTimeoutError,
    ZKLoveError,
)
from zklove.schemas.dating import CamelModel, ProfileAttributes, UnlockTier
from zklove.services.dating_service import ZKDatingService
from zklove.services.match_engine import SwipeAction

logger = logging.getLogger(__name__)
router = APIRouter(tags=["Dating"])

_BOOT_TIME: float = time.time()


# ═══════════════════════════════════════════════════════════════════════════════
# ERROR MAPPING
# ═══════════════════════════════════════════════════════════════════════════════

STATUS_BY_ERROR = (
    (InvalidAttributeError, 400),
    (InsufficientAuraError, 402),
    (ProfileInactiveError, 403),
    (NotMatchedError, 403),
    (ChatLockedError, 403),
    (ProfileNotFoundError, 404),
    (MatchNotFoundError, 404),
    (DuplicateIdentityError, 409),
    (DuplicateSwipeError, 409),
    (IncompatibleError, 422),
    (ProofCancelledError, 504),
    (GatewaySubmissionError, 502),
    (ProofTimeoutError, 504),
    (LedgerIntegrityError, 500),
)


def status_for(exc: ZKLoveError) -> int:
    for error_type, status_code in STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return status_code
    return 500


async def zklove_error_handler(request: Request, exc: ZKLoveError) -> JSONResponse:
    status_code = status_for(exc)
    if status_code >= 500:
        logger.error(f"[API] {request.method} {request.url.path} failed — {exc.reason}: {exc.message}")
    else:
        logger.info(f"[API] {request.method} {request.url.path} rejected — {exc.reason}")
    return JSONResponse(
        status_code=status_code,
        content={
            "error": type(exc).__name__,
            "reason": exc.reason,
            "message": exc.message,
            "details": exc.details,
        },
    )


def get_service(request: Request) -> ZKDatingService:
    return request.app.state.dating_service


# ═══════════════════════════════════════════════════════════════════════════════
# REQUEST MODELS
# ═══════════════════════════════════════════════════════════════════════════════

class SaltsPayload(CamelModel):
    """Hex-encoded blinding scalars. Held by the profile owner."""
    profile: str
    location: str
    hobbies: List[str]
    age: str

    def to_salts(self) -> CommitmentSalts:
        try:
            return CommitmentSalts.from_dict(self.model_dump())
        except ValueError as exc:
            raise InvalidAttributeError(f"malformed salts: {exc}")


class CreateProfileRequest(CamelModel):
    user_id: str = Field(..., min_length=1, max_length=128)
    attributes: ProfileAttributes
    identity_secret: Optional[str] = Field(default=None, description="Stable identity secret")
    nullifier_hash: Optional[str] = Field(default=None, description="Pre-derived 64-hex nullifier")
    salts: Optional[SaltsPayload] = None


class UpdateProfileRequest(CamelModel):
    attributes: ProfileAttributes
    previous_salts: Optional[SaltsPayload] = None


class CardRequest(CamelModel):
    viewer_id: str
    target_id: str
    proof: Dict[str, Any]


class SwipeRequest(CamelModel):
    swiper_id: str
    target_id: str
    is_like: bool
    proof: Optional[Dict[str, Any]] = None


class UnlockRequest(CamelModel):
    requester_id: str
    tier: UnlockTier


class MessageRequest(CamelModel):
    sender_id: str
    encrypted_message_hash: str = Field(..., description="SHA-256 of the ciphertext, hex")


def _parse_proof(data: Dict[str, Any]) -> CompatibilityProof:
    try:
        return CompatibilityProof.from_dict(data)
    except (KeyError, TypeError, ValueError) as exc:
        raise IncompatibleError(f"malformed compatibility proof: {exc}")


def _handle_dict(handle) -> Dict[str, Any]:
    body = handle.to_dict()
    body["salts"] = handle.opening.salts.to_dict()
    return body


# ═══════════════════════════════════════════════════════════════════════════════
# ENDPOINTS
# ═══════════════════════════════════════════════════════════════════════════════

@router.post("/profiles", status_code=201)
async def create_profile(req: CreateProfileRequest, service: ZKDatingService = Depends(get_service)):
    """
    Onboard a profile. The response carries the salts: the caller is the
    profile holder and must keep them to prove and to re-commit.
    """
    handle = await service.create_profile(
        req.user_id,
        req.attributes,
        identity_secret=req.identity_secret,
        nullifier_hash=req.nullifier_hash,
        salts=req.salts.to_salts() if req.salts else None,
    )
    return _handle_dict(handle)


@router.put("/profiles/{user_id}")
async def update_profile(
    user_id: str,
    req: UpdateProfileRequest,
    service: ZKDatingService = Depends(get_service),
):
    previous = req.previous_salts.to_salts() if req.previous_salts else None
    handle = await service.update_profile(user_id, req.attributes, previous)
    return _handle_dict(handle)


@router.post("/profiles/{user_id}/deactivate")
async def deactivate_profile(user_id: str, service: ZKDatingService = Depends(get_service)):
    record = await service.deactivate_profile(user_id)
    return record.to_dict()


@router.get("/profiles/{user_id}")
def get_profile(user_id: str, service: ZKDatingService = Depends(get_service)):
    return service.get_profile(user_id).to_dict()


@router.get("/profiles/{user_id}/candidates")
def list_candidates(user_id: str, service: ZKDatingService = Depends(get_service)):
    return {"candidates": [record.to_dict() for record in service.list_candidates(user_id)]}


@router.post("/cards")
async def get_anonymous_card(req: CardRequest, service: ZKDatingService = Depends(get_service)):
    card = await service.get_anonymous_card(req.viewer_id, req.target_id, _parse_proof(req.proof))
    return card.model_dump(by_alias=True)


@router.post("/swipes")
async def swipe(req: SwipeRequest, service: ZKDatingService = Depends(get_service)):
    proof = _parse_proof(req.proof) if req.proof is not None else None
    outcome = await service.swipe(
        SwipeAction(
            swiper_id=req.swiper_id,
            target_id=req.target_id,
            is_like=req.is_like,
            proof=proof,
        )
    )
    return outcome.to_dict()


@router.post("/matches/{match_id}/unlock")
async def unlock_detail(
    match_id: str,
    req: UnlockRequest,
    service: ZKDatingService = Depends(get_service),
):
    outcome = await service.unlock_detail(match_id, req.requester_id, req.tier)
    return outcome.to_dict()


@router.post("/matches/{match_id}/messages", status_code=201)
async def post_message(
    match_id: str,
    req: MessageRequest,
    service: ZKDatingService = Depends(get_service),
):
    message = await service.post_message(match_id, req.sender_id, req.encrypted_message_hash)
    return message.to_dict()


@router.get("/matches/{match_id}/messages")
def list_match_messages(match_id: str, service: ZKDatingService = Depends(get_service)):
    messages = service.list_match_messages(match_id)
    return {"matchId": match_id, "messages": [m.to_dict() for m in messages]}


@router.get("/matches")
def list_matches(user: str = Query(..., min_length=1), service: ZKDatingService = Depends(get_service)):
    return {"matches": [m.to_dict() for m in service.list_matches(user)]}


@router.get("/aura/{user_id}")
def get_aura_balance(user_id: str, service: ZKDatingService = Depends(get_service)):
    return {"user": user_id, "auraBalance": service.get_aura_balance(user_id)}


@router.get("/aura/{user_id}/history")
def list_aura_history(user_id: str, service: ZKDatingService = Depends(get_service)):
    return {"transactions": [tx.to_dict() for tx in service.list_aura_history(user_id)]}


@router.get("/stats")
def get_stats(service: ZKDatingService = Depends(get_service)):
    return service.get_stats().model_dump(by_alias=True)


@router.get("/health", tags=["System"])
def health_check(service: ZKDatingService = Depends(get_service)):
    """Returns 200 OK if the API is responsive. Exposes no per-user state."""
    return {
        "status": "ok",
        "uptime_seconds": round(time.time() - _BOOT_TIME, 2),
        "ledger_root": service.ledger.merkle_root,
    }
