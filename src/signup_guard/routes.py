"""Anti-fraud API routes.

Provides pre-signup validation and the stored risk score lookup.
"""

from fastapi import APIRouter, Depends, HTTPException, Request, status

from signup_guard.engine import RiskEngine
from signup_guard.errors import SignupInputError
from signup_guard.schemas import (
    RiskDecision,
    SignupCheckPayload,
    SignupCheckResponse,
    SignupRequest,
    StoredRiskResponse,
)
from signup_guard.security.signals import RequestContext

router = APIRouter(prefix="/antifraud", tags=["Anti-fraud"])

# Shown for every block so the response does not reveal which check fired
BLOCKED_REASON = "Unable to create account at this time."


def get_engine(request: Request) -> RiskEngine:
    """Dependency that provides the engine created at startup."""
    return request.app.state.engine


def get_request_context(request: Request) -> RequestContext:
    """Dependency that extracts client IP, country and user agent."""
    client_host = request.client.host if request.client else None
    return RequestContext.from_headers(request.headers, client_host)


@router.post("/validate", response_model=SignupCheckResponse)
async def validate_signup(
    payload: SignupCheckPayload,
    context: RequestContext = Depends(get_request_context),
    engine: RiskEngine = Depends(get_engine),
):
    """Check a signup before the account is created.

    - Client IP, country and (fallback) user agent come from the request, never the body
    - Individual risk flags are never returned
    """
    signup = SignupRequest(
        ip=context.ip,
        country=context.country,
        email=payload.email,
        name=payload.name,
        fingerprint_id=payload.fingerprint_id,
        fingerprint_confidence=payload.fingerprint_confidence,
        captcha_token=payload.captcha_token,
        user_agent=payload.user_agent or context.user_agent,
        screen_resolution=payload.screen_resolution,
        language=payload.language,
        timezone=payload.timezone,
    )

    try:
        result = await engine.validate_signup(signup)
    except SignupInputError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=e.message,
        ) from e

    reason = BLOCKED_REASON if result.decision == RiskDecision.BLOCK else result.reason
    return SignupCheckResponse(
        allowed=result.allowed,
        risk_score=result.risk_score,
        decision=result.decision,
        reason=reason,
        initial_credits=result.initial_credits,
    )


@router.get("/accounts/{account_id}/risk", response_model=StoredRiskResponse)
async def get_account_risk(
    account_id: str,
    engine: RiskEngine = Depends(get_engine),
):
    """Get the stored risk assessment for an account (audit view)."""
    stored = await engine.get_risk_score(account_id)
    if stored is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Risk score not found",
        )

    return StoredRiskResponse(
        account_id=stored.account_id,
        risk_score=stored.score,
        decision=stored.decision,
        reason=stored.reason,
        flags=[flag.value for flag in stored.flags],
        version=stored.version,
    )
