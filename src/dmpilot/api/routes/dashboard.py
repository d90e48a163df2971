"""Dashboard read API."""

import logging
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from dmpilot.api.dependencies import get_db
from dmpilot.api.schemas import InstagramConfigRequest, SuccessResponse
from dmpilot.services.dashboard_service import ConfigValidationError, DashboardService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["dashboard"])


@router.get("/conversations")
def get_conversations(
    account_id: Optional[int] = Query(default=None, alias="accountId"),
    limit: int = Query(default=50, ge=1, le=200),
    state: Optional[str] = None,
    db: Session = Depends(get_db),
) -> dict[str, Any]:
    """Most recently active conversations, newest first."""
    try:
        return DashboardService(db).get_conversations(account_id=account_id, limit=limit, state=state)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=f"Invalid state: {state}") from e


@router.get("/accounts")
def get_user_accounts(db: Session = Depends(get_db)) -> list[dict[str, Any]]:
    """Connected accounts without their access tokens."""
    return DashboardService(db).get_user_accounts()


@router.post("/instagram-config", response_model=SuccessResponse)
def save_instagram_config(
    body: InstagramConfigRequest,
    db: Session = Depends(get_db),
) -> SuccessResponse:
    """Store the Instagram credential for an account."""
    try:
        DashboardService(db).save_instagram_config(
            access_token=body.access_token,
            page_id=body.page_id,
            instagram_account_id=body.instagram_account_id,
        )
    except ConfigValidationError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    return SuccessResponse()
