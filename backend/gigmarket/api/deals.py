from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from gigmarket.api.schemas import DealDetailResponse, DealResponse
from gigmarket.core.deps import get_db
from gigmarket.core.security import Identity, get_identity
from gigmarket.services.deal import (
    deal_actions_for,
    get_deal,
    list_deals_for_user,
    mark_deal_completed,
)

router = APIRouter(prefix="/deals", tags=["deals"])


def _detail(deal, identity: Identity) -> DealDetailResponse:
    resp = DealDetailResponse.model_validate(deal)
    resp.available_actions = deal_actions_for(deal, identity)
    return resp


@router.get("", response_model=list[DealResponse])
async def list_deals(
    status: str | None = Query(default=None),
    offset: int = Query(default=0, ge=0),
    limit: int = Query(default=50, ge=1, le=100),
    identity: Identity = Depends(get_identity),
    db: AsyncSession = Depends(get_db),
):
    return await list_deals_for_user(db, identity, status, offset=offset, limit=limit)


@router.get("/{deal_id}", response_model=DealDetailResponse)
async def get_deal_detail(
    deal_id: int,
    identity: Identity = Depends(get_identity),
    db: AsyncSession = Depends(get_db),
):
    deal = await get_deal(db, identity, deal_id)
    return _detail(deal, identity)


@router.post("/{deal_id}/complete", response_model=DealDetailResponse)
async def complete_deal(
    deal_id: int,
    identity: Identity = Depends(get_identity),
    db: AsyncSession = Depends(get_db),
):
    """Mark a deal as completed (client only)."""
    deal = await mark_deal_completed(db, identity, deal_id)
    return _detail(deal, identity)
