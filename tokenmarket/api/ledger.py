"""Ledger endpoints: grant the marketplace approvals and read balances.

Minting is deliberately absent; balances are bootstrapped with ``scripts/seed_db.py``.
"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from tokenmarket.core.auth import get_current_account_id
from tokenmarket.database import get_db
from tokenmarket.schemas.ledger import (
    AssetApprovalRequest,
    AssetApprovalResponse,
    AssetBalanceResponse,
    CurrencyAllowanceResponse,
    CurrencyApproveRequest,
    CurrencyBalanceResponse,
)
from tokenmarket.services import asset_ledger_service, currency_ledger_service, escrow_service

router = APIRouter(prefix="/ledger", tags=["ledger"])


@router.post("/assets/approval", response_model=AssetApprovalResponse)
async def set_asset_approval(
    req: AssetApprovalRequest,
    db: AsyncSession = Depends(get_db),
    current_account: str = Depends(get_current_account_id),
):
    operator = req.operator or escrow_service.custody_id()
    approval = await asset_ledger_service.set_approval_for_all(
        db, req.asset_contract, current_account, operator, req.approved
    )
    return AssetApprovalResponse(
        asset_contract=approval.asset_contract,
        owner=approval.owner,
        operator=approval.operator,
        approved=approval.approved,
    )


@router.get("/assets/{asset_contract}/{token_id}/balance", response_model=AssetBalanceResponse)
async def get_asset_balance(
    asset_contract: str,
    token_id: str,
    db: AsyncSession = Depends(get_db),
    current_account: str = Depends(get_current_account_id),
):
    balance = await asset_ledger_service.balance_of(db, asset_contract, token_id, current_account)
    return AssetBalanceResponse(
        asset_contract=asset_contract,
        token_id=token_id,
        holder=current_account,
        balance=balance,
    )


@router.post("/currency/approve", response_model=CurrencyAllowanceResponse)
async def approve_currency(
    req: CurrencyApproveRequest,
    db: AsyncSession = Depends(get_db),
    current_account: str = Depends(get_current_account_id),
):
    spender = req.spender or escrow_service.custody_id()
    row = await currency_ledger_service.approve(db, req.currency, current_account, spender, req.amount)
    return CurrencyAllowanceResponse(
        currency=row.currency,
        owner=row.owner,
        spender=row.spender,
        amount=float(row.amount),
    )


@router.get("/currency/{currency}/balance", response_model=CurrencyBalanceResponse)
async def get_currency_balance(
    currency: str,
    db: AsyncSession = Depends(get_db),
    current_account: str = Depends(get_current_account_id),
):
    balance = await currency_ledger_service.balance_of(db, currency, current_account)
    return CurrencyBalanceResponse(currency=currency, holder=current_account, balance=float(balance))
