from fastapi import APIRouter, Depends, HTTPException, Header, Query, status
from sqlalchemy.orm import Session
from typing import List, Optional
from app.db.database import get_db
from app.models.settlements import SplitType
from app.services.auth.jwt_handler import get_current_user
from app.services import settlement_guard
from app.services.settlement_service import SettlementEngine, get_settlement_engine
from app.schemas.settlement_schema import (
    SettlementCreate, SettlementCreated, SettlementOut, SettlementDetail, TransactionOut,
    PaymentCreate, PaymentRecordOut, SettlementSummary, OptimalSettlementOut,
    SplitPreviewRequest, SplitResult
)
from app.utils.split_calculator import calculate_split_with_adjustments

router = APIRouter(prefix="/settlements", tags=["settlements"])


def get_current_user_id(access_token: str = Header(..., description="Access token (without Bearer)")):
    """Extract current user ID from JWT token"""
    if access_token.startswith("Bearer "):
        access_token = access_token.replace("Bearer ", "")
    user_id = get_current_user(access_token)
    if not user_id:
        raise HTTPException(status_code=401, detail="Invalid token")
    return user_id


@router.post("", response_model=SettlementCreated, status_code=status.HTTP_201_CREATED)
def create_new_settlement(
    settlement_data: SettlementCreate,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    engine: SettlementEngine = Depends(get_settlement_engine)
):
    """Create a settlement and one transaction per participant"""
    settlement = engine.create_settlement(db, settlement_data, user_id)
    return SettlementCreated(
        settlement=SettlementOut.model_validate(settlement),
        transactions=[TransactionOut.model_validate(tx) for tx in settlement.transactions]
    )


@router.get("", response_model=List[SettlementOut])
def list_my_settlements(
    settlement_status: Optional[str] = Query(None, alias="status"),
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    engine: SettlementEngine = Depends(get_settlement_engine)
):
    """Get settlements the current user created or participates in"""
    return engine.get_user_settlements(db, user_id, settlement_status, limit, offset)


@router.post("/calculate", response_model=SplitResult)
def preview_split(
    request: SplitPreviewRequest,
    user_id: str = Depends(get_current_user_id),
    engine: SettlementEngine = Depends(get_settlement_engine)
):
    """Calculate a split without persisting anything"""
    split = request.split
    settlement_guard.validate_split_rule(
        split.split_type, split.participants, getattr(split, "total_amount", None), split
    )

    if request.adjustments is not None and split.split_type != SplitType.itemized.value:
        return calculate_split_with_adjustments(
            split.total_amount, request.adjustments, split.split_type, split.participants
        )
    return engine.calculate(split)


@router.get("/summary", response_model=SettlementSummary)
def get_my_summary(
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    engine: SettlementEngine = Depends(get_settlement_engine)
):
    """Get amounts owed to and by the current user"""
    return engine.get_settlement_summary(db, user_id)


@router.get("/optimize", response_model=OptimalSettlementOut)
def get_optimized_settlements(
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    engine: SettlementEngine = Depends(get_settlement_engine)
):
    """Get netted transfer suggestions for the current user's open settlements"""
    return engine.calculate_optimal_settlement(db, user_id)


@router.get("/{settlement_id}", response_model=SettlementDetail)
def get_settlement_details(
    settlement_id: str,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    engine: SettlementEngine = Depends(get_settlement_engine)
):
    """Get a settlement with its transactions"""
    return engine.get_settlement(db, settlement_id)


@router.post("/{settlement_id}/cancel", response_model=SettlementOut)
def cancel_existing_settlement(
    settlement_id: str,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    engine: SettlementEngine = Depends(get_settlement_engine)
):
    """Cancel a settlement (creator only)"""
    return engine.cancel_settlement(db, settlement_id, user_id)


@router.post("/transactions/{transaction_id}/payments", response_model=TransactionOut)
def record_transaction_payment(
    transaction_id: str,
    payment_data: PaymentCreate,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    engine: SettlementEngine = Depends(get_settlement_engine)
):
    """Record a payment against a transaction"""
    settlement_guard.validate_payment_details(payment_data.method, payment_data.reference, payment_data.notes)
    return engine.record_payment(
        db,
        transaction_id,
        payment_data.amount,
        payment_data.method,
        payment_data.reference,
        payment_data.notes
    )


@router.get("/transactions/{transaction_id}/payments", response_model=List[PaymentRecordOut])
def list_transaction_payments(
    transaction_id: str,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    engine: SettlementEngine = Depends(get_settlement_engine)
):
    """Get the payment history of a transaction"""
    return engine.get_transaction_payments(db, transaction_id)
