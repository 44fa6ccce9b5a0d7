from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
from typing import List

from backend.database import get_db
from ..models import User
from ..schemas import TransactionResponse, TransactionCategoryUpdate, RecategorizeResponse
from ..auth import get_current_active_user
from ..runtime import Runtime, get_runtime
from ..categorization.recategorize import (
    recategorize_all, update_transaction_category, user_transactions, get_user_transaction
)

router = APIRouter(prefix="/transactions", tags=["transactions"])


@router.get("/", response_model=List[TransactionResponse])
def list_transactions(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    return user_transactions(db, current_user.id)


@router.patch("/{transaction_id}/category", response_model=TransactionResponse)
def set_transaction_category(
    transaction_id: int,
    request: TransactionCategoryUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    """
    Set a category by hand.

    With apply_to_future the choice becomes a rule for future imports,
    keyed on IBAN, merchant or description.
    """
    tx = get_user_transaction(db, current_user.id, transaction_id)
    if not tx:
        raise HTTPException(status_code=404, detail="Transaction not found")
    try:
        return update_transaction_category(db, current_user.id, tx, request.category, request.apply_to_future)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.post("/recategorize", response_model=RecategorizeResponse)
async def recategorize_transactions(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
    runtime: Runtime = Depends(get_runtime)
):
    outcome = await recategorize_all(db, runtime.cascade, current_user.id)
    return RecategorizeResponse(updated=outcome.updated, total=outcome.total, ai_count=outcome.ai_count)
