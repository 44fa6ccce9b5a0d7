from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
from typing import List

from backend.database import get_db
from ..models import TransactionCategory, User
from ..schemas import CategoryResponse
from ..auth import get_current_active_user
from ..categorization.cascade import ensure_default_categories

router = APIRouter(prefix="/categories", tags=["categories"])


@router.get("/", response_model=List[CategoryResponse])
def get_categories(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    """Category vocabulary of the user; seeded with the defaults on first use."""
    return ensure_default_categories(db, current_user.id)


@router.post("/", response_model=CategoryResponse)
def create_category(
    name: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    name = name.strip()
    if not name:
        raise HTTPException(status_code=400, detail="Name is required")
    ensure_default_categories(db, current_user.id)
    existing = db.query(TransactionCategory).filter(
        TransactionCategory.user_id == current_user.id,
        TransactionCategory.name == name
    ).first()
    if existing:
        return existing

    db_category = TransactionCategory(user_id=current_user.id, name=name)
    db.add(db_category)
    db.commit()
    db.refresh(db_category)
    return db_category


@router.delete("/{category_id}")
def delete_category(
    category_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    category = db.query(TransactionCategory).filter(
        TransactionCategory.id == category_id,
        TransactionCategory.user_id == current_user.id
    ).first()
    if not category:
        raise HTTPException(status_code=404, detail="Category not found")

    db.delete(category)
    db.commit()
    return {"message": "Category deleted"}
