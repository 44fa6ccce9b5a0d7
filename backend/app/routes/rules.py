from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
from typing import List

from backend.database import get_db
from ..models import User
from ..schemas import RuleRequest, RuleResponse, RecategorizeResponse
from ..auth import get_current_active_user
from ..categorization import OverrideStore
from ..categorization.recategorize import apply_rule_to_history

router = APIRouter(prefix="/rules", tags=["rules"])


def _require_rule(store: OverrideStore, user: User, rule_id: int):
    rule = store.get_rule(user.id, rule_id)
    if not rule:
        raise HTTPException(status_code=404, detail="Rule not found")
    return rule


@router.get("/", response_model=List[RuleResponse])
def list_rules(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    return OverrideStore(db).list_rules(current_user.id)


@router.post("/", response_model=RuleResponse)
def create_rule(
    request: RuleRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    store = OverrideStore(db)
    try:
        rule = store.create_rule(
            current_user.id,
            request.match_type,
            request.match_value,
            request.category,
            match_mode=request.match_mode
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    if request.apply_to_history:
        apply_rule_to_history(db, rule)
    return rule


@router.put("/{rule_id}", response_model=RuleResponse)
def update_rule(
    rule_id: int,
    request: RuleRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    store = OverrideStore(db)
    rule = _require_rule(store, current_user, rule_id)
    try:
        return store.update_rule(
            rule,
            match_type=request.match_type,
            match_value=request.match_value,
            category=request.category,
            match_mode=request.match_mode
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.delete("/{rule_id}")
def delete_rule(
    rule_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    store = OverrideStore(db)
    store.delete_rule(_require_rule(store, current_user, rule_id))
    return {"message": "Rule deleted"}


@router.post("/{rule_id}/apply", response_model=RecategorizeResponse)
def apply_rule(
    rule_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    """Apply an existing rule to all matching transactions already in the ledger."""
    rule = _require_rule(OverrideStore(db), current_user, rule_id)
    outcome = apply_rule_to_history(db, rule)
    return RecategorizeResponse(updated=outcome.updated, total=outcome.total, ai_count=outcome.ai_count)
