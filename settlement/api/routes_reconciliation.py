from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from settlement.core.security import Actor, get_actor, require_roles
from settlement.persistence.pg import get_session
from settlement.reconciliation.rules import run_reconciliation

router = APIRouter(prefix="/admin", tags=["reconciliation"])


@router.get("/reconciliation")
def reconcile(
    actor: Actor = Depends(get_actor),
    session: Session = Depends(get_session),
):
    require_roles(actor, {"admin", "system"}, detail="reconciliation requires admin/system role")
    results = run_reconciliation(session)
    return {
        "passed": all(result.passed for result in results),
        "results": [result.as_dict() for result in results],
    }
