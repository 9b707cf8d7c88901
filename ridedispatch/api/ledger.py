"""Ledger reconciliation API endpoints."""
from fastapi import APIRouter

from ridedispatch.dispatch.reconciliation import debt_report
from ridedispatch.errors import translate_errors

router = APIRouter()


@router.get("/debts")
@translate_errors("debt_report")
def get_debts():
    """Passengers with failed wallet payments and drivers owing cash commission."""
    return debt_report().model_dump()
