# storefront/api/routers/tickets.py
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query

from storefront.api.deps import get_ticket_ledger
from storefront.domain.schemas import SalesStats, TicketOut, TicketPage, TicketStatusIn
from storefront.services.ticket_ledger import TicketLedger, as_utc

router = APIRouter(prefix="/tickets", tags=["tickets"])


@router.get("", response_model=TicketPage)
async def list_tickets(
    user_id: int = Query(...),
    page: int = Query(1, ge=1),
    page_size: int = Query(10, ge=1, le=100),
    ledger: TicketLedger = Depends(get_ticket_ledger),
):
    return await ledger.find_by_user(user_id, page=page, page_size=page_size)


@router.get("/stats", response_model=SalesStats)
async def sales_stats(
    start: datetime | None = Query(None),
    end: datetime | None = Query(None),
    ledger: TicketLedger = Depends(get_ticket_ledger),
):
    if start and end and as_utc(start) > as_utc(end):
        raise HTTPException(status_code=400, detail="start musi byc przed end")
    return await ledger.aggregate_sales(start, end)


@router.get("/{code}", response_model=TicketOut)
async def get_ticket(code: str, ledger: TicketLedger = Depends(get_ticket_ledger)):
    ticket = await ledger.find_by_code(code)
    if not ticket:
        raise HTTPException(status_code=404, detail="Ticket nie znaleziony")
    return ticket


@router.patch("/{code}/status", response_model=TicketOut)
async def update_ticket_status(
    code: str,
    payload: TicketStatusIn,
    ledger: TicketLedger = Depends(get_ticket_ledger),
):
    ticket = await ledger.update_status(code, payload.status)
    if not ticket:
        raise HTTPException(status_code=404, detail="Ticket nie znaleziony")
    return ticket
