"""
Cron endpoints for external schedulers
The arq worker runs the same jobs; these exist for platforms that can only trigger HTTP
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException
from pydantic import BaseModel
from sqlalchemy.orm import Session

from ..clock import utcnow
from ..config import CRON_SECRET
from ..database import get_db
from ..services.booking_tracker import scan
from ..services.recurring_bookings import generate_recurring_bookings
from ..services.twilio_service import Notifier, get_notifier
from ..webhook_security import constant_time_compare

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/cron", tags=["cron"])


class ScanResult(BaseModel):
    processed: int
    responded: int
    reminded: int
    escalated: int
    auto_declined: int
    errors: int
    timestamp: str


class RecurringResult(BaseModel):
    series_processed: int
    bookings_created: int
    errors: list[str]
    timestamp: str


def verify_cron_secret(authorization: Optional[str] = Header(default=None)) -> None:
    """Reject calls without 'Authorization: Bearer $CRON_SECRET' when a secret is configured"""
    if not CRON_SECRET:
        return
    if not constant_time_compare(authorization or "", f"Bearer {CRON_SECRET}"):
        logger.warning("🚫 Unauthorized cron call")
        raise HTTPException(status_code=401, detail="Unauthorized")


@router.get("/booking-reminders", response_model=ScanResult, dependencies=[Depends(verify_cron_secret)])
async def run_booking_reminders(
    db: Session = Depends(get_db), notifier: Notifier = Depends(get_notifier)
):
    """Process pending booking requests: reminders, team escalation, auto-decline (every 10 minutes)"""
    now = utcnow()
    summary = await scan(db, notifier, now)
    return ScanResult(**summary, timestamp=now.isoformat())


@router.get("/recurring-bookings", response_model=RecurringResult, dependencies=[Depends(verify_cron_secret)])
async def run_recurring_bookings(db: Session = Depends(get_db)):
    """Top up active recurring series (daily)"""
    now = utcnow()
    result = generate_recurring_bookings(db, now)
    return RecurringResult(**result, timestamp=now.isoformat())
