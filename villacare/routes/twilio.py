"""
Twilio Webhook Routes
Receives inbound WhatsApp/SMS replies from cleaners (ACCEPT / DECLINE)
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from sqlalchemy.orm import Session

from ..clock import utcnow
from ..config import PUBLIC_BASE_URL, TWILIO_AUTH_TOKEN
from ..database import get_db
from ..exceptions import TransportError
from ..services.command_processor import InboundCommandProcessor, InboundRequest
from ..services.twilio_service import Notifier, get_notifier
from ..webhook_security import (
    TWILIO_SIGNATURE_HEADER,
    TwilioSignatureVerifier,
    reconstruct_public_url,
)

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/webhooks/twilio", tags=["twilio"])

# Empty TwiML: acknowledge without an automatic reply, replies go out via the REST API
EMPTY_TWIML = '<?xml version="1.0" encoding="UTF-8"?><Response></Response>'


def get_signature_verifier() -> TwilioSignatureVerifier:
    """Dependency injection for the Twilio signature verifier"""
    return TwilioSignatureVerifier(TWILIO_AUTH_TOKEN)


@router.post("")
async def receive_twilio_message(
    request: Request,
    db: Session = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
    verifier: TwilioSignatureVerifier = Depends(get_signature_verifier),
):
    """
    Handle an inbound message.

    Invalid signatures get a 403 before anything is stored. Every signed
    request is acknowledged with 200, whatever happened internally, so
    Twilio doesn't retry; outcomes reach people through outbound messages.
    """
    raw_body = await request.body()
    inbound = InboundRequest(
        url=reconstruct_public_url(request, PUBLIC_BASE_URL),
        raw_body=raw_body,
        signature=request.headers.get(TWILIO_SIGNATURE_HEADER),
    )

    processor = InboundCommandProcessor(db, notifier, verifier)
    try:
        await processor.handle(inbound, utcnow())
    except TransportError:
        logger.warning(f"🚫 Rejected Twilio webhook with invalid signature for {inbound.url}")
        raise HTTPException(status_code=403, detail="Invalid signature")

    return Response(content=EMPTY_TWIML, media_type="application/xml")


@router.get("")
async def twilio_webhook_check():
    """Twilio console may check the URL with GET"""
    return Response(content="Twilio WhatsApp Webhook", media_type="text/plain")
