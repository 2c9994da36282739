"""SMS sending and transport status callbacks."""
from __future__ import annotations

from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.orm import Session

from reputationflow.api import schemas
from reputationflow.api.dependencies.carriers import collect_carriers
from reputationflow.api.dependencies.database import get_db
from reputationflow.api.dependencies.transport import get_send_meter
from reputationflow.core.extractors import RequestCarriers, first_present, from_body
from reputationflow.core.logging import get_logger
from reputationflow.services.send_meter import SendAndMeter, update_message_status

router = APIRouter(tags=["messaging"])
logger = get_logger(__name__)


@router.post("/send-sms", response_model=schemas.SendResponse)
@router.post("/api/send-sms", response_model=schemas.SendResponse)
def send_sms(
    carriers: RequestCarriers = Depends(collect_carriers),
    db: Session = Depends(get_db),
    meter: SendAndMeter = Depends(get_send_meter),
) -> schemas.SendResponse:
    result = meter.send(db, carriers)
    return schemas.SendResponse(sid=result.sid, status=result.status)


@router.post("/twilio-status", status_code=status.HTTP_200_OK)
def twilio_status(
    carriers: RequestCarriers = Depends(collect_carriers),
    db: Session = Depends(get_db),
) -> Response:
    sid = first_present((from_body("MessageSid", "SmsSid"),), carriers)
    message_status = first_present((from_body("MessageStatus", "SmsStatus"),), carriers)
    logger.info(
        "transport_status_callback",
        sid=sid,
        status=message_status,
        error_code=carriers.mapping.get("ErrorCode"),
    )
    if sid and message_status:
        update_message_status(db, str(sid), str(message_status))
    return Response(status_code=status.HTTP_200_OK)


__all__ = ["router"]
