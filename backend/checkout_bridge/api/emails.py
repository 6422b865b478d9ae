"""
Email API Endpoint

Relays an HTML email rendered by the storefront through Resend.
"""
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
import logging

from ..config import Settings
from ..exceptions import PurchaseValidationError
from ..models.requests import SendEmailRequest, SendEmailResponse
from ..services.email_service import EmailMessage, EmailSender, mask_email
from ..services.orchestrator import EMAIL_PATTERN
from .dependencies import get_app_settings, get_email_sender

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/send-email", response_model=SendEmailResponse)
async def send_email_endpoint(
    body: SendEmailRequest,
    email_sender: Optional[EmailSender] = Depends(get_email_sender),
    settings: Settings = Depends(get_app_settings)
) -> SendEmailResponse:
    """
    Send an email.

    Request Body:
        {"to": str, "subject": str, "reactTemplate": str}

    Errors:
        400 invalid address or template too large
        502 checkout:email:failed
        503 email delivery not configured
    """
    logger.info(
        f"Received email request: to={mask_email(body.to)}, "
        f"subject={body.subject[:30]}, template_length={len(body.react_template)}"
    )

    if not EMAIL_PATTERN.fullmatch(body.to):
        raise PurchaseValidationError(
            "Invalid email format",
            details={"reason": "Please provide a valid email address"}
        )

    if len(body.react_template) > settings.max_email_template_chars:
        raise PurchaseValidationError(
            "Email template too large",
            details={"max_chars": settings.max_email_template_chars}
        )

    if email_sender is None:
        raise HTTPException(
            status_code=503,
            detail={
                "error_code": "checkout:email:not_configured",
                "message": "Email delivery is not configured",
            }
        )

    email_id = await email_sender.send(
        EmailMessage(to=body.to, subject=body.subject, html=body.react_template)
    )

    return SendEmailResponse(email_id=email_id, timestamp=datetime.now(timezone.utc))
