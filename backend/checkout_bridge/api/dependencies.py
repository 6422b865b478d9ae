"""
FastAPI dependencies resolving the services built in the application lifespan.
"""
from typing import Optional

from fastapi import Request

from ..config import Settings
from ..services.email_service import EmailSender
from ..services.orchestrator import TransactionOrchestrator


def get_orchestrator(request: Request) -> TransactionOrchestrator:
    return request.app.state.orchestrator


def get_email_sender(request: Request) -> Optional[EmailSender]:
    return request.app.state.email_sender


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings
