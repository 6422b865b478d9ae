"""
Transactions API Endpoints

Opens and confirms Webpay Plus transactions for the storefront checkout.

Flow:
1. POST /api/create-transaction -> redirect the customer to the Webpay form
2. Webpay sends the customer back to <frontend>/checkout/confirm?token_ws=...
3. POST /api/confirm-transaction with that token -> merged purchase result
"""
from fastapi import APIRouter, Depends
import logging

from ..models.purchases import ConfirmationResult
from ..models.requests import (
    ConfirmTransactionRequest,
    CreateTransactionRequest,
    CreateTransactionResponse,
)
from ..services.orchestrator import TransactionOrchestrator
from .dependencies import get_orchestrator

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/create-transaction", response_model=CreateTransactionResponse)
async def create_transaction_endpoint(
    body: CreateTransactionRequest,
    orchestrator: TransactionOrchestrator = Depends(get_orchestrator)
) -> CreateTransactionResponse:
    """
    Open a Webpay transaction for the cart.

    Request Body:
        {
            "amount": int,
            "customerInfo": {"name" | "firstName": str, "email": str, "phone": str?},
            "cartItems": [{"vehicle": {"id", "name", "price"}, "quantity": int}],
            "subtotal": int?,
            "discount": int?,
            "couponCode": str?
        }

    Returns:
        {"success": true, "url": str, "token": str, "buyOrder": str, "message": str}

    Errors:
        400 checkout:validation, 502 checkout:gateway:unavailable
    """
    session = await orchestrator.begin_purchase(
        amount=body.amount,
        customer_info=body.customer_info,
        cart_items=body.cart_items,
        pricing=body.pricing(),
    )

    return CreateTransactionResponse(
        url=session.url,
        token=session.token,
        buy_order=session.buy_order,
    )


@router.post("/confirm-transaction", response_model=ConfirmationResult)
async def confirm_transaction_endpoint(
    body: ConfirmTransactionRequest,
    orchestrator: TransactionOrchestrator = Depends(get_orchestrator)
) -> ConfirmationResult:
    """
    Commit the Webpay transaction identified by token.

    Returns the gateway result (status, orderId, amount, cardLast4Digits,
    authorizationCode, responseCode, paymentType, installments) merged with
    the stored customerInfo, cartItems and pricing.

    Errors:
        404 checkout:token:unknown (expired, invalid or already confirmed)
        502 checkout:gateway:unavailable (safe to retry with the same token)
    """
    return await orchestrator.confirm_purchase(body.token)
