"""
Mock Payment Gateway

Simulates Webpay Plus create/commit for demo mode and tests.

Mock Behavior:
- Tokens are derived from the buy order, so they are unique per purchase
- Amounts listed in DECLINE_AMOUNTS commit with status FAILED
- fail_create / fail_commit make the next calls raise GatewayError
"""
import hashlib
from datetime import datetime, timezone
from typing import Dict, Optional, Set

from ..exceptions import GatewayError
from ..services.gateway import CardDetail, GatewayCommit, GatewayTransaction, PaymentGateway


MOCK_FORM_URL = "https://webpay3gint.transbank.cl/webpayserver/initTransaction"

# Amounts that trigger a rejected authorization (response_code -1)
DECLINE_AMOUNTS = {13, 666}


class MockPaymentGateway(PaymentGateway):
    """In-process gateway that never leaves the machine."""

    def __init__(self, card_number: str = "6623", payment_type_code: str = "VD"):
        self.card_number = card_number
        self.payment_type_code = payment_type_code

        # {token: {"buy_order", "session_id", "amount"}}
        self.transactions: Dict[str, Dict] = {}
        self.committed: Set[str] = set()

        self.fail_create: Optional[str] = None
        self.fail_commit: Optional[str] = None
        self.omit_url = False

    async def create(
        self,
        buy_order: str,
        session_id: str,
        amount: int,
        return_url: str,
    ) -> GatewayTransaction:
        if self.fail_create:
            raise GatewayError(self.fail_create)

        token = "01ab" + hashlib.sha256(f"{buy_order}:{session_id}".encode()).hexdigest()[:60]
        self.transactions[token] = {
            "buy_order": buy_order,
            "session_id": session_id,
            "amount": amount,
            "return_url": return_url,
        }

        return GatewayTransaction(token=token, url=None if self.omit_url else MOCK_FORM_URL)

    async def commit(self, token: str) -> GatewayCommit:
        if self.fail_commit:
            raise GatewayError(self.fail_commit)

        if token in self.committed:
            raise GatewayError("Transaction already locked by another process", status_code=422)
        transaction = self.transactions.get(token)
        if transaction is None:
            raise GatewayError("Invalid token", status_code=422)

        self.committed.add(token)
        del self.transactions[token]
        amount = transaction["amount"]
        approved = amount not in DECLINE_AMOUNTS

        return GatewayCommit(
            status="AUTHORIZED" if approved else "FAILED",
            buy_order=transaction["buy_order"],
            session_id=transaction["session_id"],
            amount=amount,
            authorization_code=hashlib.sha256(token.encode()).hexdigest()[:6].upper() if approved else "000000",
            response_code=0 if approved else -1,
            payment_type_code=self.payment_type_code,
            installments_number=0,
            card_detail=CardDetail(card_number=self.card_number),
            transaction_date=datetime.now(timezone.utc),
            vci="TSY",
        )
