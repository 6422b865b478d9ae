"""
Pending Purchase Store

In-memory mapping from Webpay token to PendingPurchase. Records live from a
successful gateway create until the purchase is confirmed or the expiry
sweeper evicts them.

Every operation is a short, non-suspending critical section so request
handlers and the sweeper can share one store without awaiting each other.
"""
import threading
from datetime import datetime, timedelta
from typing import Dict, List, Optional
import logging

from ..exceptions import DuplicateTokenError, UnknownTokenError
from ..models.purchases import PendingPurchase

logger = logging.getLogger(__name__)


def mask_token(token: str) -> str:
    """Last 8 characters of a token, for log lines."""
    return f"***{token[-8:]}"


class PendingPurchaseStore:
    """
    Token-keyed store of purchases awaiting confirmation.

    Created once per application and injected into the orchestrator and the
    expiry sweeper.
    """

    def __init__(self):
        # {token: PendingPurchase}
        self._records: Dict[str, PendingPurchase] = {}

        self._lock = threading.Lock()

        logger.debug("Pending purchase store initialized")

    def insert(self, record: PendingPurchase) -> None:
        """
        Store a pending purchase under its token.

        Raises:
            DuplicateTokenError: A record already exists for the token
        """
        with self._lock:
            if record.token in self._records:
                raise DuplicateTokenError(
                    "A pending purchase already exists for this token",
                    details={"token": mask_token(record.token)}
                )
            self._records[record.token] = record

        logger.debug(f"Stored pending purchase {record.buy_order} ({mask_token(record.token)})")

    def get(self, token: str) -> Optional[PendingPurchase]:
        with self._lock:
            return self._records.get(token)

    def lookup(self, token: str) -> PendingPurchase:
        """
        Return the pending purchase for a token.

        Raises:
            UnknownTokenError: Never created, already confirmed or expired
        """
        record = self.get(token)
        if record is None:
            raise UnknownTokenError(
                "Transaction data not found. The transaction may have expired or is invalid",
                details={"token": mask_token(token)}
            )
        return record

    def delete(self, token: str) -> bool:
        """
        Remove the record for a token.

        Deleting an absent token is a no-op.

        Returns:
            True if a record was removed
        """
        with self._lock:
            removed = self._records.pop(token, None)

        if removed is not None:
            logger.debug(f"Removed pending purchase {mask_token(token)}")
        return removed is not None

    def sweep_expired(self, now: datetime, ttl: timedelta) -> int:
        """
        Remove every record whose age has reached the TTL.

        Args:
            now: Reference time (timezone-aware)
            ttl: Maximum age of a pending purchase

        Returns:
            Number of records removed
        """
        with self._lock:
            expired: List[str] = [
                token for token, record in self._records.items()
                if now - record.created_at >= ttl
            ]
            for token in expired:
                del self._records[token]

        return len(expired)

    def active_count(self) -> int:
        """Number of purchases awaiting confirmation."""
        with self._lock:
            return len(self._records)

    def __len__(self) -> int:
        return self.active_count()

    def __contains__(self, token: str) -> bool:
        with self._lock:
            return token in self._records

    def clear(self) -> None:
        with self._lock:
            self._records.clear()
