"""
Remote store contract.

WHAT: Subscription and write interface the core coordinates against
WHY: The core must work against any store that pushes full result sets
HOW: typing.Protocol plus an explicit WriteResult value type
"""

from dataclasses import dataclass
from typing import Any, Callable, Protocol, Sequence

from ..models.message import ChatMessage
from ..models.negotiation import KycStatus, Negotiation, SettlementEvent, UserRole


Unsubscribe = Callable[[], None]
ErrorCallback = Callable[[Exception], None]


@dataclass
class WriteResult:
    """Explicit success/failure of a remote write."""
    success: bool
    id: str | None = None
    error: str | None = None

    @classmethod
    def ok(cls, id: str | None = None) -> "WriteResult":
        return cls(success=True, id=id)

    @classmethod
    def failed(cls, error: str) -> "WriteResult":
        return cls(success=False, error=error)


class RemoteStore(Protocol):
    """
    Authoritative store for negotiations, messages and the settlement ledger.

    Subscriptions deliver the full current result set on every change and
    report query-shape failures (missing index) distinctly from permission
    failures through `on_error`. Writes return a WriteResult.
    """

    def subscribe_negotiations(
        self,
        user_id: str,
        role: UserRole,
        on_data: Callable[[list[Negotiation]], None],
        on_error: ErrorCallback,
    ) -> Unsubscribe:
        ...

    def subscribe_messages(
        self,
        negotiation_ids: Sequence[str],
        on_data: Callable[[list[ChatMessage]], None],
        on_error: ErrorCallback,
    ) -> Unsubscribe:
        ...

    async def create_negotiation(self, fields: dict[str, Any]) -> WriteResult:
        ...

    async def update_negotiation(self, negotiation_id: str, fields: dict[str, Any]) -> WriteResult:
        ...

    async def send_message(self, negotiation: Negotiation, sender_id: str, text: str) -> WriteResult:
        ...

    async def record_settlement(self, event: SettlementEvent) -> WriteResult:
        ...

    async def get_kyc_status(self, user_id: str) -> KycStatus:
        ...

    async def set_user_role(self, user_id: str, role: UserRole) -> WriteResult:
        ...
