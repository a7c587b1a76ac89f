"""Typed payloads for the built-in event types.

The bus itself treats ``payload`` as opaque.  These models give handlers a
typed view of it (``envelope.payload_as(RiskCheckRequest)``) and the maps
below tie each event type to the payload it carries one-way, as a request,
and as a response.  Field aliases follow the camelCase wire names.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class _Payload(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)


# ---------------------------------------------------------------------------
# Telephony / CRM
# ---------------------------------------------------------------------------

class CallStart(_Payload):
    caller: str
    ticket_id: str = Field(default="", alias="ticketId")


class OutboundDispatch(_Payload):
    tel: str


class OutboundDispatchResult(_Payload):
    accepted: bool
    tel: str = ""


class LockCustomerRequest(_Payload):
    customer_id: str = Field(default="", alias="customerId")


class LockCustomerResult(_Payload):
    locked: bool
    customer_id: str = Field(default="", alias="customerId")
    ts: int = 0


# ---------------------------------------------------------------------------
# Tickets
# ---------------------------------------------------------------------------

class TicketAccept(_Payload):
    ticket_id: str = Field(alias="ticketId")


class TicketAcceptResult(_Payload):
    accepted: bool
    ticket_id: str = Field(default="", alias="ticketId")


class TicketDone(_Payload):
    ticket_id: str = Field(alias="ticketId")
    by: str = ""
    ts: int = 0


# ---------------------------------------------------------------------------
# Risk / credit
# ---------------------------------------------------------------------------

class RiskCheckRequest(_Payload):
    customer_id: str = Field(default="", alias="customerId")
    amount: float = 0


class RiskCheckResult(_Payload):
    passed: bool
    score: int
    amount: float
    ts: int | None = None


class CreditApply(_Payload):
    product: str = "gold-card"
    amount: float = 0


class CreditApprove(_Payload):
    approved: bool
    amount: float = 0


class LoanApply(_Payload):
    amount: float = 0
    term_months: int = Field(default=12, alias="termMonths")


class Ping(_Payload):
    note: str = ""


EVENT_PAYLOADS: dict[str, type[BaseModel]] = {
    "CALL_START": CallStart,
    "TICKET_DONE": TicketDone,
    "PING": Ping,
}

REQUEST_PAYLOADS: dict[str, type[BaseModel]] = {
    "OUTBOUND_DISPATCH": OutboundDispatch,
    "LOCK_CUSTOMER": LockCustomerRequest,
    "TICKET_ACCEPT": TicketAccept,
    "RISK_CHECK": RiskCheckRequest,
    "CREDIT_APPLY": CreditApply,
    "CREDIT_APPROVE": CreditApprove,
    "LOAN_APPLY": LoanApply,
}

RESPONSE_PAYLOADS: dict[str, type[BaseModel]] = {
    "OUTBOUND_DISPATCH": OutboundDispatchResult,
    "LOCK_CUSTOMER": LockCustomerResult,
    "TICKET_ACCEPT": TicketAcceptResult,
    "RISK_CHECK": RiskCheckResult,
}


def payload_model(event_type: str, *, response: bool = False) -> type[BaseModel] | None:
    """Look up the payload model for *event_type*.

    Responses share their request's ``type``, so ``response=True`` selects
    the reply shape instead of the request/event shape.
    """
    if response:
        return RESPONSE_PAYLOADS.get(event_type)
    return REQUEST_PAYLOADS.get(event_type) or EVENT_PAYLOADS.get(event_type)
