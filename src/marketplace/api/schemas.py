"""Pydantic request/response schemas for the Marketplace API.

These are external contracts (anti-corruption layer), separate from the
internal Protean commands. Buyer-facing responses never carry raw gateway
codes; only the admin detail response does.
"""

from datetime import datetime

from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Shared sub-models
# ---------------------------------------------------------------------------
class PayerSchema(BaseModel):
    name: str | None = None
    phone: str | None = None
    email: str | None = None
    network: str | None = None


class CustomerSchema(BaseModel):
    name: str | None = None
    phone: str | None = None
    email: str | None = None


class OrderItemSchema(BaseModel):
    product_id: str
    name: str
    image: str | None = None
    quantity: int = Field(ge=1)
    unit_price: float = Field(ge=0)


class FeeBreakdownSchema(BaseModel):
    subtotal: float
    delivery_fee: float
    service_fee: float
    tax: float
    total: float


# ---------------------------------------------------------------------------
# Payment Request Schemas
# ---------------------------------------------------------------------------
class CalculateFeesRequest(BaseModel):
    subtotal: float = Field(ge=0)
    delivery_fee: float = Field(default=0.0, ge=0)
    tax: float = Field(default=0.0, ge=0)


class InitiatePaymentRequest(BaseModel):
    order_id: str
    method: str
    payer: PayerSchema = Field(default_factory=PayerSchema)
    escrow_requested: bool = False

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "order_id": "ord-001",
                    "method": "mtn_mobile_money",
                    "payer": {"name": "Amina N.", "phone": "0772123456", "network": "MTN"},
                    "escrow_requested": True,
                }
            ]
        }
    }


class RefundRequest(BaseModel):
    amount: float = Field(gt=0)
    reason: str


class ReleaseEscrowRequest(BaseModel):
    reason: str = "manual"


class DisputeEscrowRequest(BaseModel):
    reason: str


class ResolveDisputeRequest(BaseModel):
    note: str | None = None


class SendReceiptRequest(BaseModel):
    url: str | None = None


class FlagPaymentRequest(BaseModel):
    note: str


# ---------------------------------------------------------------------------
# Order Request Schemas
# ---------------------------------------------------------------------------
class PlaceOrderRequest(BaseModel):
    seller_id: str
    business_id: str | None = None
    buyer_id: str | None = None
    items: list[OrderItemSchema]
    customer: CustomerSchema = Field(default_factory=CustomerSchema)
    delivery_method: str
    delivery_fee: float = Field(default=0.0, ge=0)
    delivery_address: str | None = None
    instructions: str | None = None
    tax: float = Field(default=0.0, ge=0)
    discount: float = Field(default=0.0, ge=0)
    currency: str = "UGX"
    payment_method: str = "cash"


class UpdateOrderStatusRequest(BaseModel):
    status: str
    note: str | None = None
    actor: str | None = None


class CancelOrderRequest(BaseModel):
    reason: str
    actor: str | None = None


class UpdateDeliveryStatusRequest(BaseModel):
    status: str
    location: str | None = None
    note: str | None = None


class AssignRiderRequest(BaseModel):
    name: str
    phone: str | None = None
    vehicle_type: str | None = None
    vehicle_plate: str | None = None
    rider_id: str | None = None


# ---------------------------------------------------------------------------
# Response Schemas
# ---------------------------------------------------------------------------
class ChargeResponse(BaseModel):
    payment_id: str
    status: str
    transaction_ref: str
    requires_action: bool = False
    action_type: str | None = None
    redirect_url: str | None = None
    message: str | None = None


class PaymentStatusResponse(BaseModel):
    payment_id: str
    order_id: str
    status: str
    message: str
    method: str
    total: float
    currency: str
    escrow_status: str
    receipt_number: str


class VerificationResponse(BaseModel):
    payment_id: str
    status: str
    checked_gateway: bool
    message: str


class ReceiptResponse(BaseModel):
    receipt_number: str
    payment_id: str
    order_id: str
    date: datetime | None = None
    method: str
    amount: FeeBreakdownSchema
    currency: str
    status: str
    url: str | None = None


class ReceiptSentResponse(BaseModel):
    receipt_url: str


class StatusResponse(BaseModel):
    status: str


class WebhookResponse(BaseModel):
    status: str
    effect: str | None = None


class SplitSchema(BaseModel):
    recipient_role: str
    recipient_id: str
    amount: float
    status: str
    paid_at: datetime | None = None


class HistoryEntrySchema(BaseModel):
    status: str
    note: str | None = None
    timestamp: datetime


class PaymentDetailResponse(BaseModel):
    payment_id: str
    order_id: str
    buyer_id: str | None = None
    seller_id: str
    method: str
    method_category: str
    status: str
    currency: str
    amount: FeeBreakdownSchema
    transaction_ref: str
    escrow_status: str
    escrow_release_condition: str | None = None
    escrow_auto_release_deadline: datetime | None = None
    dispute_reason: str | None = None
    gateway_provider: str | None = None
    gateway_transaction_id: str | None = None
    gateway_raw_code: str | None = None
    gateway_raw_message: str | None = None
    total_refunded: float = 0.0
    refund_reason: str | None = None
    failure_reason: str | None = None
    flagged_for_reconciliation: bool = False
    reconciliation_note: str | None = None
    splits: list[SplitSchema] = Field(default_factory=list)
    history: list[HistoryEntrySchema] = Field(default_factory=list)


class OrderIdResponse(BaseModel):
    order_id: str


class CancelOrderResponse(BaseModel):
    status: str
    cancelled_payments: list[str]


class OrderResponse(BaseModel):
    order_id: str
    order_number: str
    seller_id: str
    buyer_id: str | None = None
    status: str
    delivery_method: str
    delivery_status: str
    delivery_fee: float
    subtotal: float
    total_price: float
    currency: str
    payment_status: str | None = None
    payment_id: str | None = None
    rider_name: str | None = None


class TrackingEntrySchema(BaseModel):
    status: str
    location: str | None = None
    note: str | None = None
    timestamp: datetime


class TrackingResponse(BaseModel):
    order_id: str
    order_number: str
    delivery_status: str
    order_status: str
    rider_name: str | None = None
    rider_phone: str | None = None
    tracking: list[TrackingEntrySchema]
