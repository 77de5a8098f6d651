# backend/homeserve/schemas/bookings.py

from datetime import date, datetime
from typing import Literal, Optional
from pydantic import BaseModel, Field, field_validator

PaymentStatus = Literal["pending", "paid", "failed", "refunded"]


class ServiceSnapshot(BaseModel):
    """Service as it was at booking time."""
    service_id: str = Field(min_length=1)
    service_name: str = Field(min_length=1)
    quantity: int = Field(ge=1)
    price: float = Field(gt=0)
    category: Optional[str] = None
    image_url: Optional[str] = None

    model_config = {"from_attributes": True, "str_strip_whitespace": True}


class DeliveryAddress(BaseModel):
    full_name: Optional[str] = None
    line1: str = Field(min_length=1)
    line2: Optional[str] = None
    city: str = Field(min_length=1)
    state: str = Field(min_length=1)
    pincode: str = Field(min_length=1)
    country: Optional[str] = None
    phone: Optional[str] = None

    model_config = {"from_attributes": True, "str_strip_whitespace": True}


class BookingCreate(BaseModel):
    service: ServiceSnapshot
    total_amount: float = Field(ge=0)
    currency: str = "INR"
    address_id: Optional[str] = None
    delivery_address: DeliveryAddress

    booking_date: date
    time_slot: str = Field(description='Slot label, e.g. "09:00 AM"')

    payment_method: Optional[str] = None
    promo_code: Optional[str] = None
    discount_amount: float = Field(0, ge=0)
    tip_amount: float = Field(0, ge=0)
    customer_notes: Optional[str] = None

    model_config = {"from_attributes": True}


class SlotSelection(BaseModel):
    date: date
    time: str = Field(min_length=1, description='Slot label, e.g. "09:00 AM"')


class BatchItem(BaseModel):
    service: ServiceSnapshot
    slot: SlotSelection


class BatchBookingCreate(BaseModel):
    """One checkout: each item carries its own service and slot."""
    items: list[BatchItem] = Field(min_length=1)
    delivery_address: DeliveryAddress
    address_id: Optional[str] = None
    payment_method: Optional[str] = None
    promo_code: Optional[str] = None
    discount_amount: float = Field(0, ge=0)
    tip_amount: float = Field(0, ge=0)
    customer_notes: Optional[str] = None
    currency: str = "INR"

    model_config = {"from_attributes": True}


class CheckoutCreate(BatchBookingCreate):
    payment_method: Literal["cod", "online"] = "cod"


class VerifyPaymentRequest(BaseModel):
    batch_id: str
    razorpay_order_id: str
    razorpay_payment_id: str
    razorpay_signature: str


class BookingRead(BaseModel):
    id: str
    batch_id: Optional[str] = None
    user_id: str

    service: ServiceSnapshot
    total_amount: float
    currency: str
    address_id: Optional[str] = None
    delivery_address: DeliveryAddress

    booking_date: date
    time_slot: str

    status: str
    provider_id: Optional[str] = None
    assigned_at: Optional[datetime] = None
    started_at: Optional[datetime] = None

    payment_status: str
    payment_method: Optional[str] = None
    payment_id: Optional[str] = None
    payment_order_id: Optional[str] = None
    promo_code: Optional[str] = None
    discount_amount: float
    tip_amount: float

    refund_amount: float = 0
    refund_status: str = "none"

    created_at: datetime
    updated_at: datetime
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None

    customer_notes: Optional[str] = None
    provider_notes: Optional[str] = None
    cancellation_reason: Optional[str] = None

    model_config = {"from_attributes": True}


class CustomerBookingRead(BookingRead):
    """The customer's own view: includes the OTP they hand to the provider."""
    service_otp: Optional[str] = None


class BatchRead(BaseModel):
    batch_id: str
    bookings_count: int
    bookings: list[CustomerBookingRead]


class PaymentOrderRead(BaseModel):
    order_id: str
    amount: float
    currency: str
    key_id: str


class CheckoutRead(BatchRead):
    payment: Optional[PaymentOrderRead] = None


class BatchSummaryBooking(BaseModel):
    id: str
    status: str
    payment_status: str
    time_slot: str
    booking_date: date


class BatchSummary(BaseModel):
    batch_id: str
    bookings_count: int
    total_amount: float
    created_at: datetime
    bookings: list[BatchSummaryBooking]


class CancelRequest(BaseModel):
    cancellation_reason: Optional[str] = None


class CancelBatchRead(BaseModel):
    cancelled_count: int
    bookings: list[CustomerBookingRead]


class RescheduleRequest(BaseModel):
    booking_date: date
    time_slot: str = Field(min_length=1)


class AddressUpdate(BaseModel):
    delivery_address: DeliveryAddress


class StatusUpdate(BaseModel):
    status: str
    reason: Optional[str] = None
    notes: Optional[str] = None
    otp: Optional[str] = Field(None, description="Service OTP, required to start the job")

    @field_validator("status")
    @classmethod
    def normalize_status(cls, v: str) -> str:
        """Accept "in-progress" as an alias of "in_progress"."""
        return v.strip().lower().replace("-", "_")


class OtpVerifyRequest(BaseModel):
    otp: str = Field(min_length=4, max_length=8)


class PaymentStatusUpdate(BaseModel):
    payment_status: PaymentStatus


class AssignProviderRequest(BaseModel):
    provider_id: str = Field(min_length=1)
