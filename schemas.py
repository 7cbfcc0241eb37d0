"""
Request / Response schemas（pydantic）

Request 驗證在進入 Session Engine 之前完成（不合法的請求直接 422）
"""
from datetime import date, datetime
from decimal import Decimal
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, field_validator


# ============ Room ============

class RoomCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=64)
    status: Optional[str] = None


class RoomUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=64)
    status: Optional[str] = None


class RoomResponse(BaseModel):
    id: str
    name: str
    status: str
    updated_at: datetime


# ============ Session ============

class OpenSessionRequest(BaseModel):
    room_id: str = Field(..., min_length=1)
    customer_name: Optional[str] = Field(None, max_length=64)


class AddItemRequest(BaseModel):
    service_name: str = Field(..., min_length=1, max_length=64)
    qty: float = Field(..., gt=0)
    unit_price: Decimal = Field(..., ge=0, max_digits=10, decimal_places=2)

    @field_validator("service_name")
    @classmethod
    def service_name_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("service_name is required")
        return v.strip()


class AddPaymentRequest(BaseModel):
    method: str = Field(..., min_length=1, max_length=8)  # "cash" | "card" | "mix"
    amount: Decimal = Field(..., gt=0, max_digits=10, decimal_places=2)

    @field_validator("method")
    @classmethod
    def method_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("method is required")
        return v


class SessionResponse(BaseModel):
    id: str
    room_id: str
    customer_name: Optional[str] = None
    start_at: datetime
    end_at: Optional[datetime] = None
    status: str


class SessionItemResponse(BaseModel):
    id: str
    session_id: str
    service_name: str
    qty: float
    unit_price: Decimal
    total: Decimal
    added_at: datetime


class PaymentResponse(BaseModel):
    id: str
    session_id: str
    method: str
    amount: Decimal
    paid_at: datetime


class TotalsResponse(BaseModel):
    items_total: Decimal
    payments_total: Decimal
    balance: Decimal


class SessionDetailResponse(BaseModel):
    session: SessionResponse
    room_name: Optional[str] = None
    items: List[SessionItemResponse]
    payments: List[PaymentResponse]
    totals: TotalsResponse


class CloseSessionResponse(BaseModel):
    session: SessionResponse
    totals: TotalsResponse
    receipt_delivered: bool
    receipt_error: Optional[str] = None


class ReceiptResponse(BaseModel):
    session_id: str
    delivered: bool
    error: Optional[str] = None


# ============ Reports ============

class DailyRevenueResponse(BaseModel):
    date: date
    items_total: Decimal
    payments_total: Decimal
    balance: Decimal
    payments_by_method: Dict[str, Decimal]


class RoomUsageRowResponse(BaseModel):
    room_id: str
    room_name: str
    sessions_count: int
    total_minutes: float


class RoomUsageResponse(BaseModel):
    from_utc: datetime
    to_utc: datetime
    rows: List[RoomUsageRowResponse]
