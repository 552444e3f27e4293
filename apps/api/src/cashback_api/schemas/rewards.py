"""Response models for reward endpoints."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import List, Literal

from pydantic import BaseModel, ConfigDict, Field


class WebhookAck(BaseModel):
    status: Literal["created", "duplicate", "skipped", "rejected"]
    order_id: str | None = Field(default=None, alias="orderId")
    detail: str | None = None

    model_config = ConfigDict(populate_by_name=True)


class DispatchErrorResponse(BaseModel):
    order_id: str = Field(alias="orderId")
    order_name: str = Field(alias="orderName")
    shop_domain: str = Field(alias="shopDomain")
    error: str

    model_config = ConfigDict(populate_by_name=True)


class DispatchSummaryResponse(BaseModel):
    success: bool = True
    processed: int
    succeeded: int
    failed: int
    errors: List[DispatchErrorResponse]


class RewardStatusResponse(BaseModel):
    order_id: str = Field(alias="orderId")
    order_name: str = Field(alias="orderName")
    shop_domain: str = Field(alias="shopDomain")
    reward_amount: Decimal = Field(alias="rewardAmount")
    status: Literal["scheduled", "sent", "parked"]
    dispatch_at: datetime = Field(alias="dispatchAt")
    sent_at: datetime | None = Field(default=None, alias="sentAt")
    issued_code: str | None = Field(default=None, alias="issuedCode")
    retry_count: int = Field(alias="retryCount")
    last_error: str | None = Field(default=None, alias="lastError")

    model_config = ConfigDict(populate_by_name=True)


__all__ = [
    "DispatchErrorResponse",
    "DispatchSummaryResponse",
    "RewardStatusResponse",
    "WebhookAck",
]
