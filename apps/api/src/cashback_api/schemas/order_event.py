"""Subset of the Shopify ``orders/create`` webhook payload used by reward intake."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _coerce_identifier(value: Any) -> Any:
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return str(value)
    if isinstance(value, str):
        return value.strip() or None
    return value


class NoteAttribute(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: str
    value: str | None = None

    @field_validator("value", mode="before")
    @classmethod
    def _stringify(cls, value: Any) -> str | None:
        if value is None:
            return None
        return str(value)


class OrderLineItem(BaseModel):
    model_config = ConfigDict(extra="ignore")

    title: str | None = None
    name: str | None = None
    sku: str | None = None
    product_id: str | None = None

    @field_validator("product_id", mode="before")
    @classmethod
    def _coerce_product_id(cls, value: Any) -> Any:
        return _coerce_identifier(value)

    def searchable_text(self) -> str:
        return " ".join(part for part in (self.title, self.name, self.sku) if part).lower()


class OrderCustomer(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str | None = None
    email: str | None = None
    first_name: str | None = None
    last_name: str | None = None

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, value: Any) -> Any:
        return _coerce_identifier(value)


class OrderCreatedEvent(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    name: str | None = None
    order_number: int | None = None
    email: str | None = None
    contact_email: str | None = None
    customer: OrderCustomer | None = None
    total_price: Decimal | None = None
    currency: str | None = None
    created_at: datetime | None = None
    note_attributes: list[NoteAttribute] = Field(default_factory=list)
    line_items: list[OrderLineItem] = Field(default_factory=list)
    shop_domain: str | None = None

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, value: Any) -> Any:
        return _coerce_identifier(value)

    @field_validator("note_attributes", "line_items", mode="before")
    @classmethod
    def _default_list(cls, value: Any) -> Any:
        return [] if value is None else value

    def attribute(self, name: str) -> str | None:
        for attribute in self.note_attributes:
            if attribute.name == name:
                return attribute.value
        return None

    @property
    def resolved_email(self) -> str | None:
        for candidate in (self.email, self.contact_email, self.customer.email if self.customer else None):
            if candidate and candidate.strip():
                return candidate.strip()
        return None

    @property
    def resolved_name(self) -> str:
        if self.name:
            return self.name
        if self.order_number is not None:
            return f"#{self.order_number}"
        return self.id


__all__ = ["NoteAttribute", "OrderCreatedEvent", "OrderCustomer", "OrderLineItem"]
