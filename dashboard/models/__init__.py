"""
Pydantic models for dashboard API requests.
"""
from pydantic import BaseModel


class ItemsUpdate(BaseModel):
    items: list[dict]


class OrdersUpdate(BaseModel):
    orders: list[dict]


class ItemEdit(BaseModel):
    patch: dict   # { "field": value, … }  uid / source_line_key / lock_expires_at are ignored


class MoveRequest(BaseModel):
    bubble: str


class InvoiceEntry(BaseModel):
    invoice: str


class PathUpdate(BaseModel):
    path: str


class SettingsUpdate(BaseModel):
    values: dict
