"""
Database Schemas for the Equipment Rental back-office

Each Pydantic model below represents a MongoDB collection. The collection
name is the lowercase of the class name.

- Equipment -> "equipment"
- Customer -> "customer"
- Quotation -> "quotation"
- Booking -> "booking"
- Settings -> "settings" (single document)
- User -> "user"
"""

from datetime import date, datetime
from decimal import Decimal
from typing import List, Literal, Optional

from pydantic import BaseModel, EmailStr, Field, field_validator

from pricing import to_money

EquipmentStatus = Literal["Available", "On Rent", "Under Maintenance"]
QuotationStatus = Literal["Draft", "Sent", "Accepted", "Declined"]
BookingStatus = Literal["Confirmed", "On Rent", "Completed", "Cancelled"]
Role = Literal["admin", "user"]


class User(BaseModel):
    username: str = Field(..., description="Unique login name")
    role: Role = Field("user", description="Access role determining permissions")
    # hashed password is stored in DB only


class Equipment(BaseModel):
    name: str
    category: str
    daily_rate: Decimal = Field(..., ge=0)
    weekly_rate: Decimal = Field(Decimal("0"), ge=0)
    monthly_rate: Decimal = Field(Decimal("0"), ge=0)
    status: EquipmentStatus = "Available"
    description: Optional[str] = None

    @field_validator("daily_rate", "weekly_rate", "monthly_rate")
    @classmethod
    def _to_cents(cls, v: Decimal) -> Decimal:
        return to_money(v)


class Customer(BaseModel):
    name: str
    phone: str
    national_id: str = Field(..., description="National identity card number")
    address: str
    email: Optional[EmailStr] = None
    # informational, maintained by the booking lifecycle
    total_bookings: int = Field(0, ge=0)
    active_bookings: int = Field(0, ge=0)
    last_booking: Optional[datetime] = None


class QuotationItem(BaseModel):
    equipment_id: str
    name: str
    quantity: int = Field(..., ge=1)
    rate: Decimal = Field(..., ge=0, description="Daily rate frozen at quotation time")
    subtotal: Decimal = Field(..., ge=0, description="rate * quantity")


class Quotation(BaseModel):
    quotation_id: str = Field(..., description="QT-<year>-<seq>")
    customer_name: str
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    items: List[QuotationItem]
    total_amount: Decimal = Field(..., ge=0)
    status: QuotationStatus = "Draft"
    created_at: Optional[datetime] = None


class BookingItem(BaseModel):
    equipment_id: str
    name: str
    quantity: int = Field(..., ge=1)


class Booking(BaseModel):
    booking_id: str = Field(..., description="BK-<year>-<seq>")
    quotation_id: Optional[str] = Field(None, description="Source quotation code")
    customer_name: str
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    items: List[BookingItem]
    total_amount: Decimal = Field(..., ge=0)
    security_deposit: Decimal = Field(Decimal("0"), ge=0)
    status: BookingStatus = "Confirmed"
    created_at: Optional[datetime] = None


class Settings(BaseModel):
    company_name: str = ""
    company_address: str = ""
    company_phone: str = ""
    company_email: str = ""
    logo: Optional[str] = None
    default_currency: str = "LKR"
    tax_rate: float = Field(0.0, ge=0)
    quotation_validity_days: int = Field(30, ge=0)
    theme: Literal["light", "dark"] = "light"
    email_notifications: bool = False
    auto_save_drafts: bool = False
    compact_mode: bool = False
