"""
Database Schemas for the Tourism Marketplace

MongoDB collections are defined below using Pydantic models. Each class name is
converted to lowercase for the collection name (Product -> "product").

We will use these collections:
- tourist, seller, tourguide, admin: accounts, one collection per role
- product: items listed by sellers, with reviews and a derived rating
- purchase: a tourist buying a product
- promocode: discount codes redeemed at purchase time
- itinerary: guided itineraries published by tour guides
- touristitinerary: personal itineraries kept by tourists
- itinerarybooking: a tourist booking tickets on a guide itinerary
"""

from datetime import datetime, timezone
from typing import List, Literal, Optional

from pydantic import BaseModel, EmailStr, Field, field_validator, model_validator

Role = Literal["tourist", "seller", "tour-guide", "admin"]
PaymentMethod = Literal["credit_card", "debit_card", "wallet", "cash_on_delivery"]
BookingPaymentType = Literal["credit_card", "debit_card", "wallet"]


def as_utc(value: datetime) -> datetime:
    # Mongo hands back naive datetimes that are already UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


# ---------------------------------------------------------------------------
# Accounts
# ---------------------------------------------------------------------------
class Account(BaseModel):
    email: EmailStr
    username: str = Field(..., min_length=3, max_length=30)
    password_hash: str = Field(..., description="BCrypt hash of password")


class Tourist(Account):
    nationality: Optional[str] = None
    mobile: Optional[str] = None


class Seller(Account):
    name: Optional[str] = None
    description: Optional[str] = None


class TourGuide(Account):
    nationality: Optional[str] = Field(None, description="Reference to nationality")
    mobile: Optional[str] = None
    years_of_experience: int = Field(0, ge=0)
    previous_works: Optional[str] = None


class Admin(Account):
    pass


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------
class Review(BaseModel):
    rating: float = Field(..., ge=0, le=5)
    text: Optional[str] = None
    tourist: Optional[str] = Field(None, description="Reference to tourist _id")


class Product(BaseModel):
    name: str = Field(..., min_length=1)
    price: float = Field(..., ge=0)
    description: Optional[str] = None
    picture: Optional[str] = None
    seller: str = Field(..., description="Reference to seller _id (owner)")
    rating: float = Field(0, ge=0, le=5)
    reviews: List[Review] = []
    quantity: int = Field(0, ge=0)


# ---------------------------------------------------------------------------
# Purchases and promotions
# ---------------------------------------------------------------------------
class Purchase(BaseModel):
    tourist: str = Field(..., description="Reference to tourist _id")
    product: str = Field(..., description="Reference to product _id")
    quantity: int = Field(..., ge=1)
    total_price: float = Field(..., ge=0)
    payment_method: PaymentMethod
    promo_code: Optional[str] = None
    purchase_date: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class DateRange(BaseModel):
    start: datetime
    end: datetime

    @model_validator(mode="after")
    def end_after_start(self):
        if as_utc(self.end) <= as_utc(self.start):
            raise ValueError("End date must be after the start date")
        return self

    def contains(self, moment: datetime) -> bool:
        return as_utc(self.start) <= as_utc(moment) <= as_utc(self.end)


class PromoCode(BaseModel):
    code: str = Field(..., min_length=3)
    is_used: bool = False
    percent_off: float = Field(..., ge=0, le=100)
    date_range: DateRange

    @field_validator("code", mode="before")
    @classmethod
    def normalize_code(cls, v):
        return v.strip().upper() if isinstance(v, str) else v


# ---------------------------------------------------------------------------
# Itineraries
# ---------------------------------------------------------------------------
class TimeSlot(BaseModel):
    start_time: str
    end_time: str


class AvailableDate(BaseModel):
    date: datetime
    times: List[TimeSlot] = []


class Itinerary(BaseModel):
    tour_guide: str = Field(..., description="Reference to tourguide _id (owner)")
    title: str = Field(..., min_length=1)
    description: str
    activities: List[str] = []
    language: str
    price: float = Field(..., ge=0)
    available_dates: List[AvailableDate] = []
    accessibility: bool
    pick_up_location: str
    drop_off_location: str
    is_booked: bool = False


class ItineraryBooking(BaseModel):
    itinerary: str = Field(..., description="Reference to itinerary _id")
    tourist: str = Field(..., description="Reference to tourist _id (owner)")
    payment_type: BookingPaymentType
    payment_amount: float = Field(..., ge=0)
    number_of_tickets: int = Field(1, ge=1)


class TouristItinerary(BaseModel):
    tourist: str = Field(..., description="Reference to tourist _id (owner)")
    title: str = Field(..., min_length=1)
    description: Optional[str] = None
    activities: List[str] = []
    locations: List[str] = []
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    tags: List[str] = []

    @model_validator(mode="after")
    def dates_in_order(self):
        if self.start_date and self.end_date and as_utc(self.end_date) < as_utc(self.start_date):
            raise ValueError("End date must not be before the start date")
        return self
