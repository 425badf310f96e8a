from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import List, Optional
from pydantic import BaseModel, EmailStr, Field, computed_field

# ---- Accounts ----

class UserRecord(BaseModel):
    """Stored user row. Carries the password hash; never returned to clients."""
    id: int
    username: str
    email: str
    password_hash: str
    is_admin: bool = False
    created_at: Optional[datetime] = None

class UserPublic(BaseModel):
    id: int
    username: str
    email: str
    is_admin: bool = False

class SignupRequest(BaseModel):
    username: str = Field(..., min_length=3, max_length=32)
    email: EmailStr
    password: str = Field(..., min_length=6, max_length=72)

class LoginRequest(BaseModel):
    username: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)

class TokenResponse(BaseModel):
    token: str
    user: UserPublic

class TokenClaims(BaseModel):
    """Identity carried by a validated session token."""
    user_id: int
    username: str
    is_admin: bool = False
    issued_at: datetime
    expires_at: datetime

# ---- Catalog ----

class Product(BaseModel):
    id: int
    title: str
    description: Optional[str] = None
    price: Decimal
    image: Optional[str] = None
    created_at: Optional[datetime] = None

class ProductCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    price: Decimal = Field(..., ge=0, max_digits=12, decimal_places=2, description="Price in major currency units")
    image: Optional[str] = Field(None, description="Image URL")

class ProductUpdate(BaseModel):
    """Partial update; omitted fields keep their current value."""
    title: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = None
    price: Optional[Decimal] = Field(None, ge=0, max_digits=12, decimal_places=2)
    image: Optional[str] = None

# ---- Cart ----

class CartItem(BaseModel):
    """A cart line joined with live catalog data."""
    product_id: int
    title: str
    price: Decimal
    quantity: int = Field(..., ge=1)
    image: Optional[str] = None

    @computed_field
    @property
    def subtotal(self) -> Decimal:
        return self.price * self.quantity

class CartView(BaseModel):
    items: List[CartItem] = []

    @computed_field
    @property
    def total(self) -> Decimal:
        return sum((item.subtotal for item in self.items), Decimal("0.00"))

class AddToCartRequest(BaseModel):
    product_id: int
    quantity: int = Field(1, ge=1, le=1000)

class SetQuantityRequest(BaseModel):
    # Zero or negative removes the line
    quantity: int = Field(..., le=1000)

# ---- Orders ----

class OrderStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    CANCELLED = "cancelled"

class ContactDetails(BaseModel):
    """Shipping/contact fields captured at checkout."""
    name: str = Field(..., min_length=1, max_length=200)
    email: EmailStr
    phone: str = Field(..., min_length=3, max_length=40)
    address: str = Field(..., min_length=1, max_length=500)
    landmark: Optional[str] = Field(None, max_length=200)

class OrderLine(BaseModel):
    product_id: int  # kept even if the product is later deleted
    title: str
    quantity: int
    price: Decimal  # unit price at time of purchase

class Order(BaseModel):
    id: int
    user_id: int
    username: Optional[str] = None
    name: str
    email: str
    phone: str
    address: str
    landmark: Optional[str] = None
    total: Decimal
    status: OrderStatus = OrderStatus.PENDING
    created_at: datetime
    updated_at: Optional[datetime] = None
    items: List[OrderLine] = []

# ---- Payments ----

class PaymentLineItem(BaseModel):
    name: str
    unit_amount: int  # minor currency units
    quantity: int

class PaymentSession(BaseModel):
    id: str
    url: str

class CheckoutResponse(BaseModel):
    url: str
    session_id: str
    order: Order

class ConfirmationOutcome(str, Enum):
    PAID = "paid"
    ALREADY_PAID = "already_paid"
    FAILED = "failed"
    IGNORED = "ignored"
    UNKNOWN_ORDER = "unknown_order"
