"""
Database Schemas for the DressHub storefront

Each collection model maps to a MongoDB collection named after the class in
lowercase (e.g., Product -> "product", OrderItem -> "order_item"). Request
bodies follow the collection models; they forbid unknown fields so a typo in
an admin payload is rejected instead of silently written.
"""
from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

OrderStatus = Literal[
    "pending", "confirmed", "processing", "shipped",
    "out_for_delivery", "delivered", "cancelled", "returned",
]
PaymentStatus = Literal["pending", "completed", "failed", "refunded"]
DiscountType = Literal["percentage", "fixed"]


def discount_percent(price: float, mrp: float) -> int:
    if not mrp:
        return 0
    return round((mrp - price) / mrp * 100)


# ---------------------- Collections ----------------------

class Product(BaseModel):
    id: Optional[str] = Field(None, exclude=True)
    name: str
    description: Optional[str] = None
    price: float = Field(..., ge=0, description="Current sale price")
    mrp: float = Field(..., ge=0, description="List price")
    discount: int = 0
    category: str
    images: List[str] = []
    sizes: List[str] = []
    colors: List[str] = []
    stock: int = 0
    is_active: bool = True
    seller_id: Optional[str] = None


class Address(BaseModel):
    user_id: str
    name: str
    phone: str
    street: str
    city: str
    state: str
    pincode: str
    is_default: bool = False


class Coupon(BaseModel):
    code: str
    description: Optional[str] = None
    discount_type: DiscountType
    discount_value: float = Field(..., gt=0)
    min_order_amount: float = Field(0, ge=0)
    max_discount_amount: Optional[float] = Field(None, gt=0)
    valid_from: datetime
    valid_until: datetime
    usage_limit: Optional[int] = Field(None, ge=1)
    usage_count: int = 0
    is_active: bool = True


class CouponUsage(BaseModel):
    coupon_id: str
    user_id: str
    order_id: str
    discount_amount: float


class Deal(BaseModel):
    product_id: str
    discount_percentage: float = Field(..., gt=0, le=100)
    valid_from: datetime
    valid_until: datetime
    is_active: bool = True
    sort_order: int = 0


class CartLine(BaseModel):
    """A product snapshot plus the shopper's selection."""
    product_id: str
    name: str
    price: float
    mrp: float
    image: Optional[str] = None
    category: Optional[str] = None
    seller_id: Optional[str] = None
    size: Optional[str] = None
    color: Optional[str] = None
    quantity: int = Field(1, ge=1)

    @property
    def key(self) -> str:
        return line_key(self.product_id, self.size, self.color)


def line_key(product_id: str, size: Optional[str], color: Optional[str]) -> str:
    return f"{product_id}|{size or ''}|{color or ''}"


class Order(BaseModel):
    user_id: str
    address_id: str
    address: Address
    subtotal: float
    discount_amount: float = Field(0, ge=0)
    total_amount: float
    coupon_id: Optional[str] = None
    coupon_code: Optional[str] = None
    status: OrderStatus = "pending"
    payment_status: PaymentStatus = "pending"
    payment_id: Optional[str] = None
    gateway_order_id: Optional[str] = None
    payment_failure_reason: Optional[str] = None
    tracking_number: Optional[str] = None
    expected_delivery: Optional[str] = None


class OrderItem(BaseModel):
    order_id: str
    product_id: str
    seller_id: Optional[str] = None
    name: str
    image: Optional[str] = None
    quantity: int = Field(..., ge=1)
    price: float
    mrp: float
    selected_size: Optional[str] = None
    selected_color: Optional[str] = None


class OrderTracking(BaseModel):
    order_id: str
    status: str
    message: str
    location: Optional[str] = None


class Review(BaseModel):
    product_id: str
    user_id: str
    order_id: Optional[str] = None
    rating: int = Field(..., ge=1, le=5)
    comment: Optional[str] = None
    images: List[str] = []
    is_verified: bool = False


class Banner(BaseModel):
    title: str
    subtitle: Optional[str] = None
    image_url: str
    button_text: str = "Shop Now"
    link_url: Optional[str] = None
    is_active: bool = True
    sort_order: int = 0


class Seller(BaseModel):
    username: str
    shop_name: str
    email: str
    phone: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    pincode: Optional[str] = None
    is_verified: bool = False
    is_active: bool = True
    profile_completed: bool = False
    verification_requested_at: Optional[datetime] = None
    verified_at: Optional[datetime] = None
    verified_by: Optional[str] = None


class Notification(BaseModel):
    """Back-office inbox entry; ``seller_id`` None means the admin inbox."""
    order_id: str
    seller_id: Optional[str] = None
    type: Literal["new_order", "status_update"]
    message: str
    is_read: bool = False


# ---------------------- Results ----------------------

class CouponApplication(BaseModel):
    coupon_id: str
    code: str
    discount_amount: float
    message: str


class SalePriceView(BaseModel):
    deal_id: Optional[str] = None
    product_id: str
    name: str
    image: Optional[str] = None
    price: float
    sale_price: int
    original_price: float
    discount_percentage: float
    savings: float
    valid_until: datetime
    seconds_remaining: int
    is_active: bool


class PaymentSession(BaseModel):
    order_id: str
    gateway: Literal["razorpay", "test"]
    amount: int = Field(..., description="Amount in minor currency units")
    currency: str
    key_id: Optional[str] = None
    gateway_order_id: Optional[str] = None
    name: Optional[str] = None
    description: Optional[str] = None
    notes: dict = {}
    test_mode: bool = False
    transaction_id: Optional[str] = None


class PaymentOutcome(BaseModel):
    order_id: str
    status: Literal["success", "failure", "cancelled"]
    transaction_id: Optional[str] = None
    reason: Optional[str] = None


# ---------------------- Request bodies ----------------------

class StrictBody(BaseModel):
    model_config = ConfigDict(extra="forbid")


class ProductBody(StrictBody):
    name: str = Field(..., min_length=1)
    description: Optional[str] = None
    price: float = Field(..., ge=0)
    mrp: float = Field(..., gt=0)
    category: str
    images: List[str] = Field([], max_length=5)
    sizes: List[str] = []
    colors: List[str] = []
    stock: int = Field(0, ge=0)
    is_active: bool = True
    seller_id: Optional[str] = None

    @model_validator(mode="after")
    def check_price(self):
        if self.price > self.mrp:
            raise ValueError("price cannot exceed mrp")
        return self


class ProductUpdate(StrictBody):
    name: Optional[str] = None
    description: Optional[str] = None
    price: Optional[float] = Field(None, ge=0)
    mrp: Optional[float] = Field(None, gt=0)
    category: Optional[str] = None
    images: Optional[List[str]] = Field(None, max_length=5)
    sizes: Optional[List[str]] = None
    colors: Optional[List[str]] = None
    stock: Optional[int] = Field(None, ge=0)
    is_active: Optional[bool] = None


def check_phone(v: str) -> str:
    if len(v) != 10 or not v.isdigit():
        raise ValueError("Phone number must be 10 digits")
    return v


def check_pincode(v: str) -> str:
    if len(v) != 6 or not v.isdigit():
        raise ValueError("Pincode must be 6 digits")
    return v


def check_email(v: str) -> str:
    v = v.strip().lower()
    if "@" not in v:
        raise ValueError("Invalid email address")
    return v


class AddressBody(StrictBody):
    name: str
    phone: str
    street: str
    city: str
    state: str
    pincode: str

    @field_validator("name", "phone", "street", "city", "state", "pincode")
    @classmethod
    def required(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("is required")
        return v

    @field_validator("phone")
    @classmethod
    def ten_digit_phone(cls, v: str) -> str:
        return check_phone(v)

    @field_validator("pincode")
    @classmethod
    def six_digit_pincode(cls, v: str) -> str:
        return check_pincode(v)


class CouponBody(StrictBody):
    code: str = Field(..., min_length=1)
    description: Optional[str] = None
    discount_type: DiscountType
    discount_value: float = Field(..., gt=0)
    min_order_amount: float = Field(0, ge=0)
    max_discount_amount: Optional[float] = Field(None, gt=0)
    valid_from: datetime
    valid_until: datetime
    usage_limit: Optional[int] = Field(None, ge=1)
    is_active: bool = True

    @field_validator("code")
    @classmethod
    def upper_code(cls, v: str) -> str:
        return v.strip().upper()

    @model_validator(mode="after")
    def check_rules(self):
        if self.valid_until <= self.valid_from:
            raise ValueError("valid_until must be after valid_from")
        if self.discount_type == "percentage" and self.discount_value > 100:
            raise ValueError("percentage discount cannot exceed 100")
        return self


class CouponUpdate(StrictBody):
    description: Optional[str] = None
    discount_value: Optional[float] = Field(None, gt=0)
    min_order_amount: Optional[float] = Field(None, ge=0)
    max_discount_amount: Optional[float] = Field(None, gt=0)
    valid_from: Optional[datetime] = None
    valid_until: Optional[datetime] = None
    usage_limit: Optional[int] = Field(None, ge=1)
    is_active: Optional[bool] = None


class CouponApplyBody(StrictBody):
    code: str
    order_amount: float = Field(..., ge=0)


class DealBody(StrictBody):
    product_id: str
    discount_percentage: float = Field(..., gt=0, le=100)
    valid_from: Optional[datetime] = None
    valid_until: datetime
    is_active: bool = True
    sort_order: int = 0


class DealUpdate(StrictBody):
    discount_percentage: Optional[float] = Field(None, gt=0, le=100)
    valid_from: Optional[datetime] = None
    valid_until: Optional[datetime] = None
    is_active: Optional[bool] = None
    sort_order: Optional[int] = None


class CartAddBody(StrictBody):
    product_id: str
    size: Optional[str] = None
    color: Optional[str] = None
    quantity: int = Field(1, ge=1)


class CartQuantityBody(StrictBody):
    key: str
    quantity: int


class CartKeyBody(StrictBody):
    key: str


class CheckoutBody(StrictBody):
    address_id: str
    coupon_code: Optional[str] = None
    expected_subtotal: Optional[float] = None
    expected_discount: Optional[float] = None
    expected_total: Optional[float] = None


class OrderStatusBody(StrictBody):
    status: OrderStatus
    tracking_number: Optional[str] = None
    location: Optional[str] = None


class PaymentVerifyBody(StrictBody):
    order_id: str
    payment_id: str
    signature: Optional[str] = None


class PaymentFailureBody(StrictBody):
    order_id: str
    reason: str = "Payment failed"
    payment_id: Optional[str] = None


class PaymentOrderBody(StrictBody):
    order_id: str


class ReviewBody(StrictBody):
    product_id: str
    rating: int = Field(..., ge=1, le=5)
    comment: Optional[str] = None
    order_id: Optional[str] = None
    images: List[str] = Field([], max_length=4)


class BannerBody(StrictBody):
    title: str
    subtitle: Optional[str] = None
    image_url: str
    button_text: str = "Shop Now"
    link_url: Optional[str] = None
    is_active: bool = True
    sort_order: int = 0


class SellerBody(StrictBody):
    username: str = Field(..., min_length=3)
    shop_name: str = Field(..., min_length=1)
    email: str

    @field_validator("email")
    @classmethod
    def plain_email(cls, v: str) -> str:
        return check_email(v)


class SellerProfileBody(StrictBody):
    shop_name: str = Field(..., min_length=1)
    email: str
    phone: str
    address: str = Field(..., min_length=1)
    city: str = Field(..., min_length=1)
    state: str = Field(..., min_length=1)
    pincode: str

    @field_validator("email")
    @classmethod
    def plain_email(cls, v: str) -> str:
        return check_email(v)

    @field_validator("phone")
    @classmethod
    def ten_digit_phone(cls, v: str) -> str:
        return check_phone(v)

    @field_validator("pincode")
    @classmethod
    def six_digit_pincode(cls, v: str) -> str:
        return check_pincode(v)


class SellerVerifyBody(StrictBody):
    admin_id: Optional[str] = None


class SellerStatusBody(StrictBody):
    is_active: bool
