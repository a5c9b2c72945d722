"""
Database Schemas for the Bistro API

Each Pydantic model below corresponds to a MongoDB collection:
User -> "users", MenuItem -> "menu", Review -> "reviews",
CartItem -> "carts", Payment -> "payments". The remaining models are
request bodies or derived (never persisted) views.
"""
from enum import Enum
from typing import Annotated, List, Optional
from email_validator import EmailNotValidError, validate_email
from pydantic import AfterValidator, BaseModel, Field


def _check_email(value: str) -> str:
    # validate only; emails are case-sensitive keys and are stored as given
    try:
        validate_email(value, check_deliverability=False)
    except EmailNotValidError as e:
        raise ValueError(str(e))
    return value


Email = Annotated[str, AfterValidator(_check_email)]


class Role(str, Enum):
    STANDARD = "standard"
    ADMIN = "admin"

    @classmethod
    def parse(cls, value: Optional[str]) -> "Role":
        # legacy documents carry no role at all
        if value == cls.ADMIN.value:
            return cls.ADMIN
        return cls.STANDARD


class Identity(BaseModel):
    """Claims of a verified bearer token. Lives for a single request."""
    email: str = Field(..., min_length=1)


class User(BaseModel):
    name: Optional[str] = Field(None, description="Display name")
    email: Email = Field(..., description="Unique email address")
    photo: Optional[str] = None
    role: Role = Field(Role.STANDARD, description="Standard user or admin")

    @property
    def is_admin(self) -> bool:
        return self.role is Role.ADMIN


class MenuItem(BaseModel):
    name: str = Field(..., description="Dish name")
    recipe: Optional[str] = None
    image: Optional[str] = None
    category: str = Field(..., description="Category like pizza, salad, drinks")
    price: float = Field(..., ge=0)


class Review(BaseModel):
    name: str
    details: str
    rating: float = Field(..., ge=0, le=5)


class CartItem(BaseModel):
    email: Email = Field(..., description="Owner of the cart")
    menu_item_id: str = Field(..., description="Reference to menu _id")
    name: Optional[str] = None
    image: Optional[str] = None
    price: float = Field(..., ge=0)


class Payment(BaseModel):
    email: Email
    price: float = Field(..., ge=0, description="Amount charged")
    cart_item_ids: List[str] = Field(..., description="Cart _ids being paid for")
    menu_item_ids: List[str] = Field(default_factory=list, description="Menu _ids in the order")
    payment_method: Optional[str] = "card"
    transaction_id: str = Field(..., description="Provider transaction id")
    quantity: Optional[int] = None
    status: Optional[str] = None


class PaymentIntentRequest(BaseModel):
    price: float = Field(..., gt=0)


class TokenRequest(BaseModel):
    email: Email


class OrderStatRow(BaseModel):
    category: str
    count: int = Field(..., ge=0)
    total: float


class AdminStats(BaseModel):
    revenue: float = 0
    users: int = 0
    products: int = 0
    orders: int = 0
