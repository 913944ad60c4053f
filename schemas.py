"""
Snapshot Schemas for LojaSimples

Each Pydantic model below is persisted as part of a JSON snapshot in the
key-value storage (see database.py). Products and cart lines are stored as
arrays under their own key; the admin session is a single object.
"""
from pydantic import BaseModel, ConfigDict, Field
from typing import Optional, List


class ProductBase(BaseModel):
    title: str = Field(..., description="Product title")
    description: str = Field("", description="Product description")
    price: float = Field(..., ge=0, description="Unit price, currency agnostic")
    category: str = Field("Uncategorized", description="Product category, e.g., 'Feminino', 'Infantil'")
    sizes: List[str] = Field(default_factory=list, description="Available sizes (e.g., S, M, L)")
    stock: int = Field(0, ge=0, description="Units in stock")
    image: str = Field("", description="Image as a data URI, empty when there is none")


class ProductCreate(ProductBase):
    pass


class Product(ProductBase):
    """
    Catalog entry
    Snapshot key: "loja_produtos_v1"
    """
    id: str = Field(..., description="Product id, assigned on creation")


class ProductUpdate(BaseModel):
    """Fields an admin may replace on an existing product. Anything else is rejected."""
    model_config = ConfigDict(extra="forbid")

    title: Optional[str] = None
    description: Optional[str] = None
    price: Optional[float] = Field(None, ge=0)
    category: Optional[str] = None
    sizes: Optional[List[str]] = None
    stock: Optional[int] = Field(None, ge=0)
    image: Optional[str] = None


class CartLine(BaseModel):
    """
    Cart entry
    Snapshot key: "loja_carrinho_v1"
    """
    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(..., description="Line id")
    product_id: str = Field(..., alias="productId", description="Referenced Product id")
    size: str = Field("", description="Selected size")
    qty: int = Field(1, ge=1, description="Quantity in cart")


class AdminSession(BaseModel):
    """
    Admin state
    Snapshot key: "loja_admin_v1"
    """
    logged: bool = Field(False, description="Whether the admin is logged in")
    password: str = Field("admin123", description="Admin password (plaintext)")


class CartSummaryLine(BaseModel):
    id: str
    product_id: str
    title: str
    size: str
    quantity: int
    price: float
    image: str = ""
    subtotal: float


class CartSummary(BaseModel):
    items: List[CartSummaryLine] = Field(default_factory=list)
    total: float = 0.0
    count: int = 0
