import base64
import logging
import threading
from typing import List, Optional, Tuple

from bson import ObjectId
from pydantic import TypeAdapter, ValidationError

from database import StorageError
from schemas import AdminSession, CartLine, Product, ProductCreate, ProductUpdate

logger = logging.getLogger(__name__)

STORAGE_KEYS = {
    "PRODUCTS": "loja_produtos_v1",
    "CART": "loja_carrinho_v1",
    "ADMIN": "loja_admin_v1",
}

ALL_CATEGORIES = "ALL"
MIN_PASSWORD_LENGTH = 4

_products_adapter = TypeAdapter(List[Product])
_cart_adapter = TypeAdapter(List[CartLine])


class StoreError(Exception):
    """Validation rejection meant to be shown to the user."""

    message = "Operation rejected"

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.message)


class InsufficientStock(StoreError):
    message = "Insufficient stock"


class InvalidCredentials(StoreError):
    message = "Incorrect password"


class PasswordTooShort(StoreError):
    message = f"Password must be at least {MIN_PASSWORD_LENGTH} characters"


def new_id() -> str:
    return str(ObjectId())


def to_data_uri(data: bytes, content_type: Optional[str] = None) -> str:
    """Encode an uploaded file so it can be stored in Product.image."""
    encoded = base64.b64encode(data).decode("ascii")
    return f"data:{content_type or 'application/octet-stream'};base64,{encoded}"


def seed_products() -> List[Product]:
    seed = [
        {
            "title": "T-shirt básica unissex",
            "description": "Malha leve, disponível em várias cores. Corte regular.",
            "price": 19.99,
            "category": "Adulto - Unissex",
            "sizes": ["S", "M", "L", "XL"],
            "stock": 20,
            "image": "",
        },
        {
            "title": "Vestido floral (feminino)",
            "description": "Vestido midi com estampado floral. 100% algodão.",
            "price": 49.9,
            "category": "Feminino",
            "sizes": ["S", "M", "L"],
            "stock": 10,
            "image": "",
        },
        {
            "title": "Casaco infantil",
            "description": "Casaco quentinho para crianças. Forro macio.",
            "price": 34.5,
            "category": "Infantil",
            "sizes": ["2", "3", "4", "5"],
            "stock": 15,
            "image": "",
        },
    ]
    return [Product(id=new_id(), **p) for p in seed]


class CatalogStore:
    """
    Products, cart and admin session of one shop client.

    Every mutation writes a full snapshot of the aggregate it touched. The
    in-memory state is authoritative: a rejected write is logged and the next
    load simply won't see the change.

    Routes run in a threadpool, so each mutation and its snapshot write hold
    the store lock.
    """

    def __init__(self, storage, reserve_stock: bool = False):
        self.storage = storage
        self._lock = threading.RLock()
        # Count quantities already in the cart against stock
        self.reserve_stock = reserve_stock
        self.products: List[Product] = self._load(
            STORAGE_KEYS["PRODUCTS"], _products_adapter.validate_json, seed_products, self._save_products
        )
        self.cart: List[CartLine] = self._load(
            STORAGE_KEYS["CART"], _cart_adapter.validate_json, list, None
        )
        self.admin: AdminSession = self._load(
            STORAGE_KEYS["ADMIN"], AdminSession.model_validate_json, AdminSession, self._save_admin
        )

    # ---------------------- Persistence ----------------------

    def _load(self, key, parse, fallback, save_fallback):
        try:
            raw = self.storage.get_item(key)
        except StorageError as e:
            logger.warning("Cannot read snapshot %s, using defaults: %s", key, e)
            return fallback()
        if raw is None:
            value = fallback()
            if save_fallback is not None:
                logger.info("No snapshot under %s, seeding defaults", key)
                save_fallback(value)
            return value
        try:
            return parse(raw)
        except ValidationError as e:
            logger.warning("Malformed snapshot %s, using defaults: %s", key, e.errors()[:3])
            return fallback()

    def _write(self, key: str, value: str) -> None:
        try:
            self.storage.set_item(key, value)
            logger.debug("Saved snapshot %s (%d bytes)", key, len(value))
        except StorageError as e:
            logger.warning("Snapshot %s not saved: %s", key, e)

    def _save_products(self, products: Optional[List[Product]] = None) -> None:
        data = _products_adapter.dump_json(self.products if products is None else products)
        self._write(STORAGE_KEYS["PRODUCTS"], data.decode("utf-8"))

    def _save_cart(self) -> None:
        data = _cart_adapter.dump_json(self.cart, by_alias=True)
        self._write(STORAGE_KEYS["CART"], data.decode("utf-8"))

    def _save_admin(self, admin: Optional[AdminSession] = None) -> None:
        self._write(STORAGE_KEYS["ADMIN"], (admin or self.admin).model_dump_json())

    # ---------------------- Queries ----------------------

    def get_product(self, product_id: str) -> Optional[Product]:
        return next((p for p in self.products if p.id == product_id), None)

    def get_cart_line(self, line_id: str) -> Optional[CartLine]:
        return next((i for i in self.cart if i.id == line_id), None)

    def filtered_products(self, query: str = "", category: str = ALL_CATEGORIES) -> List[Product]:
        q = (query or "").lower()
        return [
            p for p in self.products
            if (category == ALL_CATEGORIES or p.category == category)
            and (q in p.title.lower() or q in p.description.lower())
        ]

    def categories(self) -> List[str]:
        seen = [ALL_CATEGORIES]
        for p in self.products:
            if p.category not in seen:
                seen.append(p.category)
        return seen

    def cart_lines(self) -> List[Tuple[CartLine, Product]]:
        """Cart lines with their product; lines whose product is gone are skipped."""
        out = []
        with self._lock:
            for line in self.cart:
                product = self.get_product(line.product_id)
                if product is not None:
                    out.append((line, product))
        return out

    def cart_total(self) -> float:
        return sum(product.price * line.qty for line, product in self.cart_lines())

    def cart_count(self) -> int:
        with self._lock:
            return sum(line.qty for line in self.cart)

    # ---------------------- Cart ----------------------

    def add_to_cart(self, product: Product, size: str, qty: int = 1) -> CartLine:
        qty = max(1, int(qty))
        with self._lock:
            requested = qty
            if self.reserve_stock:
                requested += sum(i.qty for i in self.cart if i.product_id == product.id)
            if requested > product.stock:
                raise InsufficientStock()

            line = next((i for i in self.cart if i.product_id == product.id and i.size == size), None)
            if line is not None:
                line.qty += qty
            else:
                line = CartLine(id=new_id(), product_id=product.id, size=size, qty=qty)
                self.cart.append(line)
            self._save_cart()
            return line

    def update_cart_item(self, line_id: str, qty: int) -> Optional[CartLine]:
        with self._lock:
            line = self.get_cart_line(line_id)
            if line is None:
                return None
            line.qty = max(1, int(qty))
            self._save_cart()
            return line

    def remove_cart_item(self, line_id: str) -> bool:
        with self._lock:
            kept = [i for i in self.cart if i.id != line_id]
            if len(kept) == len(self.cart):
                return False
            self.cart = kept
            self._save_cart()
            return True

    def clear_cart(self) -> None:
        with self._lock:
            self.cart = []
            self._save_cart()

    # ---------------------- Admin: catalog ----------------------

    def add_product(self, data: ProductCreate) -> Product:
        product = Product(id=new_id(), **data.model_dump())
        with self._lock:
            self.products = [product] + self.products
            self._save_products()
        return product

    def update_product(self, product_id: str, patch: ProductUpdate) -> Optional[Product]:
        changes = patch.model_dump(exclude_unset=True, exclude_none=True)
        with self._lock:
            for idx, p in enumerate(self.products):
                if p.id == product_id:
                    updated = p.model_copy(update=changes)
                    self.products[idx] = updated
                    self._save_products()
                    return updated
        return None

    def delete_product(self, product_id: str) -> bool:
        with self._lock:
            kept = [p for p in self.products if p.id != product_id]
            if len(kept) == len(self.products):
                return False
            self.products = kept
            self._save_products()
            return True

    # ---------------------- Admin: session ----------------------

    def login(self, candidate: str) -> None:
        with self._lock:
            if candidate != self.admin.password:
                raise InvalidCredentials()
            self.admin = self.admin.model_copy(update={"logged": True})
            self._save_admin()
        logger.info("Admin logged in")

    def logout(self) -> None:
        with self._lock:
            self.admin = self.admin.model_copy(update={"logged": False})
            self._save_admin()
        logger.info("Admin logged out")

    def change_password(self, old: str, new: str) -> None:
        with self._lock:
            if old != self.admin.password:
                raise InvalidCredentials("Current password is incorrect")
            if len(new) < MIN_PASSWORD_LENGTH:
                raise PasswordTooShort()
            self.admin = self.admin.model_copy(update={"password": new})
            self._save_admin()
