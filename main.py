import os
from fastapi import FastAPI, HTTPException, Depends, Request, UploadFile, File
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field
from typing import List, Optional

from database import get_storage
from schemas import CartSummary, CartSummaryLine, Product, ProductCreate, ProductUpdate
from store import (
    ALL_CATEGORIES,
    CatalogStore,
    InsufficientStock,
    InvalidCredentials,
    PasswordTooShort,
    to_data_uri,
)


def build_store() -> CatalogStore:
    reserve = os.getenv("RESERVE_STOCK", "").lower() in ("1", "true", "yes")
    return CatalogStore(get_storage(), reserve_stock=reserve)


def create_app(store: Optional[CatalogStore] = None) -> FastAPI:
    app = FastAPI(title="LojaSimples API")
    app.state.store = store

    # Load (and seed) the configured storage on startup, not on import
    if store is None:
        @app.on_event("startup")
        async def load_store():
            app.state.store = build_store()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    register_routes(app)
    return app


def get_store(request: Request) -> CatalogStore:
    return request.app.state.store


def require_admin(store: CatalogStore = Depends(get_store)) -> CatalogStore:
    if not store.admin.logged:
        raise HTTPException(status_code=403, detail="Admin only")
    return store


def get_product_or_404(store: CatalogStore, product_id: str) -> Product:
    product = store.get_product(product_id)
    if product is None:
        raise HTTPException(status_code=404, detail="Product not found")
    return product


def cart_summary(store: CatalogStore) -> CartSummary:
    items = [
        CartSummaryLine(
            id=line.id,
            product_id=product.id,
            title=product.title,
            size=line.size,
            quantity=line.qty,
            price=product.price,
            image=product.image,
            subtotal=round(product.price * line.qty, 2),
        )
        for line, product in store.cart_lines()
    ]
    return CartSummary(items=items, total=round(store.cart_total(), 2), count=store.cart_count())


# ---------------------- Payloads ----------------------

class AddToCartPayload(BaseModel):
    product_id: str
    quantity: int = 1
    size: Optional[str] = None


class QtyPayload(BaseModel):
    line_id: str
    quantity: int = 1


class RemovePayload(BaseModel):
    line_id: str


class LoginPayload(BaseModel):
    password: str


class ChangePasswordPayload(BaseModel):
    old_password: str
    new_password: str


class CheckoutResult(BaseModel):
    status: str = "simulated"
    total: float
    count: int
    message: str = Field("Simulated checkout, integrate a real payment gateway for production")


def register_routes(app: FastAPI) -> None:

    @app.get("/")
    def read_root():
        return {"message": "LojaSimples Backend Running"}

    @app.get("/test")
    def test_storage(store: CatalogStore = Depends(get_store)):
        response = {
            "backend": "✅ Running",
            "storage": type(store.storage).__name__,
            "products": len(store.products),
            "cart_lines": len(store.cart),
            "reserve_stock": store.reserve_stock,
        }
        response["database_url"] = "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set"
        response["database_name"] = "✅ Set" if os.getenv("DATABASE_NAME") else "❌ Not Set"
        return response

    # ---------------------- Products ----------------------

    @app.get("/api/products", response_model=List[Product])
    def list_products(q: str = "", category: str = ALL_CATEGORIES, store: CatalogStore = Depends(get_store)):
        return store.filtered_products(q, category)

    @app.get("/api/products/{product_id}", response_model=Product)
    def get_product(product_id: str, store: CatalogStore = Depends(get_store)):
        return get_product_or_404(store, product_id)

    @app.get("/api/categories", response_model=List[str])
    def list_categories(store: CatalogStore = Depends(get_store)):
        return store.categories()

    # ---------------------- Cart ----------------------

    @app.get("/api/cart", response_model=CartSummary)
    def get_cart(store: CatalogStore = Depends(get_store)):
        return cart_summary(store)

    @app.post("/api/cart:add", response_model=CartSummary)
    def add_to_cart(payload: AddToCartPayload, store: CatalogStore = Depends(get_store)):
        product = get_product_or_404(store, payload.product_id)
        size = payload.size
        if size is None:
            size = product.sizes[0] if product.sizes else ""
        try:
            store.add_to_cart(product, size, payload.quantity)
        except InsufficientStock as e:
            raise HTTPException(status_code=400, detail=str(e))
        return cart_summary(store)

    @app.post("/api/cart:qty", response_model=CartSummary)
    def update_quantity(payload: QtyPayload, store: CatalogStore = Depends(get_store)):
        if store.update_cart_item(payload.line_id, payload.quantity) is None:
            raise HTTPException(status_code=404, detail="Cart line not found")
        return cart_summary(store)

    @app.post("/api/cart:remove", response_model=CartSummary)
    def remove_from_cart(payload: RemovePayload, store: CatalogStore = Depends(get_store)):
        store.remove_cart_item(payload.line_id)
        return cart_summary(store)

    @app.post("/api/cart:clear", response_model=CartSummary)
    def clear_cart(store: CatalogStore = Depends(get_store)):
        store.clear_cart()
        return cart_summary(store)

    @app.post("/api/checkout", response_model=CheckoutResult)
    def checkout(store: CatalogStore = Depends(get_store)):
        # lines of deleted products are not purchasable
        if not store.cart_lines():
            raise HTTPException(status_code=400, detail="Cart is empty")
        return CheckoutResult(total=round(store.cart_total(), 2), count=store.cart_count())

    # ---------------------- Admin ----------------------

    @app.get("/api/admin/session")
    def admin_session(store: CatalogStore = Depends(get_store)):
        return {"logged": store.admin.logged}

    @app.post("/api/admin/login")
    def admin_login(payload: LoginPayload, store: CatalogStore = Depends(get_store)):
        try:
            store.login(payload.password)
        except InvalidCredentials as e:
            raise HTTPException(status_code=401, detail=str(e))
        return {"logged": True}

    @app.post("/api/admin/logout")
    def admin_logout(store: CatalogStore = Depends(get_store)):
        store.logout()
        return {"logged": False}

    @app.post("/api/admin/password")
    def change_password(payload: ChangePasswordPayload, store: CatalogStore = Depends(require_admin)):
        try:
            store.change_password(payload.old_password, payload.new_password)
        except InvalidCredentials as e:
            raise HTTPException(status_code=401, detail=str(e))
        except PasswordTooShort as e:
            raise HTTPException(status_code=400, detail=str(e))
        return {"message": "Password changed"}

    @app.post("/api/admin/products", response_model=Product, status_code=201)
    def create_product(payload: ProductCreate, store: CatalogStore = Depends(require_admin)):
        return store.add_product(payload)

    @app.patch("/api/admin/products/{product_id}", response_model=Product)
    def update_product(product_id: str, patch: ProductUpdate, store: CatalogStore = Depends(require_admin)):
        updated = store.update_product(product_id, patch)
        if updated is None:
            raise HTTPException(status_code=404, detail="Product not found")
        return updated

    @app.delete("/api/admin/products/{product_id}")
    def delete_product(product_id: str, store: CatalogStore = Depends(require_admin)):
        if not store.delete_product(product_id):
            raise HTTPException(status_code=404, detail="Product not found")
        return {"deleted": product_id}

    @app.post("/api/admin/products/{product_id}/image", response_model=Product)
    async def upload_image(product_id: str, file: UploadFile = File(...), store: CatalogStore = Depends(require_admin)):
        get_product_or_404(store, product_id)
        if file.content_type and not file.content_type.startswith("image/"):
            raise HTTPException(status_code=400, detail="File must be an image")
        image = to_data_uri(await file.read(), file.content_type)
        return store.update_product(product_id, ProductUpdate(image=image))


app = create_app()


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
