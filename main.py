import os
import logging
from contextlib import asynccontextmanager
from typing import List, Optional
from fastapi import FastAPI, Depends, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pymongo.errors import DuplicateKeyError, PyMongoError

from auth import admin_identity, current_identity, ensure_self, is_admin, issue_token
from database import Store, get_store
from errors import BistroError, Forbidden, NotFound, StorageError
from payments import StripePaymentProvider, create_payment_intent, get_payment_provider, settle_payment
from schemas import AdminStats, CartItem, Identity, MenuItem, OrderStatRow, Payment, PaymentIntentRequest, Role, TokenRequest, User
from settings import Settings, get_settings
from stats import admin_totals, order_statistics

logger = logging.getLogger(__name__)


def create_app(settings: Optional[Settings] = None, store: Optional[Store] = None, payment_provider=None) -> FastAPI:
    settings = settings or Settings.from_env()
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owns_store = app.state.store is None
        if owns_store:
            app.state.store = Store.from_settings(settings)
        if app.state.store is not None:
            try:
                app.state.store.ensure_indexes()
            except PyMongoError as e:
                logger.warning("Could not ensure indexes: %s", e)
        yield
        if owns_store and app.state.store is not None:
            app.state.store.close()
            app.state.store = None

    app = FastAPI(title="Bistro Boss API", version="1.0.0", lifespan=lifespan)
    app.state.settings = settings
    app.state.store = store
    app.state.payment_provider = payment_provider or StripePaymentProvider(settings.payment_secret_key)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(BistroError)
    def handle_bistro_error(request, exc: BistroError):
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(PyMongoError)
    def handle_storage_error(request, exc: PyMongoError):
        logger.error("Store operation failed on %s %s: %s", request.method, request.url.path, exc)
        err = StorageError(f"Storage error: {str(exc)[:80]}")
        return JSONResponse(status_code=err.status_code, content=err.to_dict())

    register_routes(app)
    return app


def register_routes(app: FastAPI) -> None:

    # ===================== Public Endpoints =====================
    @app.get("/")
    def root():
        return {"message": "Bistro Boss API running"}

    @app.get("/test")
    def test_database():
        response = {
            "backend": "✅ Running",
            "database": "❌ Not Available",
            "connection_status": "Not Connected",
            "collections": []
        }
        store = app.state.store
        try:
            if store is not None:
                store.ping()
                response["database"] = "✅ Available"
                response["connection_status"] = "Connected"
                response["collections"] = store.collection_names()
        except PyMongoError as e:
            response["database"] = f"❌ Error: {str(e)[:80]}"
        return response

    # ===================== Auth =====================
    @app.post("/jwt")
    def create_token(payload: TokenRequest, settings: Settings = Depends(get_settings)):
        token = issue_token({"email": payload.email}, settings.access_token_secret, settings.token_ttl_seconds)
        return {"token": token}

    # ===================== Users =====================
    @app.get("/users")
    def list_users(_: Identity = Depends(admin_identity), store: Store = Depends(get_store)):
        return store.list_users()

    @app.post("/users")
    def register_user(user: User, store: Store = Depends(get_store)):
        if store.find_user_by_email(user.email):
            return {"message": "user already exists", "insertedId": None}
        doc = user.model_dump(exclude_none=True)
        # new users are never self-elevated
        doc["role"] = Role.STANDARD.value
        try:
            user_id = store.insert_user(doc)
        except DuplicateKeyError:
            return {"message": "user already exists", "insertedId": None}
        return {"acknowledged": True, "insertedId": user_id}

    @app.get("/users/admin/{email}")
    def check_admin(email: str, identity: Identity = Depends(current_identity), store: Store = Depends(get_store)):
        if identity.email != email:
            return {"admin": False}
        return {"admin": is_admin(identity, store)}

    @app.patch("/users/admin/{user_id}")
    def promote_user(user_id: str, _: Identity = Depends(admin_identity), store: Store = Depends(get_store)):
        ok = store.promote_to_admin(user_id)
        if not ok:
            raise NotFound("User not found")
        return {"updated": True}

    # ===================== Menu =====================
    @app.get("/menu")
    def list_menu(store: Store = Depends(get_store)):
        return store.list_menu_items()

    @app.post("/menu")
    def add_menu_item(item: MenuItem, _: Identity = Depends(admin_identity), store: Store = Depends(get_store)):
        item_id = store.insert_menu_item(item)
        return {"acknowledged": True, "insertedId": item_id}

    @app.delete("/menu/{item_id}")
    def remove_menu_item(item_id: str, _: Identity = Depends(admin_identity), store: Store = Depends(get_store)):
        ok = store.delete_menu_item_by_id(item_id)
        if not ok:
            raise NotFound("Menu item not found")
        return {"acknowledged": True, "deletedCount": 1}

    # ===================== Reviews =====================
    @app.get("/reviews")
    def list_reviews(store: Store = Depends(get_store)):
        return store.list_reviews()

    # ===================== Carts =====================
    @app.get("/carts")
    def list_cart(email: Optional[str] = Query(None), identity: Identity = Depends(current_identity), store: Store = Depends(get_store)):
        if not email:
            return []
        ensure_self(identity, email)
        return store.find_cart_items_by_email(email)

    @app.post("/carts")
    def add_cart_item(item: CartItem, identity: Identity = Depends(current_identity), store: Store = Depends(get_store)):
        ensure_self(identity, item.email)
        item_id = store.insert_cart_item(item)
        return {"acknowledged": True, "insertedId": item_id}

    @app.delete("/carts/{item_id}")
    def remove_cart_item(item_id: str, identity: Identity = Depends(current_identity), store: Store = Depends(get_store)):
        item = store.find_cart_item(item_id)
        if not item:
            raise NotFound("Cart item not found")
        if item.get("email") != identity.email and not is_admin(identity, store):
            raise Forbidden()
        store.delete_cart_item_by_id(item_id)
        return {"acknowledged": True, "deletedCount": 1}

    # ===================== Payments =====================
    @app.post("/create-payment-intent")
    def payment_intent(
        payload: PaymentIntentRequest,
        _: Identity = Depends(current_identity),
        settings: Settings = Depends(get_settings),
        provider=Depends(get_payment_provider),
    ):
        return create_payment_intent(provider, payload.price, settings.payment_currency)

    @app.get("/payments/{email}")
    def list_my_payments(email: str, identity: Identity = Depends(current_identity), store: Store = Depends(get_store)):
        ensure_self(identity, email)
        return store.list_payments({"email": email})

    @app.post("/payments")
    def create_payment(
        payment: Payment,
        identity: Identity = Depends(current_identity),
        store: Store = Depends(get_store),
        settings: Settings = Depends(get_settings),
    ):
        return settle_payment(
            store,
            payment,
            identity,
            use_transactions=settings.mongo_transactions,
            retries=settings.settlement_delete_retries,
        )

    # ===================== Admin analytics =====================
    @app.get("/admin-stats", response_model=AdminStats)
    def admin_stats(_: Identity = Depends(admin_identity), store: Store = Depends(get_store)):
        return admin_totals(store)

    @app.get("/order-stats", response_model=List[OrderStatRow])
    def order_stats(_: Identity = Depends(admin_identity), store: Store = Depends(get_store)):
        return order_statistics(store)


app = create_app()


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
