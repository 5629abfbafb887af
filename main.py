import time
from contextlib import asynccontextmanager
from typing import List, Optional
from uuid import uuid4

import structlog
from fastapi import APIRouter, Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.exception_handlers import request_validation_exception_handler
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from config import Settings
from errors import GenerationError, InvalidTransitionError, NotFoundError, PersistenceError
from generator import ProductGenerator
from logging_config import configure_logging, get_logger
from schemas import (
    GenerateProductsRequest,
    NewOrder,
    NewProduct,
    Order,
    OrderCreate,
    OrderStatus,
    OrderStatusUpdate,
    Product,
    ProductCreate,
    ProductUpdate,
    Store,
    StoreCreate,
    StoreUpdate,
    can_transition,
)
from storage import Storage, build_storage

logger = get_logger(__name__)

router = APIRouter()

# --------- Helpers ---------

def get_storage(request: Request) -> Storage:
    return request.app.state.storage


def get_generator(request: Request) -> ProductGenerator:
    return request.app.state.generator


def require_admin(request: Request, x_admin_key: Optional[str] = Header(None)):
    expected = request.app.state.settings.admin_key
    # No key configured: admin routes stay open for local development
    if expected and x_admin_key != expected:
        raise HTTPException(status_code=401, detail="Unauthorized: invalid admin key")


def load_store(storage: Storage, store_id: str) -> Store:
    store = storage.get_store(store_id)
    if store is None:
        raise NotFoundError("Store", store_id)
    return store


def load_product(storage: Storage, product_id: str) -> Product:
    product = storage.get_product(product_id)
    if product is None:
        raise NotFoundError("Product", product_id)
    return product


def load_order(storage: Storage, order_id: str) -> Order:
    order = storage.get_order(order_id)
    if order is None:
        raise NotFoundError("Order", order_id)
    return order

# --------- Basic Routes ---------

@router.get("/")
def root():
    return {"message": "Storefront builder API running"}


@router.get("/health")
def health(request: Request):
    storage: Storage = request.app.state.storage
    settings: Settings = request.app.state.settings
    database = {"backend": storage.backend, "connected": True, "error": None}
    try:
        storage.ping()
    except PersistenceError as e:
        database["connected"] = False
        database["error"] = str(e)[:80]
    ai = {"configured": settings.ai_configured}

    healthy = database["connected"]
    body = {"status": "ok" if healthy else "degraded", "database": database, "ai": ai}
    return JSONResponse(status_code=200 if healthy else 503, content=body)

# --------- Stores ---------

@router.post("/api/stores", response_model=Store, status_code=201)
def create_store(payload: StoreCreate, storage: Storage = Depends(get_storage)):
    store = storage.create_store(payload)
    logger.info("store_created", store_id=store.id, name=store.name)
    return store


@router.get("/api/stores", response_model=List[Store])
def list_stores(storage: Storage = Depends(get_storage)):
    return storage.list_stores()


@router.get("/api/stores/{store_id}", response_model=Store)
def get_store(store_id: str, storage: Storage = Depends(get_storage)):
    return load_store(storage, store_id)


@router.patch("/api/stores/{store_id}", response_model=Store, dependencies=[Depends(require_admin)])
def update_store(store_id: str, payload: StoreUpdate, storage: Storage = Depends(get_storage)):
    changes = payload.changes()
    if not changes:
        return load_store(storage, store_id)
    return storage.update_store(store_id, changes)


@router.delete("/api/stores/{store_id}", response_model=Store, dependencies=[Depends(require_admin)])
def deactivate_store(store_id: str, storage: Storage = Depends(get_storage)):
    store = storage.update_store(store_id, {"is_active": False})
    logger.info("store_deactivated", store_id=store_id)
    return store


@router.post("/api/stores/{store_id}/generate-products", response_model=List[Product], status_code=201)
def generate_products(
    store_id: str,
    payload: GenerateProductsRequest,
    storage: Storage = Depends(get_storage),
    generator: ProductGenerator = Depends(get_generator),
):
    load_store(storage, store_id)
    drafts = generator.generate(
        store_id,
        payload.category,
        payload.count,
        payload.price_range,
        with_images=payload.with_images,
    )
    # Not atomic: products inserted before a failure stay persisted
    created = [storage.create_product(draft) for draft in drafts]
    logger.info("generated_products_saved", store_id=store_id, count=len(created))
    return created

# --------- Products ---------

@router.post("/api/products", response_model=Product, status_code=201)
def create_product(payload: ProductCreate, storage: Storage = Depends(get_storage)):
    load_store(storage, payload.store_id)
    product = storage.create_product(NewProduct(**payload.model_dump()))
    logger.info("product_created", product_id=product.id, store_id=product.store_id)
    return product


@router.get("/api/products", response_model=List[Product])
def list_products(
    store_id: str = Query(..., alias="storeId"),
    include_inactive: bool = Query(False, alias="includeInactive"),
    storage: Storage = Depends(get_storage),
):
    load_store(storage, store_id)
    products = storage.list_products(store_id)
    if not include_inactive:
        products = [p for p in products if p.is_active]
    return products


@router.get("/api/products/{product_id}", response_model=Product)
def get_product(product_id: str, storage: Storage = Depends(get_storage)):
    return load_product(storage, product_id)


@router.patch("/api/products/{product_id}", response_model=Product, dependencies=[Depends(require_admin)])
def update_product(product_id: str, payload: ProductUpdate, storage: Storage = Depends(get_storage)):
    changes = payload.changes()
    if not changes:
        return load_product(storage, product_id)
    return storage.update_product(product_id, changes)


@router.delete("/api/products/{product_id}", response_model=Product, dependencies=[Depends(require_admin)])
def deactivate_product(product_id: str, storage: Storage = Depends(get_storage)):
    product = storage.update_product(product_id, {"is_active": False})
    logger.info("product_deactivated", product_id=product_id)
    return product

# --------- Orders ---------

@router.post("/api/orders", response_model=Order, status_code=201)
def create_order(payload: OrderCreate, storage: Storage = Depends(get_storage)):
    load_store(storage, payload.store_id)
    new_order = NewOrder.from_request(payload)
    if payload.total_amount is not None and payload.total_amount != new_order.total_amount:
        logger.warning(
            "order_total_mismatch",
            store_id=payload.store_id,
            submitted=str(payload.total_amount),
            computed=str(new_order.total_amount),
        )
    order = storage.create_order(new_order)
    logger.info("order_created", order_id=order.id, store_id=order.store_id, total=str(order.total_amount))
    return order


@router.get("/api/orders", response_model=List[Order], dependencies=[Depends(require_admin)])
def list_orders(
    store_id: str = Query(..., alias="storeId"),
    status: Optional[OrderStatus] = None,
    storage: Storage = Depends(get_storage),
):
    load_store(storage, store_id)
    orders = storage.list_orders(store_id)
    if status is not None:
        orders = [o for o in orders if o.status == status]
    return orders


@router.get("/api/orders/{order_id}", response_model=Order)
def get_order(order_id: str, storage: Storage = Depends(get_storage)):
    return load_order(storage, order_id)


@router.patch("/api/orders/{order_id}", response_model=Order, dependencies=[Depends(require_admin)])
def update_order_status(order_id: str, payload: OrderStatusUpdate, storage: Storage = Depends(get_storage)):
    order = load_order(storage, order_id)
    if not can_transition(order.status, payload.status):
        raise InvalidTransitionError(order.status.value, payload.status.value)
    updated = storage.update_order_status(order_id, payload.status)
    logger.info("order_status_changed", order_id=order_id, old=order.status.value, new=updated.status.value)
    return updated

# --------- Error handlers ---------

async def handle_validation_error(request: Request, exc: RequestValidationError):
    logger.info("validation_failed", path=request.url.path, errors=len(exc.errors()))
    return await request_validation_exception_handler(request, exc)


async def handle_not_found(request: Request, exc: NotFoundError):
    logger.info("not_found", path=request.url.path, entity=exc.entity, entity_id=exc.entity_id)
    return JSONResponse(status_code=404, content={"detail": str(exc)})


async def handle_invalid_transition(request: Request, exc: InvalidTransitionError):
    logger.info("invalid_transition", path=request.url.path, current=exc.current, requested=exc.requested)
    return JSONResponse(status_code=409, content={"detail": str(exc)})


async def handle_generation_error(request: Request, exc: GenerationError):
    logger.error("generation_failed", path=request.url.path, error=str(exc))
    return JSONResponse(status_code=502, content={"detail": "Product generation failed"})


async def handle_persistence_error(request: Request, exc: PersistenceError):
    logger.error("persistence_failed", path=request.url.path, error=str(exc))
    return JSONResponse(status_code=503, content={"detail": "Storage unavailable"})

# --------- App ---------

def create_app(
    settings: Optional[Settings] = None,
    storage: Optional[Storage] = None,
    generator: Optional[ProductGenerator] = None,
) -> FastAPI:
    settings = settings or Settings()
    configure_logging(settings.log_level, settings.log_json)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        app.state.storage.close()

    app = FastAPI(title="Storefront Builder API", version="1.0.0", lifespan=lifespan)
    app.state.settings = settings
    app.state.storage = storage or build_storage(settings)
    app.state.generator = generator or ProductGenerator.from_settings(settings)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or uuid4().hex
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(request_id=request_id)
        started = time.perf_counter()
        response = await call_next(request)
        logger.info(
            "request",
            method=request.method,
            path=request.url.path,
            status=response.status_code,
            duration_ms=round((time.perf_counter() - started) * 1000, 2),
        )
        response.headers["X-Request-ID"] = request_id
        return response

    app.add_exception_handler(RequestValidationError, handle_validation_error)
    app.add_exception_handler(NotFoundError, handle_not_found)
    app.add_exception_handler(InvalidTransitionError, handle_invalid_transition)
    app.add_exception_handler(GenerationError, handle_generation_error)
    app.add_exception_handler(PersistenceError, handle_persistence_error)

    app.include_router(router)
    return app


# Served with `uvicorn main:create_app --factory`, or `python main.py`
if __name__ == "__main__":
    import uvicorn
    settings = Settings()
    uvicorn.run(create_app(settings), host="0.0.0.0", port=settings.port)
