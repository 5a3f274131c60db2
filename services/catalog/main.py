"""Catalog service API built with FastAPI.

Read-only product lookups for the storefront's checkout: price, stock flag
and the sizes/colours a product is offered in. Persistence is delegated to
the SQLAlchemy-backed ``repo.CatalogRepo``.
"""

import logging
import time
import uuid
from contextlib import asynccontextmanager
from decimal import Decimal

from fastapi import FastAPI, HTTPException, Request
from pydantic import BaseModel
from pythonjsonlogger.json import JsonFormatter
from sqlalchemy import text
from sqlalchemy.exc import OperationalError

from repo import CatalogRepo, engine, init_db

logger = logging.getLogger("catalog")
if not logger.handlers:
    h = logging.StreamHandler()
    h.setFormatter(JsonFormatter("%(asctime)s %(levelname)s %(name)s %(message)s %(request_id)s"))
    logger.addHandler(h)
    logger.setLevel(logging.INFO)


def _wait_for_db(timeout: float = 30.0) -> None:
    deadline = time.time() + timeout
    while True:
        try:
            with engine.connect() as conn:
                conn.execute(text("select 1"))
            return
        except OperationalError:
            if time.time() > deadline:
                raise
            time.sleep(1)


@asynccontextmanager
async def lifespan(_app: FastAPI):
    _wait_for_db()
    init_db()
    yield


app = FastAPI(title="Catalog Service", lifespan=lifespan)


class ProductOut(BaseModel):
    """Product as consumed by the storefront's catalog client."""
    id: str
    name: str
    price: Decimal
    inStock: bool
    image: str | None = None
    sizes: list[str] = []
    colors: list[str] = []


@app.get("/health")
def health():
    return {"ok": True}


@app.get("/products/{product_id}", response_model=ProductOut)
def get_product(product_id: str):
    """Return one product.

    Raises:
        HTTPException: 404 when the product does not exist.
    """
    product = CatalogRepo().get(product_id)
    if product is None:
        raise HTTPException(status_code=404, detail="PRODUCT_NOT_FOUND")
    return ProductOut(**product)


@app.middleware("http")
async def add_request_id(request: Request, call_next):
    rid = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    request.state.request_id = rid
    try:
        response = await call_next(request)
    finally:
        logger.info("request handled", extra={"request_id": rid, "path": request.url.path, "method": request.method})
    response.headers["X-Request-ID"] = rid
    return response
