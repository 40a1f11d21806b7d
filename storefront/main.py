# storefront/main.py

"""
Used by FastAPI to handle the Traffic (API endpoints)
This is the entry point for the API
It wires the routers, the error envelope and the middleware together
"""

import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI

# For Middleware block so browser can access the API
from fastapi.middleware.cors import CORSMiddleware

from storefront.config import configure_logging, get_settings
from storefront.errors import register_error_handlers
from storefront.routers import cart, catalog, checkout, orders, refunds, webhooks
from storefront.utils.db import init_db

logger = logging.getLogger(__name__)

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging(settings)
    init_db()
    logger.info("🚀 Storefront API ready")
    yield


app = FastAPI(title="ShopSmart Storefront API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_error_handlers(app)

app.include_router(catalog.router)
app.include_router(cart.router)
app.include_router(orders.router)
app.include_router(refunds.router)
app.include_router(checkout.router)
app.include_router(webhooks.router)


@app.get("/health")
def health_check():
    return {"status": "ok"}


if __name__ == "__main__":
    # If running directly, this allows 'python -m storefront.main' to work
    # BUT standard usage is 'uvicorn storefront.main:app --reload' from terminal
    uvicorn.run("storefront.main:app", host="0.0.0.0", port=8000, reload=True)
