import logging
import os

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

import database
from addresses import router as address_router
from auth import router as auth_router
from cart import router as cart_router
from orders import router as order_router
from products import router as product_router
from users import router as user_router

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s - %(name)s - [%(levelname)s] - %(message)s",
)

CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]

app = FastAPI(title="Marketplace API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(auth_router)
app.include_router(user_router)
app.include_router(address_router)
app.include_router(product_router)
app.include_router(cart_router)
app.include_router(order_router)


@app.on_event("startup")
def create_indexes():
    if database.db is not None:
        database.ensure_indexes(database.db)


@app.get("/")
def root():
    return {"status": "ok", "service": "Marketplace Backend"}


@app.get("/test")
def test_database():
    ok = database.db is not None
    collections = []
    status = "✅ Connected" if ok else "❌ Not Connected"
    if ok:
        try:
            collections = database.db.list_collection_names()[:10]
        except Exception as e:
            status = f"⚠️  Connected but Error: {str(e)[:80]}"
    return {
        "backend": "✅ Running",
        "database": status,
        "database_url": "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set",
        "database_name": os.getenv("DATABASE_NAME") or "-",
        "transactions": "✅ Enabled" if database.USE_TRANSACTIONS else "➖ Disabled",
        "collections": collections,
    }


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
