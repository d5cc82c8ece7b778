import logging
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.core import config
from app.core.logging_config import setup_logging

# ✅ Import All API Routes
from app.api.routes import health
from app.api.routes import razorpay_webhook
from app.api.routes import subscriptions


setup_logging(config.LOG_LEVEL, config.LOG_DIR)
logger = logging.getLogger(__name__)

if config.RUN_MIGRATIONS:
    from app.db.migrate import run_migrations
    run_migrations()


# ============================================
# ✅ FASTAPI APP INIT
# ============================================

app = FastAPI(title="Coaching Subscriptions API")

# ✅ CORS: coaching frontend only (webhooks are server-to-server)
app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:3000",      # local frontend
        "http://127.0.0.1:3000",
    ],
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["Authorization", "Content-Type"],
)


# ============================================
# ✅ REGISTER ALL ROUTERS
# ============================================

app.include_router(subscriptions.router)
app.include_router(razorpay_webhook.router)
app.include_router(health.router)


# ============================================
# ✅ HEALTH CHECK ROOT ENDPOINT
# ============================================

@app.get("/")
def root():
    return {"status": "Coaching Subscriptions API running"}
