import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from app.core.config import settings
from app.api.router import api_router

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Nothing to warm up: every request authenticates and opens its own session
    logger.info(
        f"Gateway ready for {settings.WORKSPACE_CONNECTION} "
        f"(credential mode: {settings.CREDENTIAL_MODE.value})"
    )
    yield
    logger.info("Gateway shutting down")


app = FastAPI(title="Tabular Query Gateway", lifespan=lifespan)

# The browser frontend calls the gateway from another origin
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=False,  # Must be False when using wildcard
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include the master router containing all our endpoints
app.include_router(api_router)


@app.get("/")
async def root():
    return {"message": "Tabular Query Gateway is running"}
