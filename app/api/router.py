from fastapi import APIRouter
from app.api.endpoints import query, metadata

api_router = APIRouter()

# Combine all sub-routers into one
api_router.include_router(query.router)
api_router.include_router(metadata.router)
