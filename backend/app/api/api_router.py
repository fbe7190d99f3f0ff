from fastapi import APIRouter
from app.api.routes.ai import ai_router
from app.api.routes.emails import emails_router
from app.api.routes.jobs import jobs_router

api_router = APIRouter()

api_router.include_router(emails_router)
api_router.include_router(ai_router)
api_router.include_router(jobs_router)
