from fastapi import APIRouter
from gensy.api.v1 import credits, generations

api_router = APIRouter()

api_router.include_router(credits.router, prefix="/credits", tags=["Credits"])
api_router.include_router(generations.router, prefix="/generations", tags=["Generations"])
