from fastapi import APIRouter
from autopay.api.v1.endpoints import upi_mandates, payments, admin


api_router = APIRouter()

api_router.include_router(upi_mandates.router, prefix="/upi-mandates", tags=["upi-mandates"])
api_router.include_router(payments.router, prefix="/payments", tags=["payments"])
api_router.include_router(admin.router, prefix="/admin", tags=["admin"])
