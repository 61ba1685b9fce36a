from fastapi import APIRouter
from slotbook.api.v1.routes.auth import router as auth_router
from slotbook.api.v1.routes.availability import router as availability_router
from slotbook.api.v1.routes.bookings import router as bookings_router
from slotbook.api.v1.routes.sessions import router as sessions_router
from slotbook.api.v1.routes.waitlist import router as waitlist_router
from slotbook.api.v1.routes.admin import router as admin_router

api_router = APIRouter(prefix="/api/v1")
api_router.include_router(auth_router)
api_router.include_router(availability_router)
api_router.include_router(bookings_router)
api_router.include_router(sessions_router)
api_router.include_router(waitlist_router)
api_router.include_router(admin_router)
