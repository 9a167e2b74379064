from fastapi import APIRouter

from maktab.modules.registrations.admin_router import router as admin_registrations_router
from maktab.modules.students.admin_router import router as admin_students_router

api_router = APIRouter()

api_router.include_router(
    admin_registrations_router,
    prefix="/admin/registrations",
    tags=["Admin - Registrations"],
)

api_router.include_router(
    admin_students_router,
    prefix="/admin/students",
    tags=["Admin - Students"],
)
