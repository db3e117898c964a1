from fastapi import APIRouter

from api.v1.auth import router as auth_router
from api.v1.catalog import router as catalog_router
from api.v1.class_sessions import router as class_sessions_router
from api.v1.cron import router as cron_router
from api.v1.demo_registrations import router as demo_registrations_router
from api.v1.discounts import router as discounts_router
from api.v1.enrollments import router as enrollments_router
from api.v1.locations import router as locations_router
from api.v1.payments import router as payments_router
from api.v1.progress import router as progress_router
from api.v1.registrations import router as registrations_router
from api.v1.schedules import router as schedules_router
from api.v1.students import router as students_router

router = APIRouter()

# Include v1 routers
router.include_router(auth_router, prefix="/v1")
router.include_router(students_router, prefix="/v1")
router.include_router(locations_router, prefix="/v1")
router.include_router(catalog_router, prefix="/v1")
router.include_router(class_sessions_router, prefix="/v1")
router.include_router(schedules_router, prefix="/v1")
router.include_router(discounts_router, prefix="/v1")
router.include_router(registrations_router, prefix="/v1")
router.include_router(demo_registrations_router, prefix="/v1")
router.include_router(enrollments_router, prefix="/v1")
router.include_router(payments_router, prefix="/v1")
router.include_router(progress_router, prefix="/v1")

# Admin features
router.include_router(cron_router, prefix="/v1")
