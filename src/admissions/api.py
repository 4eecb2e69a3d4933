from fastapi import APIRouter

from admissions.modules.applicants.router import router as applicants_router
from admissions.modules.auth.router import router as staff_auth_router
from admissions.modules.confirmations.router import router as confirmations_router
from admissions.modules.payments.router import router as payments_router
from admissions.modules.sessions.router import router as sessions_router
from admissions.modules.stages.router import router as stages_router

api_router = APIRouter()

api_router.include_router(applicants_router, prefix="/applicants", tags=["Applicants"])

api_router.include_router(sessions_router, prefix="/auth", tags=["Applicant Authentication"])

api_router.include_router(staff_auth_router, prefix="/auth/staff", tags=["Staff Authentication"])

api_router.include_router(stages_router, prefix="/stages", tags=["Stages"])

api_router.include_router(payments_router, prefix="/payments", tags=["Payments"])

api_router.include_router(confirmations_router, prefix="/confirmations", tags=["Confirmations"])
