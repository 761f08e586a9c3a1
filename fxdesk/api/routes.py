from fastapi import APIRouter

from fxdesk.api.duplicates import router as duplicates_router
from fxdesk.api.payment_proofs import router as payment_proofs_router
from fxdesk.api.transactions import router as transactions_router

router = APIRouter()
router.include_router(payment_proofs_router)
router.include_router(transactions_router)
router.include_router(duplicates_router)
