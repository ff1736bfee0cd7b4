"""API endpoints for Payments module."""

from fastapi import APIRouter, Depends, Header, status
from sqlalchemy.ext.asyncio import AsyncSession

from schoola_billing.core.database.session import get_db
from schoola_billing.modules.payments.schemas import PaymentCreate, PaymentResponse, PaymentResult
from schoola_billing.modules.payments.service import PaymentService
from schoola_billing.shared.schemas.base import ApiResponse

router = APIRouter(prefix="/payments", tags=["Payments"])


@router.post(
    "",
    response_model=ApiResponse[PaymentResult],
    status_code=status.HTTP_201_CREATED,
)
async def record_payment(
    data: PaymentCreate,
    db: AsyncSession = Depends(get_db),
    actor_id: str | None = Header(None, alias="X-Actor-Id"),
):
    """Record a payment against an issued invoice."""
    service = PaymentService(db)
    result = await service.record_payment(data, received_by=actor_id)
    return ApiResponse(
        success=True,
        message="Payment recorded successfully",
        data=result,
    )


@router.get(
    "/{payment_id}",
    response_model=ApiResponse[PaymentResponse],
)
async def get_payment(payment_id: int, db: AsyncSession = Depends(get_db)):
    service = PaymentService(db)
    payment = await service.get_payment(payment_id)
    return ApiResponse(success=True, data=PaymentResponse.model_validate(payment))
