"""API endpoints for Invoices module."""

from fastapi import APIRouter, Depends, Header, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from schoola_billing.core.database.session import get_db
from schoola_billing.modules.invoices.models import InvoiceStatus
from schoola_billing.modules.invoices.schemas import (
    InvoiceCreate,
    InvoiceDiscountCodeApply,
    InvoiceDiscountCreate,
    InvoiceFilters,
    InvoiceIssueRequest,
    InvoiceItemCreate,
    InvoiceResponse,
    InvoiceTaxCreate,
    OverdueInvoiceResponse,
)
from schoola_billing.modules.invoices.service import InvoiceService
from schoola_billing.shared.schemas.base import ApiResponse, PaginatedResponse
from schoola_billing.shared.utils.dates import utc_now

router = APIRouter(prefix="/invoices", tags=["Invoices"])


@router.post(
    "",
    response_model=ApiResponse[InvoiceResponse],
    status_code=status.HTTP_201_CREATED,
)
async def create_invoice(
    data: InvoiceCreate,
    db: AsyncSession = Depends(get_db),
    actor_id: str | None = Header(None, alias="X-Actor-Id"),
):
    """Create a draft invoice."""
    service = InvoiceService(db)
    invoice = await service.create_invoice(data, created_by=actor_id)
    return ApiResponse(
        success=True,
        message="Invoice created successfully",
        data=InvoiceResponse.model_validate(invoice),
    )


@router.get(
    "",
    response_model=ApiResponse[PaginatedResponse[InvoiceResponse]],
)
async def list_invoices(
    student_id: str | None = Query(None),
    subscription_id: int | None = Query(None),
    invoice_status: InvoiceStatus | None = Query(None, alias="status"),
    page: int = Query(1, ge=1),
    limit: int = Query(100, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
):
    """List invoices with optional filters."""
    filters = InvoiceFilters(
        student_id=student_id,
        subscription_id=subscription_id,
        status=invoice_status,
        page=page,
        limit=limit,
    )
    service = InvoiceService(db)
    invoices, total = await service.list_invoices(filters)
    return ApiResponse(
        success=True,
        data=PaginatedResponse.create(
            items=[InvoiceResponse.model_validate(i) for i in invoices],
            total=total,
            page=page,
            limit=limit,
        ),
    )


@router.get(
    "/overdue",
    response_model=ApiResponse[list[OverdueInvoiceResponse]],
)
async def list_overdue_invoices(db: AsyncSession = Depends(get_db)):
    """Sent invoices past their due date."""
    service = InvoiceService(db)
    overdue = await service.list_overdue(utc_now())
    return ApiResponse(
        success=True,
        data=[
            OverdueInvoiceResponse(
                id=invoice.id,
                invoice_number=invoice.invoice_number,
                student_id=invoice.student_id,
                total_amount=invoice.total_amount,
                formatted_total=invoice.formatted_total,
                due_date=invoice.due_date,
                days_overdue=days,
            )
            for invoice, days in overdue
        ],
    )


@router.get(
    "/{invoice_id}",
    response_model=ApiResponse[InvoiceResponse],
)
async def get_invoice(invoice_id: int, db: AsyncSession = Depends(get_db)):
    service = InvoiceService(db)
    invoice = await service.get_invoice(invoice_id)
    return ApiResponse(success=True, data=InvoiceResponse.model_validate(invoice))


@router.post(
    "/{invoice_id}/items",
    response_model=ApiResponse[InvoiceResponse],
)
async def add_item(
    invoice_id: int,
    data: InvoiceItemCreate,
    db: AsyncSession = Depends(get_db),
    actor_id: str | None = Header(None, alias="X-Actor-Id"),
):
    """Add an item to a draft invoice."""
    service = InvoiceService(db)
    invoice = await service.add_item(invoice_id, data, actor_id=actor_id)
    return ApiResponse(success=True, data=InvoiceResponse.model_validate(invoice))


@router.post(
    "/{invoice_id}/discounts",
    response_model=ApiResponse[InvoiceResponse],
)
async def add_discount_entry(
    invoice_id: int,
    data: InvoiceDiscountCreate,
    db: AsyncSession = Depends(get_db),
    actor_id: str | None = Header(None, alias="X-Actor-Id"),
):
    """Add a manual discount entry to a draft invoice."""
    service = InvoiceService(db)
    invoice = await service.add_discount_entry(invoice_id, data, actor_id=actor_id)
    return ApiResponse(success=True, data=InvoiceResponse.model_validate(invoice))


@router.delete(
    "/{invoice_id}/discounts/{entry_id}",
    response_model=ApiResponse[InvoiceResponse],
)
async def remove_discount_entry(
    invoice_id: int,
    entry_id: int,
    db: AsyncSession = Depends(get_db),
    actor_id: str | None = Header(None, alias="X-Actor-Id"),
):
    service = InvoiceService(db)
    invoice = await service.remove_discount_entry(invoice_id, entry_id, actor_id=actor_id)
    return ApiResponse(
        success=True,
        message="Discount entry removed",
        data=InvoiceResponse.model_validate(invoice),
    )


@router.post(
    "/{invoice_id}/taxes",
    response_model=ApiResponse[InvoiceResponse],
)
async def add_tax_entry(
    invoice_id: int,
    data: InvoiceTaxCreate,
    db: AsyncSession = Depends(get_db),
    actor_id: str | None = Header(None, alias="X-Actor-Id"),
):
    """Add a tax entry to a draft invoice."""
    service = InvoiceService(db)
    invoice = await service.add_tax_entry(invoice_id, data, actor_id=actor_id)
    return ApiResponse(success=True, data=InvoiceResponse.model_validate(invoice))


@router.post(
    "/{invoice_id}/discount-code",
    response_model=ApiResponse[InvoiceResponse],
)
async def apply_discount_code(
    invoice_id: int,
    data: InvoiceDiscountCodeApply,
    db: AsyncSession = Depends(get_db),
):
    """Apply a promotional code; usage is recorded when the invoice is issued."""
    service = InvoiceService(db)
    invoice = await service.apply_discount_code(invoice_id, data.code, user_id=data.user_id)
    return ApiResponse(
        success=True,
        message="Discount applied",
        data=InvoiceResponse.model_validate(invoice),
    )


@router.post(
    "/{invoice_id}/issue",
    response_model=ApiResponse[InvoiceResponse],
)
async def issue_invoice(
    invoice_id: int,
    data: InvoiceIssueRequest | None = None,
    db: AsyncSession = Depends(get_db),
    actor_id: str | None = Header(None, alias="X-Actor-Id"),
):
    """Assign the invoice number and mark the invoice sent."""
    data = data or InvoiceIssueRequest()
    service = InvoiceService(db)
    invoice = await service.issue_invoice(
        invoice_id, issue_date=data.issue_date, due_date=data.due_date, actor_id=actor_id
    )
    return ApiResponse(
        success=True,
        message="Invoice issued",
        data=InvoiceResponse.model_validate(invoice),
    )


@router.post(
    "/{invoice_id}/cancel",
    response_model=ApiResponse[InvoiceResponse],
)
async def cancel_invoice(
    invoice_id: int,
    db: AsyncSession = Depends(get_db),
    actor_id: str | None = Header(None, alias="X-Actor-Id"),
):
    service = InvoiceService(db)
    invoice = await service.cancel_invoice(invoice_id, actor_id=actor_id)
    return ApiResponse(
        success=True,
        message="Invoice canceled",
        data=InvoiceResponse.model_validate(invoice),
    )
