from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

import pytest
from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from schoola_billing.core.exceptions import (
    DiscountNotApplicableError,
    DuplicateError,
    NotFoundError,
    ValidationError,
)
from schoola_billing.modules.discounts.models import DiscountApplicableTo, DiscountType
from schoola_billing.modules.discounts.service import DiscountService
from schoola_billing.modules.invoices.models import InvoiceStatus
from schoola_billing.modules.invoices.schemas import (
    InvoiceCreate,
    InvoiceDiscountCreate,
    InvoiceFilters,
    InvoiceItemCreate,
    InvoiceTaxCreate,
)
from schoola_billing.modules.invoices.service import InvoiceService
from schoola_billing.modules.subscriptions.service import SubscriptionService
from tests.factories import NOW, discount_create, subscription_create


def invoice_create(**overrides) -> InvoiceCreate:
    values = {
        "student_id": "student-1",
        "group_id": "group-a",
        "items": [
            InvoiceItemCreate(description="Python Basics", quantity=1, unit_price=Decimal("140"))
        ],
    }
    values.update(overrides)
    return InvoiceCreate(**values)


class TestInvoiceService:
    """Tests for invoice creation and lines."""

    async def test_create_invoice_with_lines(self, db_session: AsyncSession):
        service = InvoiceService(db_session)

        invoice = await service.create_invoice(
            invoice_create(
                items=[
                    InvoiceItemCreate(description="Course", quantity=2, unit_price=Decimal("50")),
                    InvoiceItemCreate(description="Book", quantity=1, unit_price=Decimal("40")),
                ],
                discounts=[InvoiceDiscountCreate(discount_type=DiscountType.PERCENTAGE, value=10)],
                taxes=[InvoiceTaxCreate(name="VAT", rate=Decimal("14"))],
            ),
            created_by="admin-1",
        )

        assert invoice.status == InvoiceStatus.DRAFT.value
        assert invoice.invoice_number is None
        assert invoice.subtotal == Decimal("140.00")
        assert invoice.total_discounts == Decimal("14.00")
        # 14% of the discounted 126.00
        assert invoice.total_taxes == Decimal("17.64")
        assert invoice.total_amount == Decimal("143.64")
        assert invoice.formatted_total == "143.64 EGP"
        assert [item.position for item in invoice.items] == [1, 2]

    async def test_create_invoice_takes_subscription_currency(self, db_session: AsyncSession):
        subscription = await SubscriptionService(db_session).create_subscription(
            subscription_create(currency="USD")
        )
        invoice = await InvoiceService(db_session).create_invoice(
            invoice_create(subscription_id=subscription.id)
        )
        assert invoice.currency == "USD"
        assert invoice.items[0].currency == "USD"

    async def test_create_invoice_unknown_subscription(self, db_session: AsyncSession):
        with pytest.raises(NotFoundError):
            await InvoiceService(db_session).create_invoice(invoice_create(subscription_id=404))

    async def test_over_discounted_invoice_totals_zero(self, db_session: AsyncSession):
        service = InvoiceService(db_session)
        invoice = await service.create_invoice(invoice_create())

        invoice = await service.add_discount_entry(
            invoice.id,
            InvoiceDiscountCreate(discount_type=DiscountType.FIXED_AMOUNT, value=Decimal("200")),
        )

        assert invoice.subtotal == Decimal("140.00")
        assert invoice.total_discounts == Decimal("200.00")
        assert invoice.total_amount == Decimal("0.00")

    async def test_add_item_recomputes(self, db_session: AsyncSession):
        service = InvoiceService(db_session)
        invoice = await service.create_invoice(invoice_create())

        invoice = await service.add_item(
            invoice.id,
            InvoiceItemCreate(description="Extra session", quantity=2, unit_price=Decimal("12.5")),
        )

        assert len(invoice.items) == 2
        assert invoice.items[1].total_price == Decimal("25.00")
        assert invoice.subtotal == Decimal("165.00")
        assert invoice.total_amount == Decimal("165.00")
        assert invoice.is_dirty is False

    async def test_add_tax_with_explicit_amount(self, db_session: AsyncSession):
        service = InvoiceService(db_session)
        invoice = await service.create_invoice(invoice_create())

        invoice = await service.add_tax_entry(
            invoice.id, InvoiceTaxCreate(name="Stamp", rate=0, applied_amount=Decimal("5"))
        )

        assert invoice.total_taxes == Decimal("5.00")
        assert invoice.total_amount == Decimal("145.00")

    async def test_buy_x_get_y_manual_entry_needs_amount(self, db_session: AsyncSession):
        service = InvoiceService(db_session)
        invoice = await service.create_invoice(invoice_create())

        with pytest.raises(ValidationError):
            await service.add_discount_entry(
                invoice.id,
                InvoiceDiscountCreate(discount_type=DiscountType.BUY_X_GET_Y, value=2),
            )

    async def test_lines_are_frozen_after_issue(self, db_session: AsyncSession):
        service = InvoiceService(db_session)
        invoice = await service.create_invoice(invoice_create())
        await service.issue_invoice(invoice.id, issue_date=date(2026, 3, 1))

        with pytest.raises(ValidationError):
            await service.add_item(
                invoice.id, InvoiceItemCreate(description="Late", unit_price=Decimal("1"))
            )

    async def test_get_unknown_invoice(self, db_session: AsyncSession):
        with pytest.raises(NotFoundError):
            await InvoiceService(db_session).get_invoice(999)

    async def test_list_invoices(self, db_session: AsyncSession):
        service = InvoiceService(db_session)
        await service.create_invoice(invoice_create(student_id="s-1"))
        second = await service.create_invoice(invoice_create(student_id="s-2"))
        await service.issue_invoice(second.id)

        invoices, total = await service.list_invoices(InvoiceFilters())
        assert total == 2

        sent, sent_total = await service.list_invoices(InvoiceFilters(status=InvoiceStatus.SENT))
        assert sent_total == 1
        assert sent[0].student_id == "s-2"


class TestInvoiceLifecycle:
    async def test_issue_assigns_sequential_numbers(self, db_session: AsyncSession):
        service = InvoiceService(db_session)
        first = await service.create_invoice(invoice_create())
        second = await service.create_invoice(invoice_create())

        first = await service.issue_invoice(first.id, issue_date=date(2025, 6, 1))
        second = await service.issue_invoice(second.id, issue_date=date(2025, 6, 2))

        assert first.invoice_number == "2025-000001"
        assert second.invoice_number == "2025-000002"
        assert first.status == InvoiceStatus.SENT.value
        assert first.due_date == date(2025, 7, 1)

    async def test_issue_keeps_explicit_due_date(self, db_session: AsyncSession):
        service = InvoiceService(db_session)
        invoice = await service.create_invoice(invoice_create(due_date=date(2026, 4, 1)))
        invoice = await service.issue_invoice(invoice.id, issue_date=date(2026, 3, 1))
        assert invoice.due_date == date(2026, 4, 1)

    async def test_issue_requires_items(self, db_session: AsyncSession):
        service = InvoiceService(db_session)
        invoice = await service.create_invoice(invoice_create(items=[]))
        with pytest.raises(ValidationError):
            await service.issue_invoice(invoice.id)

    async def test_issue_twice_fails(self, db_session: AsyncSession):
        service = InvoiceService(db_session)
        invoice = await service.create_invoice(invoice_create())
        await service.issue_invoice(invoice.id)
        with pytest.raises(ValidationError):
            await service.issue_invoice(invoice.id)

    async def test_canceled_invoice_keeps_its_number(self, db_session: AsyncSession):
        service = InvoiceService(db_session)
        first = await service.create_invoice(invoice_create())
        first = await service.issue_invoice(first.id, issue_date=date(2025, 1, 5))

        canceled = await service.cancel_invoice(first.id)
        assert canceled.status == InvoiceStatus.CANCELED.value
        assert canceled.invoice_number == "2025-000001"

        second = await service.create_invoice(invoice_create())
        second = await service.issue_invoice(second.id, issue_date=date(2025, 1, 6))
        assert second.invoice_number == "2025-000002"

        with pytest.raises(ValidationError):
            await service.cancel_invoice(first.id)

    async def test_list_overdue(self, db_session: AsyncSession):
        service = InvoiceService(db_session)
        late = await service.create_invoice(invoice_create(student_id="late"))
        await service.issue_invoice(late.id, issue_date=date(2026, 2, 1), due_date=date(2026, 3, 1))
        on_time = await service.create_invoice(invoice_create(student_id="on-time"))
        await service.issue_invoice(
            on_time.id, issue_date=date(2026, 3, 1), due_date=date(2026, 4, 1)
        )
        await service.create_invoice(invoice_create(student_id="draft", due_date=date(2026, 1, 1)))

        overdue = await service.list_overdue(date(2026, 3, 15))

        assert [(invoice.student_id, days) for invoice, days in overdue] == [("late", 14)]


class TestApplyDiscountCode:
    async def _discount(self, db_session: AsyncSession, **overrides):
        return await DiscountService(db_session).create_discount(discount_create(**overrides))

    async def test_apply_percentage_code(self, db_session: AsyncSession):
        await self._discount(db_session, code="TEN", max_discount_amount=Decimal("20"))
        service = InvoiceService(db_session)
        invoice = await service.create_invoice(invoice_create())

        invoice = await service.apply_discount_code(invoice.id, "ten", now=NOW)

        entry = invoice.discounts[0]
        assert entry.discount_code == "TEN"
        assert entry.applied_amount == Decimal("14.00")
        assert entry.usage_committed is False
        assert entry.redeemed_by == "student-1"
        assert invoice.total_amount == Decimal("126.00")

        # Applying does not redeem
        discount = await DiscountService(db_session).get_discount_by_code("TEN")
        assert discount.current_usage == 0

    async def test_apply_rejects_invalid_code(self, db_session: AsyncSession):
        await self._discount(db_session, code="BIG", min_order_amount=Decimal("500"))
        service = InvoiceService(db_session)
        invoice = await service.create_invoice(invoice_create())

        with pytest.raises(DiscountNotApplicableError) as exc_info:
            await service.apply_discount_code(invoice.id, "BIG", now=NOW)
        assert exc_info.value.reason == "Order amount below minimum"

        invoice = await service.get_invoice(invoice.id)
        assert invoice.discounts == []

    async def test_apply_checks_group_scope(self, db_session: AsyncSession):
        await self._discount(
            db_session,
            code="GROUPB",
            applicable_to=DiscountApplicableTo.GROUPS,
            applicable_ids=["group-b"],
        )
        service = InvoiceService(db_session)
        invoice_a = await service.create_invoice(invoice_create(group_id="group-a"))
        invoice_b = await service.create_invoice(invoice_create(group_id="group-b"))

        with pytest.raises(DiscountNotApplicableError):
            await service.apply_discount_code(invoice_a.id, "GROUPB", now=NOW)

        invoice_b = await service.apply_discount_code(invoice_b.id, "GROUPB", now=NOW)
        assert invoice_b.total_discounts == Decimal("14.00")

    async def test_apply_same_code_twice(self, db_session: AsyncSession):
        await self._discount(db_session, code="TWICE")
        service = InvoiceService(db_session)
        invoice = await service.create_invoice(invoice_create())
        await service.apply_discount_code(invoice.id, "TWICE", now=NOW)

        with pytest.raises(DuplicateError):
            await service.apply_discount_code(invoice.id, "TWICE", now=NOW)

    async def test_apply_buy_x_get_y_is_refused(self, db_session: AsyncSession):
        await self._discount(
            db_session, code="B2G1", discount_type=DiscountType.BUY_X_GET_Y, value=Decimal("2")
        )
        service = InvoiceService(db_session)
        invoice = await service.create_invoice(invoice_create())

        with pytest.raises(ValidationError):
            await service.apply_discount_code(invoice.id, "B2G1", now=NOW)

    async def test_apply_unknown_code(self, db_session: AsyncSession):
        service = InvoiceService(db_session)
        invoice = await service.create_invoice(invoice_create())
        with pytest.raises(NotFoundError):
            await service.apply_discount_code(invoice.id, "GHOST", now=NOW)


class TestIssueRedeemsCodes:
    async def _draft_with_code(self, service: InvoiceService, code: str, student_id: str):
        invoice = await service.create_invoice(invoice_create(student_id=student_id))
        return await service.apply_discount_code(invoice.id, code, now=NOW)

    async def test_issue_commits_pending_codes(self, db_session: AsyncSession):
        await DiscountService(db_session).create_discount(discount_create(code="TEN"))
        service = InvoiceService(db_session)
        draft = await self._draft_with_code(service, "TEN", "student-1")

        invoice = await service.issue_invoice(draft.id, now=NOW)

        assert invoice.invoice_number == "2026-000001"
        assert invoice.discounts[0].usage_committed is True
        discount = await DiscountService(db_session).get_discount_by_code("TEN")
        assert discount.current_usage == 1
        assert discount.usage_for("student-1").transaction_ids == ["2026-000001"]

    async def test_zero_total_invoice_is_settled_on_issue(self, db_session: AsyncSession):
        await DiscountService(db_session).create_discount(
            discount_create(code="FULL", value=Decimal("100"), max_usage=1)
        )
        service = InvoiceService(db_session)
        draft = await self._draft_with_code(service, "FULL", "student-1")

        invoice = await service.issue_invoice(draft.id, due_date=date(2026, 3, 20), now=NOW)

        assert invoice.total_amount == Decimal("0.00")
        assert invoice.status == InvoiceStatus.PAID.value
        assert invoice.paid_at is not None
        assert await service.list_overdue(date(2026, 6, 1)) == []

        # The only use is gone, so the code cannot be reused on another invoice
        other = await service.create_invoice(invoice_create(student_id="student-2"))
        with pytest.raises(DiscountNotApplicableError):
            await service.apply_discount_code(other.id, "FULL", now=NOW)

    async def test_exhausted_code_keeps_invoice_in_draft(self, db_session: AsyncSession):
        await DiscountService(db_session).create_discount(
            discount_create(code="ONCE", max_usage=1)
        )
        service = InvoiceService(db_session)
        # Applying does not redeem, so both drafts accept the code
        first = await self._draft_with_code(service, "ONCE", "student-1")
        second = await self._draft_with_code(service, "ONCE", "student-2")
        await service.issue_invoice(first.id, now=NOW)

        with pytest.raises(DiscountNotApplicableError):
            await service.issue_invoice(second.id, now=NOW)

        second = await service.get_invoice(second.id)
        assert second.status == InvoiceStatus.DRAFT.value
        assert second.invoice_number is None
        assert second.discounts[0].usage_committed is False

        second = await service.remove_discount_entry(second.id, second.discounts[0].id)
        assert second.discounts == []
        assert second.total_amount == Decimal("140.00")

        second = await service.issue_invoice(second.id, now=NOW)
        assert second.status == InvoiceStatus.SENT.value
        assert second.invoice_number == "2026-000002"

        discount = await DiscountService(db_session).get_discount_by_code("ONCE")
        assert discount.current_usage == 1

    async def test_remove_discount_entry_renumbers(self, db_session: AsyncSession):
        service = InvoiceService(db_session)
        invoice = await service.create_invoice(
            invoice_create(
                discounts=[
                    InvoiceDiscountCreate(discount_type=DiscountType.FIXED_AMOUNT, value=10),
                    InvoiceDiscountCreate(discount_type=DiscountType.FIXED_AMOUNT, value=5),
                ]
            )
        )

        invoice = await service.remove_discount_entry(invoice.id, invoice.discounts[0].id)

        assert [(d.position, d.applied_amount) for d in invoice.discounts] == [
            (1, Decimal("5.00"))
        ]
        assert invoice.total_amount == Decimal("135.00")

    async def test_remove_discount_entry_guards(self, db_session: AsyncSession):
        service = InvoiceService(db_session)
        invoice = await service.create_invoice(
            invoice_create(
                discounts=[InvoiceDiscountCreate(discount_type=DiscountType.FIXED_AMOUNT, value=10)]
            )
        )
        with pytest.raises(NotFoundError):
            await service.remove_discount_entry(invoice.id, 999)

        await service.issue_invoice(invoice.id, now=NOW)
        with pytest.raises(ValidationError):
            await service.remove_discount_entry(invoice.id, invoice.discounts[0].id)


class TestInvoiceEndpoints:
    async def _create(self, client: AsyncClient, **overrides) -> dict:
        payload = {
            "student_id": "student-api",
            "items": [{"description": "Course", "quantity": "1", "unit_price": "140"}],
        }
        payload.update(overrides)
        response = await client.post("/api/v1/invoices", json=payload)
        assert response.status_code == 201
        return response.json()["data"]

    async def test_create_and_get(self, client: AsyncClient):
        created = await self._create(client)
        assert created["status"] == "draft"
        assert created["formatted_total"] == "140.00 EGP"
        assert created["subtotal"] == "140.00"
        assert created["items"][0]["total_price"] == "140.00"

        response = await client.get(f"/api/v1/invoices/{created['id']}")
        assert response.status_code == 200
        assert Decimal(response.json()["data"]["subtotal"]) == Decimal("140")

    async def test_lines_endpoints(self, client: AsyncClient):
        created = await self._create(client)
        invoice_id = created["id"]

        response = await client.post(
            f"/api/v1/invoices/{invoice_id}/items",
            json={"description": "Book", "quantity": "2", "unit_price": "30"},
        )
        assert response.status_code == 200
        assert Decimal(response.json()["data"]["subtotal"]) == Decimal("200")

        response = await client.post(
            f"/api/v1/invoices/{invoice_id}/discounts",
            json={"discount_type": "fixed_amount", "value": "300"},
        )
        assert response.status_code == 200
        assert Decimal(response.json()["data"]["total_amount"]) == Decimal("0")

        response = await client.post(
            f"/api/v1/invoices/{invoice_id}/taxes", json={"name": "VAT", "rate": "14"}
        )
        assert response.status_code == 200
        assert Decimal(response.json()["data"]["total_taxes"]) == Decimal("0")

    async def test_negative_price_rejected(self, client: AsyncClient):
        created = await self._create(client)
        response = await client.post(
            f"/api/v1/invoices/{created['id']}/items",
            json={"description": "Bad", "unit_price": "-1"},
        )
        assert response.status_code == 422

    async def test_discount_code_issue_and_cancel(self, client: AsyncClient):
        await client.post(
            "/api/v1/discounts",
            json={
                "code": "WELCOME",
                "name": "Welcome",
                "discount_type": "fixed_amount",
                "value": "40",
                "valid_from": datetime(2020, 1, 1, tzinfo=timezone.utc).isoformat(),
                "valid_until": datetime(2100, 1, 1, tzinfo=timezone.utc).isoformat(),
            },
        )
        created = await self._create(client)
        invoice_id = created["id"]

        response = await client.post(
            f"/api/v1/invoices/{invoice_id}/discount-code", json={"code": "welcome"}
        )
        assert response.status_code == 200
        assert Decimal(response.json()["data"]["total_amount"]) == Decimal("100")

        response = await client.post(f"/api/v1/invoices/{invoice_id}/issue")
        assert response.status_code == 200
        issued = response.json()["data"]
        assert issued["status"] == "sent"
        assert issued["invoice_number"].endswith("-000001")

        response = await client.post(f"/api/v1/invoices/{invoice_id}/cancel")
        assert response.status_code == 200
        assert response.json()["data"]["status"] == "canceled"

    async def test_list_and_overdue(self, client: AsyncClient):
        created = await self._create(client)
        past = (date.today() - timedelta(days=40)).isoformat()
        await client.post(
            f"/api/v1/invoices/{created['id']}/issue",
            json={"issue_date": past, "due_date": (date.today() - timedelta(days=10)).isoformat()},
        )

        response = await client.get("/api/v1/invoices", params={"status": "sent"})
        assert response.status_code == 200
        assert response.json()["data"]["total"] == 1

        response = await client.get("/api/v1/invoices/overdue")
        assert response.status_code == 200
        overdue = response.json()["data"]
        assert len(overdue) == 1
        assert overdue[0]["days_overdue"] >= 10

    async def test_fully_discounted_invoice_is_paid_on_issue(self, client: AsyncClient):
        await client.post(
            "/api/v1/discounts",
            json={
                "code": "SCHOLAR",
                "name": "Scholarship",
                "discount_type": "percentage",
                "value": "100",
                "max_usage": 1,
                "valid_from": datetime(2020, 1, 1, tzinfo=timezone.utc).isoformat(),
                "valid_until": datetime(2100, 1, 1, tzinfo=timezone.utc).isoformat(),
            },
        )
        created = await self._create(client)
        await client.post(f"/api/v1/invoices/{created['id']}/discount-code", json={"code": "SCHOLAR"})

        response = await client.post(f"/api/v1/invoices/{created['id']}/issue")
        assert response.status_code == 200
        issued = response.json()["data"]
        assert issued["status"] == "paid"
        assert issued["total_amount"] == "0.00"
        assert issued["discounts"][0]["usage_committed"] is True

        response = await client.get("/api/v1/discounts/SCHOLAR")
        assert response.json()["data"]["current_usage"] == 1

    async def test_remove_discount_entry(self, client: AsyncClient):
        created = await self._create(client)
        response = await client.post(
            f"/api/v1/invoices/{created['id']}/discounts",
            json={"discount_type": "fixed_amount", "value": "40"},
        )
        entry_id = response.json()["data"]["discounts"][0]["id"]

        response = await client.delete(f"/api/v1/invoices/{created['id']}/discounts/{entry_id}")
        assert response.status_code == 200
        data = response.json()["data"]
        assert data["discounts"] == []
        assert data["total_amount"] == "140.00"

        response = await client.delete(f"/api/v1/invoices/{created['id']}/discounts/{entry_id}")
        assert response.status_code == 404
