from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from schoola_billing.core.documents.models import DocumentSequence
from schoola_billing.shared.utils.dates import utc_now


class DocumentNumberGenerator:
    """
    Year-scoped sequential numbers for payments and invoices.

    Two formats share one counter table:
        generate("PAY")         -> PAY-2026-000042
        issue_number("INV")     -> 2026-000123

    The counter for a (scope, year) pair only ever grows, so a number is never
    handed out twice, even when the document it was issued for is later voided.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def _locked_sequence(self, scope: str, year: int) -> DocumentSequence:
        stmt = (
            select(DocumentSequence)
            .where(DocumentSequence.scope == scope, DocumentSequence.year == year)
            .with_for_update()
        )
        sequence = (await self.session.execute(stmt)).scalar_one_or_none()
        if sequence is not None:
            return sequence

        self.session.add(DocumentSequence(scope=scope, year=year, last_number=0))
        await self.session.flush()
        return (await self.session.execute(stmt)).scalar_one()

    async def next_value(self, scope: str, year: int | None = None) -> tuple[int, int]:
        """Reserve the next counter value. Returns (year, number)."""
        year = year or utc_now().year
        sequence = await self._locked_sequence(scope.upper(), year)
        sequence.last_number += 1
        await self.session.flush()
        return year, sequence.last_number

    async def generate(self, prefix: str, year: int | None = None) -> str:
        """Next number in format PREFIX-YYYY-NNNNNN."""
        year, number = await self.next_value(prefix, year)
        return f"{prefix.upper()}-{year}-{number:06d}"

    async def issue_number(self, sequence_scope: str, year: int | None = None) -> str:
        """Next number in format YYYY-NNNNNN, unique within sequence_scope and year."""
        year, number = await self.next_value(sequence_scope, year)
        return f"{year}-{number:06d}"


async def get_document_number(session: AsyncSession, prefix: str, year: int | None = None) -> str:
    return await DocumentNumberGenerator(session).generate(prefix, year)
