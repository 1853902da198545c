"""
Revenue Service - developer earnings from completed app purchases.
"""

from collections.abc import Iterable
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from vibestore.config import Settings, settings
from vibestore.db.models import App, Transaction
from vibestore.models.api import DeveloperRevenueResponse, MonthlyRevenue, TransactionStatus


def developer_share(amount_minor: int, share: float) -> int:
    """Developer's cut of a gross amount, rounded half up to a minor unit."""
    value = Decimal(amount_minor) * Decimal(str(share))
    return int(value.quantize(Decimal(1), rounding=ROUND_HALF_UP))


def summarize_revenue(
    sales: Iterable[tuple[int, datetime]], share: float, currency: str
) -> DeveloperRevenueResponse:
    """
    Group gross sales into monthly developer revenue.

    Args:
        sales: (amount_minor, created_at) per completed transaction
        share: Developer revenue share in (0, 1]
        currency: Reporting currency
    """
    gross_by_month: dict[str, int] = {}
    gross_total = 0
    count = 0

    for amount_minor, created_at in sales:
        month = created_at.strftime("%Y-%m")
        gross_by_month[month] = gross_by_month.get(month, 0) + amount_minor
        gross_total += amount_minor
        count += 1

    monthly = [
        MonthlyRevenue(month=month, revenue_minor=developer_share(gross, share))
        for month, gross in sorted(gross_by_month.items())
    ]

    return DeveloperRevenueResponse(
        total_revenue_minor=developer_share(gross_total, share),
        total_transactions=count,
        revenue_share=share,
        currency=currency,
        monthly=monthly,
    )


class RevenueService:
    """Reads completed sales of a developer's apps."""

    def __init__(self, session: AsyncSession, config: Settings | None = None) -> None:
        self.session = session
        self.config = config or settings

    async def developer_revenue(self, developer_id: UUID) -> DeveloperRevenueResponse:
        stmt = (
            select(Transaction.amount_minor, Transaction.created_at)
            .join(App, App.id == Transaction.app_id)
            .where(
                App.developer_id == developer_id,
                Transaction.status == TransactionStatus.COMPLETED.value,
            )
            .order_by(Transaction.created_at)
        )
        result = await self.session.execute(stmt)
        return summarize_revenue(
            ((amount, created_at) for amount, created_at in result.all()),
            self.config.developer_revenue_share,
            self.config.default_currency,
        )
