from salesdesk.sales.api import accounts_router, handovers_router, opportunities_router, quotes_router
from salesdesk.sales.models import Account, Approval, Handover, Opportunity, Quote
from salesdesk.sales.service import SalesService, sales_service

__all__ = [
    "accounts_router",
    "opportunities_router",
    "quotes_router",
    "handovers_router",
    "Account",
    "Opportunity",
    "Quote",
    "Approval",
    "Handover",
    "SalesService",
    "sales_service",
]
