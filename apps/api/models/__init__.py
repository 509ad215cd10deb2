"""Models package."""

from .user import User
from .credit_account import CreditAccount
from .credit_transaction import CreditTransaction
from .service_pricing import ServicePricing
from .report import Report, ReportAttachment
