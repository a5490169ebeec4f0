from app.models.accounts import Account, Transaction
from app.models.autopay import AutopayRule, AutopayRun, DailyJobRun
from app.models.bills import BillOccurrence, BillOccurrenceAllocation, BillPaymentEvent, BillTemplate
from app.models.settings import HouseholdPreferences

__all__ = [
    "Account",
    "AutopayRule",
    "AutopayRun",
    "BillOccurrence",
    "BillOccurrenceAllocation",
    "BillPaymentEvent",
    "BillTemplate",
    "DailyJobRun",
    "HouseholdPreferences",
    "Transaction",
]
