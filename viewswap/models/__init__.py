from viewswap.models.account import Account
from viewswap.models.audit_log import AuditLog
from viewswap.models.failed_job import FailedJob
from viewswap.models.ledger_entry import LedgerEntry
from viewswap.models.promotion import Promotion
from viewswap.models.view_record import ViewRecord

__all__ = [
    "Account",
    "AuditLog",
    "FailedJob",
    "LedgerEntry",
    "Promotion",
    "ViewRecord",
]
