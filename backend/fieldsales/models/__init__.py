from .tenancy import Company, User, ROLE_ADMIN, ROLE_SALES, VALID_ROLES
from .catalog import Product, UNIT_TYPES
from .customers import Customer, VisitPlan, CustomerCleanupJob, CLEANUP_STATUS_RUNNING, CLEANUP_STATUS_DONE
from .stock import StockBalance, StockLedgerEntry
from .reports import (
    DailyReport, ReportVisit, Sample,
    VISIT_STATUSES, VISIT_STATUS_VISITED, VISIT_STATUS_NOT_VISITED,
    SAMPLE_KINDS, SAMPLE_KIND_CUSTOMER, SAMPLE_KIND_PERSONAL,
)
from .notifications import Notification

__all__ = [
    'Company', 'User', 'ROLE_ADMIN', 'ROLE_SALES', 'VALID_ROLES',
    'Product', 'UNIT_TYPES',
    'Customer', 'VisitPlan', 'CustomerCleanupJob', 'CLEANUP_STATUS_RUNNING', 'CLEANUP_STATUS_DONE',
    'StockBalance', 'StockLedgerEntry',
    'DailyReport', 'ReportVisit', 'Sample',
    'VISIT_STATUSES', 'VISIT_STATUS_VISITED', 'VISIT_STATUS_NOT_VISITED',
    'SAMPLE_KINDS', 'SAMPLE_KIND_CUSTOMER', 'SAMPLE_KIND_PERSONAL',
    'Notification',
]
