from schoolfees.core.models.tenant import Tenant
from schoolfees.core.models.class_model import SchoolClass
from schoolfees.core.models.student_academic_record import StudentAcademicRecord
from schoolfees.core.models.pricing_configuration import PricingConfiguration, compute_total_months
from schoolfees.core.models.student_fee_ledger import LedgerInstallment, StudentFeeLedger

__all__ = [
    "Tenant",
    "SchoolClass",
    "StudentAcademicRecord",
    "PricingConfiguration",
    "compute_total_months",
    "StudentFeeLedger",
    "LedgerInstallment",
]
