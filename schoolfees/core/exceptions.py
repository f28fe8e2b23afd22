from typing import Optional

from fastapi import status


class ServiceError(Exception):
    """Base exception for service layer errors."""

    def __init__(self, message: str, status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class LedgerError(ServiceError):
    """
    Typed fee-ledger failure. `code` is stable and safe to expose to API clients;
    the ledger is never left partially mutated when one of these is raised.
    """

    code = "LedgerError"
    default_message = "Fee ledger operation failed"
    default_status = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: Optional[str] = None, status_code: Optional[int] = None) -> None:
        super().__init__(message or self.default_message, status_code or self.default_status)


class UnknownGrade(LedgerError):
    code = "UnknownGrade"
    default_message = "Grade is not present in the pricing configuration"


class TierDisabled(LedgerError):
    code = "TierDisabled"
    default_message = "Requested transportation tier is not enabled"


class ConfigurationMissing(LedgerError):
    code = "ConfigurationMissing"
    default_message = "Payment configuration not found. Please set up payment configuration first."
    default_status = status.HTTP_404_NOT_FOUND


class ConfigurationInvalid(LedgerError):
    code = "ConfigurationInvalid"
    default_message = "Pricing configuration is invalid"


class InvalidAcademicYear(LedgerError):
    code = "InvalidAcademicYear"
    default_message = "Academic year must look like 'YYYY-YYYY'"


class StudentNotFound(LedgerError):
    code = "StudentNotFound"
    default_message = "Student not found"
    default_status = status.HTTP_404_NOT_FOUND


class NoClassAssigned(LedgerError):
    code = "NoClassAssigned"
    default_message = "Student is not assigned to any class. Please assign student to a class first."


class LedgerNotFound(LedgerError):
    code = "LedgerNotFound"
    default_message = "Payment record not found. Please generate payment schedule first."
    default_status = status.HTTP_404_NOT_FOUND


class AlreadyExists(LedgerError):
    code = "AlreadyExists"
    default_message = "Payment record already exists for this student"
    default_status = status.HTTP_409_CONFLICT


class NotApplicable(LedgerError):
    code = "NotApplicable"
    default_message = "Component is not applicable for this student"


class AlreadyPaid(LedgerError):
    code = "AlreadyPaid"
    default_message = "Payment already recorded"


class InstallmentNotFound(LedgerError):
    code = "InstallmentNotFound"
    default_message = "Monthly payment not found"
    default_status = status.HTTP_404_NOT_FOUND


class TrackNotApplicable(LedgerError):
    code = "TrackNotApplicable"
    default_message = "Student is not using transportation service"


class AnnualAlreadyPaid(LedgerError):
    code = "AnnualAlreadyPaid"
    default_message = "Annual tuition payment already made"


class NoDiscountApplied(LedgerError):
    code = "NoDiscountApplied"
    default_message = "No discount applied to remove"


class ComponentAlreadyPaid(LedgerError):
    code = "ComponentAlreadyPaid"
    default_message = "Cannot remove a component that has already been paid"


class TierLockedByPayment(LedgerError):
    code = "TierLockedByPayment"
    default_message = "Cannot change transportation type as payments have already been made"


class InvalidAmount(LedgerError):
    code = "InvalidAmount"
    default_message = "Amount is out of range"


class ConcurrentUpdate(LedgerError):
    code = "ConcurrentUpdate"
    default_message = "Payment record was modified concurrently, please retry"
    default_status = status.HTTP_409_CONFLICT


def error_detail(e: ServiceError):
    """HTTPException detail: {code, message} for ledger errors, plain message otherwise."""
    if isinstance(e, LedgerError):
        return {"code": e.code, "message": e.message}
    return e.message
