from enum import Enum


class GradeCategory(str, Enum):
    EARLY = "early"  # maternal + primary
    MID_LATE = "mid-late"  # middle + high school
    UNKNOWN = "unknown"


class LedgerComponent(str, Enum):
    TUITION = "tuition"
    REGISTRATION_FEE = "registration_fee"
    UNIFORM = "uniform"
    TRANSPORTATION = "transportation"


class LumpSumComponent(str, Enum):
    UNIFORM = "uniform"
    REGISTRATION_FEE = "registration_fee"


class InstallmentTrack(str, Enum):
    TUITION = "tuition"
    TRANSPORTATION = "transportation"


class TransportTier(str, Enum):
    CLOSE = "close"
    FAR = "far"


class InstallmentStatus(str, Enum):
    pending = "pending"
    partial = "partial"
    paid = "paid"
    overdue = "overdue"


class ComponentStatus(str, Enum):
    not_applicable = "not_applicable"
    pending = "pending"
    partial = "partial"
    completed = "completed"
    overdue = "overdue"


class OverallStatus(str, Enum):
    pending = "pending"
    partial = "partial"
    completed = "completed"
    overdue = "overdue"


class PaymentType(str, Enum):
    MONTHLY = "monthly"
    ANNUAL = "annual"


class DiscountType(str, Enum):
    MONTHLY = "monthly"
    ANNUAL = "annual"


class PaymentMethod(str, Enum):
    CASH = "cash"
    CHECK = "check"
    BANK_TRANSFER = "bank_transfer"
    ONLINE = "online"
