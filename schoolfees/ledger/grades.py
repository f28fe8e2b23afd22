"""Grade catalogue: the grade labels a school prices, and their registration-fee category."""

from typing import List

from schoolfees.core.enums import GradeCategory

MATERNAL_GRADES = ["Maternal"]
PRIMARY_GRADES = [
    "1ère année primaire",
    "2ème année primaire",
    "3ème année primaire",
    "4ème année primaire",
    "5ème année primaire",
    "6ème année primaire",
]
SECONDARY_GRADES = [
    "7ème année",
    "8ème année",
    "9ème année",
    "1ère année lycée",
    "2ème année lycée",
    "3ème année lycée",
    "4ème année lycée",
]

MONTH_NAMES = [
    "Janvier", "Février", "Mars", "Avril", "Mai", "Juin",
    "Juillet", "Août", "Septembre", "Octobre", "Novembre", "Décembre",
]


def available_grades() -> List[str]:
    """All grade labels a pricing configuration must price, in school order."""
    return MATERNAL_GRADES + PRIMARY_GRADES + SECONDARY_GRADES


def grade_category(grade: str) -> GradeCategory:
    if grade in MATERNAL_GRADES or grade in PRIMARY_GRADES:
        return GradeCategory.EARLY
    if grade in SECONDARY_GRADES:
        return GradeCategory.MID_LATE
    return GradeCategory.UNKNOWN


def month_name(month: int) -> str:
    return MONTH_NAMES[month - 1]
