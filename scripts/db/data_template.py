"""
Templates for the demo clinic seed.

    Example: Seed one clinic with the default staff and 20 patients
        await seed_clinic(db_manager, "clinic-demo", DEFAULT_CLINIC_TEMPLATE, patients=20)

Patients are generated from PATIENT_DATA_TEMPLATE; every fifth one is a
minor so guardian handling can be exercised.
"""

from datetime import date
from decimal import Decimal
from typing import Any

PROVIDER_DATA_TEMPLATE: list[dict[str, Any]] = [
    {"first_name": "Ana", "last_name": "Reyes", "specialty": "General Dentistry"},
    {"first_name": "Ben", "last_name": "Okafor", "specialty": "Orthodontics"},
    {"first_name": "Chloe", "last_name": "Martin", "specialty": "Hygiene"},
]

CHAIR_DATA_TEMPLATE: list[dict[str, Any]] = [
    {"name": "Operatory 1"},
    {"name": "Operatory 2"},
    {"name": "Hygiene Room"},
]

PATIENT_DATA_TEMPLATE: dict[str, Any] = {
    "first_name": "Patient",
    "last_name": "Demo",
    "date_of_birth": date(1990, 1, 1),
    "minor_date_of_birth": date(2014, 6, 1),
    "contact_info": "555-0200",
}

TREATMENT_PLAN_TEMPLATE: dict[str, Any] = {
    "plan_name": "Comprehensive restorative plan",
    "options": [
        {"option_name": "Crown", "estimated_cost": Decimal("1450.00")},
        {"option_name": "Onlay", "estimated_cost": Decimal("1100.00")},
    ],
}

DEFAULT_CLINIC_TEMPLATE: dict[str, Any] = {
    "providers": PROVIDER_DATA_TEMPLATE,
    "chairs": CHAIR_DATA_TEMPLATE,
    "patients": PATIENT_DATA_TEMPLATE,
    "treatment_plan": TREATMENT_PLAN_TEMPLATE,
}

__all__ = [
    "DEFAULT_CLINIC_TEMPLATE",
    "PROVIDER_DATA_TEMPLATE",
    "CHAIR_DATA_TEMPLATE",
    "PATIENT_DATA_TEMPLATE",
    "TREATMENT_PLAN_TEMPLATE",
]
