# scripts/db/seed_db.py
import csv
from pathlib import Path
from typing import Any

from app.db import DbManager
from app.db.models import (
    Chair,
    DbBaseModel,
    Patient,
    Provider,
    TreatmentOption,
    TreatmentPlan,
    TreatmentPlanStatus,
)


def write_records_to_csv(filename: str, records: list[DbBaseModel], fieldnames: list[str]):
    """Write selected ORM columns to CSV."""
    if not records:
        return

    path = Path(filename)
    path.parent.mkdir(parents=True, exist_ok=True)

    with path.open("w", newline="", encoding="utf-8") as f:
        writer = csv.DictWriter(f, fieldnames=fieldnames)
        writer.writeheader()
        for record in records:
            row = {}
            for name in fieldnames:
                value = getattr(record, name)
                row[name] = value.isoformat() if hasattr(value, "isoformat") else value
            writer.writerow(row)


async def create_schema(db_manager: DbManager) -> None:
    """Create every table from the models. Meant for SQLite dev databases."""
    async with db_manager.engine.begin() as conn:
        await conn.run_sync(DbBaseModel.metadata.create_all)


def build_patients(clinic_id: str, template: dict[str, Any], count: int) -> list[Patient]:
    patients = []
    for i in range(1, count + 1):
        minor = i % 5 == 0
        patients.append(
            Patient(
                patient_id=DbBaseModel.generate_uuid(),
                clinic_id=clinic_id,
                first_name=f"{template['first_name']} {i}",
                last_name=template["last_name"],
                date_of_birth=template["minor_date_of_birth"] if minor else template["date_of_birth"],
                contact_info=template["contact_info"],
            )
        )
    return patients


async def seed_clinic(
    db_manager: DbManager,
    clinic_id: str,
    data_template: dict[str, Any],
    patients: int,
    export_csv: bool = False,
    csv_dir: str = "data/seed",
) -> dict[str, list[DbBaseModel]]:
    """
    Seed one clinic: providers, chairs, patients and a presented treatment
    plan per patient.

    Args:
        db_manager: Initialized DbManager instance
        clinic_id: Tenant to seed
        data_template: See scripts/db/data_template.py
        patients: Number of patients to generate
        export_csv: Whether to export the seeded patients to CSV
        csv_dir: Directory to save CSV files

    Returns:
        Dict mapping table names to the inserted ORM objects
    """
    providers = [
        Provider(
            provider_id=DbBaseModel.generate_uuid(),
            clinic_id=clinic_id,
            staff_user_id=DbBaseModel.generate_uuid(),
            is_active=True,
            **provider,
        )
        for provider in data_template["providers"]
    ]
    chairs = [
        Chair(
            chair_id=DbBaseModel.generate_uuid(),
            clinic_id=clinic_id,
            is_active=True,
            **chair,
        )
        for chair in data_template["chairs"]
    ]
    patient_rows = build_patients(clinic_id, data_template["patients"], patients)

    plan_template = data_template["treatment_plan"]
    plans = []
    for patient in patient_rows:
        plan = TreatmentPlan(
            plan_id=DbBaseModel.generate_uuid(),
            clinic_id=clinic_id,
            patient_id=patient.patient_id,
            plan_name=plan_template["plan_name"],
            status=TreatmentPlanStatus.PRESENTED,
        )
        plan.options = [
            TreatmentOption(
                option_id=DbBaseModel.generate_uuid(),
                option_number=number,
                **option,
            )
            for number, option in enumerate(plan_template["options"], start=1)
        ]
        plans.append(plan)

    async with db_manager.session() as session:
        session.add_all([*providers, *chairs, *patient_rows, *plans])
        # Commit happens automatically on context exit

    if export_csv:
        write_records_to_csv(
            str(Path(csv_dir) / "patients.csv"),
            patient_rows,  # type: ignore[arg-type]
            ["patient_id", "clinic_id", "first_name", "last_name", "date_of_birth"],
        )
        write_records_to_csv(
            str(Path(csv_dir) / "providers.csv"),
            providers,  # type: ignore[arg-type]
            ["provider_id", "clinic_id", "staff_user_id", "first_name", "last_name"],
        )

    return {
        "providers": providers,  # type: ignore[dict-item]
        "chairs": chairs,  # type: ignore[dict-item]
        "patients": patient_rows,  # type: ignore[dict-item]
        "treatment_plans": plans,  # type: ignore[dict-item]
    }
