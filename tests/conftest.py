# tests/conftest.py
import os

# Configuration is read from the environment on first import of main/app code
os.environ["ENVIRONMENT"] = "development"
os.environ["APP_TITLE"] = "Dental Lifecycle Service (tests)"
os.environ["APP_VERSION"] = "0.1.0"
os.environ["LOG_LEVEL"] = "WARNING"
os.environ["AUTH_JWT_SECRET"] = "test-secret-key-that-is-long-enough-for-hs256"
os.environ["AUTH_JWT_ALGORITHM"] = "HS256"
os.environ.pop("AUTH_JWT_AUDIENCE", None)
os.environ.pop("DB_DRIVER", None)

from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, AsyncGenerator, Callable, Optional

import httpx
import jwt
import pytest

from common.config import initialize_config

initialize_config()

from app.db import DbManager
from app.db.models import (
    Appointment,
    AppointmentSource,
    AppointmentStatus,
    Chair,
    DbBaseModel,
    Patient,
    Provider,
    TreatmentOption,
    TreatmentPlan,
    TreatmentPlanStatus,
)
from app.services.v1 import ServiceContext

CLINIC_A = "clinic-a"
CLINIC_B = "clinic-b"
ACTOR = "user-1"
JWT_SECRET = os.environ["AUTH_JWT_SECRET"]

ALL_PERMISSIONS = frozenset(
    {
        "booking:read",
        "booking:write",
        "treatment:read",
        "treatment:update",
        "treatment:delete",
        "insurance:read",
        "insurance:create",
        "insurance:update",
        "insurance:submit_claim",
        "insurance:void",
    }
)

# Monday
START_OF_TESTS = datetime(2026, 1, 5, 8, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


@dataclass
class Seed:
    patient_id: str
    minor_patient_id: str
    provider_id: str
    second_provider_id: str
    chair_id: str
    plan_id: str
    option_id: str
    minor_plan_id: str
    staff_user_id: str
    other_clinic_provider_id: str
    other_clinic_patient_id: str
    other_clinic_plan_id: str


@pytest.fixture
async def db_manager(tmp_path) -> AsyncGenerator[DbManager, None]:
    manager = DbManager(f"sqlite+aiosqlite:///{tmp_path / 'lifecycle.db'}")
    async with manager.engine.begin() as conn:
        await conn.run_sync(DbBaseModel.metadata.create_all)
    yield manager
    await manager.dispose()


@pytest.fixture
async def seed(db_manager: DbManager) -> Seed:
    staff_user_id = DbBaseModel.generate_uuid()
    ids = {name: DbBaseModel.generate_uuid() for name in Seed.__dataclass_fields__}
    ids["staff_user_id"] = staff_user_id

    async with db_manager.session() as session:
        session.add_all(
            [
                Patient(
                    patient_id=ids["patient_id"],
                    clinic_id=CLINIC_A,
                    first_name="Ada",
                    last_name="Adult",
                    date_of_birth=date(1985, 3, 14),
                ),
                Patient(
                    patient_id=ids["minor_patient_id"],
                    clinic_id=CLINIC_A,
                    first_name="Max",
                    last_name="Minor",
                    date_of_birth=date(2015, 9, 1),
                ),
                Provider(
                    provider_id=ids["provider_id"],
                    clinic_id=CLINIC_A,
                    staff_user_id=staff_user_id,
                    first_name="Ana",
                    last_name="Reyes",
                    is_active=True,
                ),
                Provider(
                    provider_id=ids["second_provider_id"],
                    clinic_id=CLINIC_A,
                    staff_user_id=DbBaseModel.generate_uuid(),
                    first_name="Ben",
                    last_name="Okafor",
                    is_active=True,
                ),
                Chair(chair_id=ids["chair_id"], clinic_id=CLINIC_A, name="Operatory 1", is_active=True),
                TreatmentPlan(
                    plan_id=ids["plan_id"],
                    clinic_id=CLINIC_A,
                    patient_id=ids["patient_id"],
                    plan_name="Crown #14",
                    status=TreatmentPlanStatus.PRESENTED,
                ),
                TreatmentPlan(
                    plan_id=ids["minor_plan_id"],
                    clinic_id=CLINIC_A,
                    patient_id=ids["minor_patient_id"],
                    plan_name="Sealants",
                    status=TreatmentPlanStatus.PRESENTED,
                ),
                # Same staff member working at a second location
                Provider(
                    provider_id=ids["other_clinic_provider_id"],
                    clinic_id=CLINIC_B,
                    staff_user_id=staff_user_id,
                    first_name="Ana",
                    last_name="Reyes",
                    is_active=True,
                ),
                Patient(
                    patient_id=ids["other_clinic_patient_id"],
                    clinic_id=CLINIC_B,
                    first_name="Olga",
                    last_name="Other",
                    date_of_birth=date(1970, 1, 1),
                ),
                TreatmentPlan(
                    plan_id=ids["other_clinic_plan_id"],
                    clinic_id=CLINIC_B,
                    patient_id=ids["other_clinic_patient_id"],
                    plan_name="Bridge",
                    status=TreatmentPlanStatus.PRESENTED,
                ),
            ]
        )
        await session.flush()
        session.add(
            TreatmentOption(
                option_id=ids["option_id"],
                plan_id=ids["plan_id"],
                option_number=1,
                option_name="Porcelain crown",
                estimated_cost=Decimal("1200.00"),
            )
        )
    return Seed(**ids)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(START_OF_TESTS)


@pytest.fixture
async def session(db_manager: DbManager):
    async with db_manager.session_maker() as s:
        yield s


@pytest.fixture
def make_service(clock: FakeClock) -> Callable[..., Any]:
    """Build a service bound to a session, clinic and the fake clock."""

    def factory(cls, session, clinic_id: str = CLINIC_A, audit=None, **kwargs):  # type: ignore[no-untyped-def]
        ctx = ServiceContext(clinic_id=clinic_id, actor_id=ACTOR, permissions=ALL_PERMISSIONS)
        return cls(session, ctx, audit=audit, clock=clock, **kwargs)

    return factory


async def insert_appointment(
    session,
    *,
    clinic_id: str,
    patient_id: str,
    provider_id: str,
    start: datetime,
    minutes: int = 60,
    chair_id: Optional[str] = None,
    status: AppointmentStatus = AppointmentStatus.SCHEDULED,
) -> Appointment:
    appointment = Appointment(
        appointment_id=DbBaseModel.generate_uuid(),
        clinic_id=clinic_id,
        patient_id=patient_id,
        provider_id=provider_id,
        chair_id=chair_id,
        start_time=start,
        end_time=start + timedelta(minutes=minutes),
        duration=minutes,
        status=status,
        source=AppointmentSource.DIRECT,
        booked_by=ACTOR,
    )
    session.add(appointment)
    await session.commit()
    return appointment


def make_token(
    clinic_id: str = CLINIC_A,
    permissions=ALL_PERMISSIONS,
    sub: str = ACTOR,
    secret: str = JWT_SECRET,
) -> str:
    payload = {
        "sub": sub,
        "clinic_id": clinic_id,
        "permissions": sorted(permissions),
        "exp": datetime.now(timezone.utc) + timedelta(hours=1),
    }
    return jwt.encode(payload, secret, algorithm="HS256")


def auth_headers(**kwargs: Any) -> dict[str, str]:
    return {"Authorization": f"Bearer {make_token(**kwargs)}"}


@pytest.fixture
async def client(db_manager: DbManager) -> AsyncGenerator[httpx.AsyncClient, None]:
    from main import app

    # ASGITransport does not run lifespan; hand the test database over directly
    app.state.db_manager = db_manager
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
