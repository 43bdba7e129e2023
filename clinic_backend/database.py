from threading import Lock

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker

from clinic_backend.core import config


def make_engine(database_url: str) -> Engine:
    connect_args = {}
    if database_url.startswith("sqlite"):
        # The driver busy timeout bounds how long a writer waits on a locked database.
        connect_args = {
            "check_same_thread": False,
            "timeout": config.TRANSACTION_TIMEOUT_SECONDS,
        }

    return create_engine(
        database_url,
        connect_args=connect_args,
        echo=config.SQL_ECHO,
        pool_pre_ping=True,
    )


engine = make_engine(config.DATABASE_URL)

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
)

Base = declarative_base()

_schema_lock = Lock()
_appointment_schema_checked = False

SCHEDULED_SLOT_INDEX = 'uq_appointments_scheduled_slot'


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def ensure_appointment_schema(bind: Engine | None = None) -> None:
    """Bring an existing ``appointments`` table up to the current layout.

    Older deployments created the table before rescheduling and cancellation
    reasons existed. Missing columns are added in place and the partial unique
    index guarding scheduled slots is created if absent. The check runs once
    per process for the default engine.
    """
    global _appointment_schema_checked

    target = bind or engine
    use_cache = bind is None

    if use_cache and _appointment_schema_checked:
        return

    with _schema_lock:
        if use_cache and _appointment_schema_checked:
            return

        inspector = inspect(target)

        if 'appointments' not in inspector.get_table_names():
            if use_cache:
                _appointment_schema_checked = True
            return

        existing_columns = {column['name'] for column in inspector.get_columns('appointments')}
        migration_steps = [
            ('previous_date', 'ALTER TABLE appointments ADD COLUMN previous_date DATE'),
            ('previous_time', 'ALTER TABLE appointments ADD COLUMN previous_time TIME'),
            ('reschedule_count', 'ALTER TABLE appointments ADD COLUMN reschedule_count INTEGER NOT NULL DEFAULT 0'),
            ('cancellation_reason', 'ALTER TABLE appointments ADD COLUMN cancellation_reason VARCHAR(500)'),
        ]

        with target.begin() as connection:
            for column_name, statement in migration_steps:
                if column_name not in existing_columns:
                    connection.execute(text(statement))
            connection.execute(
                text(
                    f'CREATE UNIQUE INDEX IF NOT EXISTS {SCHEDULED_SLOT_INDEX} '
                    'ON appointments(doctor_id, appointment_date, appointment_time) '
                    "WHERE status = 'scheduled'"
                )
            )
            connection.execute(
                text('CREATE INDEX IF NOT EXISTS idx_appointments_doctor_date ON appointments(doctor_id, appointment_date)')
            )
            connection.execute(
                text('CREATE INDEX IF NOT EXISTS idx_appointments_patient ON appointments(patient_id, status)')
            )

        if use_cache:
            _appointment_schema_checked = True
