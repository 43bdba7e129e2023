"""Appointment model definitions."""

from sqlalchemy import Column, Date, DateTime, ForeignKey, Index, Integer, String, Time, func, text

from clinic_backend.database import Base, SCHEDULED_SLOT_INDEX

STATUS_SCHEDULED = 'scheduled'
STATUS_COMPLETED = 'completed'
STATUS_CANCELED = 'canceled'
APPOINTMENT_STATUSES = (STATUS_SCHEDULED, STATUS_COMPLETED, STATUS_CANCELED)

MAX_CANCELLATION_REASON_LENGTH = 500


class Appointment(Base):
    """A patient's booking of one doctor slot.

    At most one ``scheduled`` row may exist per doctor, date and time; the
    partial unique index below holds that even if a transaction slips.
    """
    __tablename__ = "appointments"
    __table_args__ = (
        Index(
            SCHEDULED_SLOT_INDEX,
            'doctor_id',
            'appointment_date',
            'appointment_time',
            unique=True,
            sqlite_where=text("status = 'scheduled'"),
            postgresql_where=text("status = 'scheduled'"),
        ),
        Index('idx_appointments_doctor_date', 'doctor_id', 'appointment_date'),
        Index('idx_appointments_patient', 'patient_id', 'status'),
    )

    id = Column(Integer, primary_key=True)
    patient_id = Column(Integer, ForeignKey("patients.id"), nullable=False)
    doctor_id = Column(Integer, ForeignKey("doctors.id"), nullable=False)
    appointment_date = Column(Date, nullable=False)
    appointment_time = Column(Time, nullable=False)
    status = Column(String(16), nullable=False, default=STATUS_SCHEDULED)
    previous_date = Column(Date, nullable=True)
    previous_time = Column(Time, nullable=True)
    reschedule_count = Column(Integer, nullable=False, default=0)
    cancellation_reason = Column(String(MAX_CANCELLATION_REASON_LENGTH), nullable=True)
    created_at = Column(DateTime, server_default=func.now())
