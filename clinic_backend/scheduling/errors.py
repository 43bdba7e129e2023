"""Typed failures raised by the scheduling core.

Each error carries a ``message`` that is safe to show to a patient or doctor.
Route handlers translate them to HTTP responses; nothing below the routes
knows about status codes.
"""


class BookingError(Exception):
    message = 'The appointment could not be processed.'
    retryable = False

    def __init__(self, message: str | None = None):
        self.message = message or self.message
        super().__init__(self.message)


class DoctorNotFound(BookingError):
    message = 'Doctor not found.'


class AppointmentNotFound(BookingError):
    message = 'Appointment not found or cannot be modified.'


class InvalidState(BookingError):
    message = 'This appointment can no longer be modified.'


class InvalidSlot(BookingError):
    message = 'The requested time is not a bookable slot.'


class SlotConflict(BookingError):
    message = 'This slot is no longer available. Please pick another time.'


class Contention(BookingError):
    message = 'The booking system is busy. Please try again.'
    retryable = True


class MalformedSchedule(BookingError):
    message = 'Working hours are invalid.'
