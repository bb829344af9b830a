from .tenancy import Organization
from .auth import User, SessionToken
from .customers import Customer, Vehicle
from .catalog import Service
from .bookings import Booking, JobCard
from .billing import Invoice, DocumentSequence
from .events import ChangeEvent

__all__ = [
    'Organization',
    'User', 'SessionToken',
    'Customer', 'Vehicle',
    'Service',
    'Booking', 'JobCard',
    'Invoice', 'DocumentSequence',
    'ChangeEvent',
]
