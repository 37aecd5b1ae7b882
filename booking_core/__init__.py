"""
Appointment scheduling core for a multi-tenant services marketplace.

Modules:
    timegrid: "HH:MM" <-> minutes arithmetic
    availability: bookable start times per staff member
    reservation: atomic booking creation
    lifecycle: status state machine and authorization
    booking_query: customer / vendor / single-booking views
"""

__version__ = "0.1.0"
