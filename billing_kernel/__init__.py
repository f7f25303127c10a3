"""
Billing Kernel

Shared foundation for the billing and timebank consumption engine:
- Agreement and time entry value objects
- Money and hour arithmetic in Decimal
- Typed, coded exceptions
- Structured JSON logging
- Injectable clock
- SQLAlchemy base and the persistence-side timebank service
"""

__version__ = "0.1.0"
