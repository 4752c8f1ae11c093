"""
pesabook - Source Package

Parsing and reconciliation core for mobile-money (M-PESA) bookkeeping.
Turns confirmation messages and statement exports into canonical,
typed transactions and reconciles them against existing records.

DESIGN PRINCIPLES:
1. Parse what is there, never invent what is not
2. Fail one line, never the whole batch
3. Flag duplicates, let the human decide
4. Every step must be auditable
5. Storage layer belongs to the caller
"""

__version__ = "1.0.0"
__author__ = "pesabook Team"

from pesabook.audit.logger import configure_logging

configure_logging()
