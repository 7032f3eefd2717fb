"""
SecBank Core Banking System

Administration backend for a core banking system: JWT authentication,
role-based access control, customer and CASA account management with a
hash-chained audit trail.
"""

__version__ = "1.0.0"
