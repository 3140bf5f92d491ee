"""
Persistent Multi-Worker Job Queue

Deferred work is stored as rows in a shared database. Independent worker
processes compete for those rows using time-bounded leases taken with atomic
conditional updates, execute them, and retire them with retry/backoff.
"""

__version__ = "1.0.0"
