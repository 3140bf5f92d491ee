"""
Payload module.
Handler capability, handler variants and the registry that stores and
restores them.
"""

from jobqueue.payload.adhoc import AdhocInstruction
from jobqueue.payload.base import (
    PayloadObject,
    Performable,
    is_performable,
    run_performable,
)
from jobqueue.payload.loader import load_registry
from jobqueue.payload.performable_method import PerformableMethod
from jobqueue.payload.registry import (
    ADHOC_JOB_TYPE,
    METHOD_JOB_TYPE,
    PayloadRegistry,
    default_registry,
    get_handler,
    list_handlers,
    register_handler,
)

__all__ = [
    "Performable",
    "PayloadObject",
    "PerformableMethod",
    "AdhocInstruction",
    "PayloadRegistry",
    "default_registry",
    "register_handler",
    "get_handler",
    "list_handlers",
    "load_registry",
    "is_performable",
    "run_performable",
    "METHOD_JOB_TYPE",
    "ADHOC_JOB_TYPE",
]
