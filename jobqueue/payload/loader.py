"""
Startup loading of application handler modules.

Workers and the admin API can only decode job types, entity kinds and named
targets that were registered in their own process. Operators name the
modules that do the registering:

    HANDLER_MODULES='["billing.jobs", "reports.jobs:registry"]'
    jobqueue jobs work -r billing.jobs -r reports.jobs:registry

A plain module path is imported for its registrations on the default
registry. ``module:attribute`` additionally selects a PayloadRegistry
instance defined in that module.
"""

import importlib
import logging
from collections.abc import Iterable

from jobqueue.errors import ConfigurationError
from jobqueue.payload.registry import PayloadRegistry, default_registry

logger = logging.getLogger(__name__)


def load_registry(locators: Iterable[str]) -> PayloadRegistry:
    """
    Import handler modules and return the registry workers should use.

    Args:
        locators: Module paths, each optionally suffixed with
            ``:attribute`` naming a PayloadRegistry.

    Returns:
        The registry selected by a ``module:attribute`` locator, or the
        default registry when none selects one.

    Raises:
        ConfigurationError: If a module cannot be imported, an attribute is
            not a PayloadRegistry, or two different registries are selected.
    """
    selected: PayloadRegistry | None = None

    for locator in locators:
        module_path, _, attr_name = locator.strip().partition(":")
        if not module_path:
            raise ConfigurationError(f"Invalid handler module locator: {locator!r}")

        try:
            module = importlib.import_module(module_path)
        except ImportError as e:
            raise ConfigurationError(f"Handler module not found: {module_path} ({e})") from e
        logger.info(f"Loaded handler module {module_path}")

        if not attr_name:
            continue

        registry = getattr(module, attr_name, None)
        if not isinstance(registry, PayloadRegistry):
            raise ConfigurationError(
                f"'{attr_name}' in module '{module_path}' is not a PayloadRegistry "
                f"(got {type(registry).__name__})"
            )
        if selected is not None and registry is not selected:
            raise ConfigurationError(
                f"{locator} selects a second payload registry; a process uses one"
            )
        selected = registry

    return selected or default_registry
