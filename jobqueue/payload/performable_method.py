"""
Deferred method calls against addressable objects.
"""

import inspect
import types
from typing import Any


class PerformableMethod:
    """
    A method call to make later: target, method name and positional args.

    The target is either a stored entity (an instance of a kind registered
    with the payload registry) or a named target such as a class or service
    object. Both are persisted as references and resolved again when the job
    is decoded.

    A decoded call is named after the reference it was stored under
    ("Kind#method" or "Name.method"), so it logs under the same name before
    and after loading.
    """

    def __init__(
        self,
        target: Any,
        method: str,
        args: tuple | list = (),
        name: str | None = None,
    ):
        if not callable(getattr(target, method, None)):
            raise AttributeError(
                f"{_target_label(target)} has no method {method!r} to defer"
            )
        self.target = target
        self.method = method
        self.args = list(args)
        self._name = name

    @property
    def display_name(self) -> str:
        if self._name is not None:
            return self._name
        if _is_class_level(self.target):
            return f"{_target_label(self.target)}.{self.method}"
        return f"{_target_label(self.target)}#{self.method}"

    def perform(self) -> Any:
        return getattr(self.target, self.method)(*self.args)

    def __repr__(self) -> str:
        return f"PerformableMethod({self.display_name}, args={self.args!r})"


def _is_class_level(target: Any) -> bool:
    return inspect.isclass(target) or isinstance(target, types.ModuleType)


def _target_label(target: Any) -> str:
    if _is_class_level(target):
        return target.__name__
    return type(target).__name__
