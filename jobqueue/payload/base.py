"""
The executable capability every job handler provides.
"""

import inspect
from typing import Any, Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict


@runtime_checkable
class Performable(Protocol):
    """
    Anything a worker can run.

    perform() may be a plain or a coroutine function; display_name is the
    short label used in logs.
    """

    display_name: str

    def perform(self) -> Any: ...


def is_performable(obj: Any) -> bool:
    """Check whether obj can be enqueued."""
    return callable(getattr(obj, "perform", None)) and isinstance(
        getattr(obj, "display_name", None), str
    )


async def run_performable(handler: Performable) -> Any:
    """Invoke a handler, awaiting the result when perform() is async."""
    result = handler.perform()
    if inspect.isawaitable(result):
        result = await result
    return result


class PayloadObject(BaseModel):
    """
    Base class for self-contained job handlers.

    Fields are the job's arguments and are stored as JSON. Subclasses
    implement perform() and are registered under a discriminator:

        @register_handler("send_welcome_email")
        class SendWelcomeEmail(PayloadObject):
            user_id: int

            async def perform(self) -> None:
                ...
    """

    model_config = ConfigDict(extra="forbid")

    @property
    def display_name(self) -> str:
        return type(self).__name__

    def perform(self) -> Any:
        raise NotImplementedError(f"{type(self).__name__} must implement perform()")
