"""
Ad-hoc instructions for operator tooling.

An AdhocInstruction carries a snippet of Python source that a worker
executes with the registry's named targets in scope. It exists so an
operator can queue a one-off action from the command line
(``jobqueue jobs enqueue 'Reports.rebuild()'``).

The source is executed as-is. Only enqueue content you would be willing to
run in the worker process yourself; application code should use registered
handlers or deferred method calls instead, and the HTTP API refuses this
payload type.
"""

from typing import Any

from jobqueue.constants import JOB_NAME_PREVIEW_LENGTH


class AdhocInstruction:
    """Caller-trusted Python source executed by a worker."""

    def __init__(self, source: str, namespace: dict[str, Any] | None = None):
        if not isinstance(source, str) or not source.strip():
            raise ValueError("An ad-hoc instruction needs non-empty source")
        self.source = source
        self.namespace = dict(namespace or {})

    @property
    def display_name(self) -> str:
        text = " ".join(self.source.split())
        if len(text) > JOB_NAME_PREVIEW_LENGTH:
            text = f"{text[:JOB_NAME_PREVIEW_LENGTH]}..."
        return f"adhoc({text})"

    def perform(self) -> None:
        code = compile(self.source, "<adhoc-instruction>", "exec")
        exec(code, {"__name__": "__adhoc__", **self.namespace})

    def __repr__(self) -> str:
        return f"AdhocInstruction({self.source!r})"
