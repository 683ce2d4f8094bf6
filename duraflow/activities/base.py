"""Base class for activities."""

from __future__ import annotations

from typing import Any, ClassVar, Optional

from ..constants import DEFAULT_ACTIVITY_TIMEOUT, DEFAULT_ACTIVITY_TRIES


class Activity:
    """A retryable, timeout-bounded unit of work.

    Subclasses implement ``execute``, either as a plain function (run in a
    worker thread) or as a coroutine. Activities may have side effects and
    read the clock; workflows may not.
    """

    name: ClassVar[Optional[str]] = None
    tries: ClassVar[int] = DEFAULT_ACTIVITY_TRIES
    timeout: ClassVar[float] = DEFAULT_ACTIVITY_TIMEOUT

    def execute(self, *args: Any) -> Any:
        raise NotImplementedError

    @classmethod
    def activity_name(cls) -> str:
        return cls.name or cls.__name__
