# authsession/services/_shared/base.py
from __future__ import annotations

from collections.abc import Callable
from datetime import datetime
from typing import TypeVar

from authsession.core.clock import Clock, SystemClock
from authsession.services._shared.deadline import Deadline

T = TypeVar("T")


class BaseService:
    """
    Base class for application services.

    Responsibilities
    ----------------
    * Own the time source so every decision in one call sees one clock.
    * Run collaborator calls under the caller's deadline (fail closed).
    * Keep services orchestration-only, no web/ORM leakage.

    Notes
    -----
    Services hold no per-request state; one instance is shared by every
    request thread.
    """

    def __init__(self, *, clock: Clock | None = None) -> None:
        """
        Initialize the base service.

        :param clock: Time source (wall clock by default).
        :type clock: Clock | None
        """
        self.clock = clock or SystemClock()

    def now_utc(self) -> datetime:
        return self.clock.now()

    # -------------------------- Collaborator calls ---------------------------

    def guarded(
        self,
        backend: str,
        deadline: Deadline | None,
        fn: Callable[..., T],
        *args,
        **kwargs,
    ) -> T:
        """
        Invoke a store/cache operation once the deadline has been checked.

        Adapters translate their driver errors into
        :class:`~authsession.services._shared.errors.StorageUnavailableError`;
        nothing is retried here.

        :param backend: Collaborator name used in errors and logs.
        :param deadline: Caller-supplied deadline, or ``None``.
        :param fn: Operation to call.
        :raises StorageUnavailableError: If the deadline has lapsed.
        """
        if deadline is not None:
            deadline.check(backend)
        return fn(*args, **kwargs)
