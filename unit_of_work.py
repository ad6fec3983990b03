"""
Unit of work

A UnitOfWork scopes a group of writes that must land together (placing or
cancelling an order, approving a submission). Operations receive one as a
parameter and use it as a context manager:

    with uow:
        db["product"].update_one(filt, update, **uow.options)
        uow.on_rollback(db["product"].update_one, filt, undo)

Leaving the block normally commits. Leaving it with an exception rolls back
and the exception propagates. Every pymongo call made inside the scope must
pass **uow.options so it joins the session when there is one.

TransactionalUnitOfWork delegates to a MongoDB multi-document transaction
(replica set required). CompensatingUnitOfWork has no session: on rollback
it replays the registered compensating actions in reverse order.
"""
import logging
from typing import Any, Callable, Dict, List, Tuple

logger = logging.getLogger("storefront.unit_of_work")


class UnitOfWork:
    def __init__(self):
        self._undo: List[Tuple[Callable, tuple, dict]] = []
        self._active = False

    @property
    def options(self) -> Dict[str, Any]:
        return {}

    def on_rollback(self, fn: Callable, *args, **kwargs) -> None:
        self._undo.append((fn, args, kwargs))

    def begin(self) -> None:
        if self._active:
            raise RuntimeError("Unit of work already active")
        self._undo = []
        self._active = True

    def commit(self) -> None:
        self._undo = []
        self._active = False

    def rollback(self) -> None:
        self._undo = []
        self._active = False

    def __enter__(self):
        self.begin()
        return self

    def __exit__(self, exc_type, exc, tb):
        if exc_type is None:
            self.commit()
        else:
            self.rollback()
        return False


class CompensatingUnitOfWork(UnitOfWork):
    def rollback(self) -> None:
        undo, self._undo = self._undo, []
        self._active = False
        for fn, args, kwargs in reversed(undo):
            try:
                fn(*args, **kwargs)
            except Exception:
                # keep unwinding; the remaining actions are independent
                logger.exception("Compensating action %s failed", getattr(fn, "__name__", fn))


class TransactionalUnitOfWork(UnitOfWork):
    def __init__(self, client):
        super().__init__()
        self.client = client
        self.session = None

    @property
    def options(self) -> Dict[str, Any]:
        return {"session": self.session} if self.session is not None else {}

    def begin(self) -> None:
        super().begin()
        self.session = self.client.start_session()
        self.session.start_transaction()

    def commit(self) -> None:
        try:
            self.session.commit_transaction()
        finally:
            self._end()
            super().commit()

    def rollback(self) -> None:
        try:
            self.session.abort_transaction()
        finally:
            self._end()
            super().rollback()

    def _end(self):
        if self.session is not None:
            self.session.end_session()
            self.session = None
