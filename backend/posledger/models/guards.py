# Overview: ORM-level guards that keep ledger history append-only.

from __future__ import annotations

from sqlalchemy import event, inspect
from sqlalchemy.orm import object_session


class ImmutableRecordError(RuntimeError):
    """Raised when code tries to update or delete an append-only record."""


def committed_value(target, attr: str):
    """Value of an attribute as last loaded from the database."""
    hist = inspect(target).attrs[attr].history
    if hist.deleted:
        return hist.deleted[0]
    if hist.unchanged:
        return hist.unchanged[0]
    return getattr(target, attr)


def has_column_changes(target) -> bool:
    # before_update also fires for objects whose only change is a collection
    session = object_session(target)
    if session is None:
        return True
    return session.is_modified(target, include_collections=False)


def append_only(model):
    """
    Class decorator: reject ORM updates and deletes for a model.

    Bulk Core statements bypass mapper events; nothing in the services issues
    those against append-only tables.
    """
    @event.listens_for(model, "before_update")
    def _prevent_update(mapper, connection, target):
        if not has_column_changes(target):
            return
        raise ImmutableRecordError(
            f"{model.__name__} records are immutable - cannot modify id={target.id}"
        )

    @event.listens_for(model, "before_delete")
    def _prevent_delete(mapper, connection, target):
        raise ImmutableRecordError(
            f"{model.__name__} records are append-only - cannot delete id={target.id}"
        )

    return model
