# Overview: Org-scoped persistence helpers over the Flask-SQLAlchemy session.

"""
Repositories

One Repository per aggregate root. Every read is scoped by organization; a
record that lives in another organization is indistinguishable from a missing
one. Repositories never commit: the calling service owns the transaction
(and its run_with_retry boundary), so several repository writes land
atomically together.
"""

from __future__ import annotations

from typing import Any, Iterable

from .errors import NotFoundError, ValidationError
from .extensions import db
from .models import CoachingSession, Goal, Payment, User
from .services.concurrency import lock_for_update


class Repository:
    """Generic org-scoped data access for a model with an org_id column."""

    def __init__(self, model, label: str | None = None):
        self.model = model
        self.label = label or model.__name__

    def _scoped(self, org_id: int):
        return db.session.query(self.model).filter(self.model.org_id == org_id)

    def insert(self, entity):
        db.session.add(entity)
        db.session.flush()
        return entity

    def find_by_id(self, org_id: int, record_id: int):
        return self._scoped(org_id).filter(self.model.id == record_id).first()

    def get(self, org_id: int, record_id: int):
        """find_by_id that raises NotFoundError."""
        record = self.find_by_id(org_id, record_id)
        if record is None:
            raise NotFoundError(f"{self.label} {record_id} not found")
        return record

    def lock_by_id(self, org_id: int, record_id: int):
        """SELECT ... FOR UPDATE within the organization; raises NotFoundError."""
        record = lock_for_update(self._scoped(org_id).filter(self.model.id == record_id)).first()
        if record is None:
            raise NotFoundError(f"{self.label} {record_id} not found")
        return record

    def find_many(
        self,
        org_id: int,
        filters: dict[str, Any] | None = None,
        *,
        order_by: Iterable | None = None,
        skip: int = 0,
        limit: int | None = None,
    ) -> list:
        """
        Equality filters by column name. A list/tuple/set value becomes IN (...).
        """
        query = self._scoped(org_id)
        for key, value in (filters or {}).items():
            column = getattr(self.model, key, None)
            if column is None:
                raise ValidationError(f"Unknown filter field: {key}")
            if isinstance(value, (list, tuple, set)):
                query = query.filter(column.in_(list(value)))
            else:
                query = query.filter(column == value)
        if order_by is not None:
            query = query.order_by(*order_by)
        if skip:
            query = query.offset(skip)
        if limit is not None:
            query = query.limit(limit)
        return query.all()

    def update_by_id(self, org_id: int, record_id: int, values: dict[str, Any]):
        record = self.get(org_id, record_id)
        for key, value in values.items():
            setattr(record, key, value)
        db.session.flush()
        return record

    def delete_by_id(self, org_id: int, record_id: int) -> None:
        record = self.get(org_id, record_id)
        db.session.delete(record)
        db.session.flush()


users = Repository(User, "User")
sessions = Repository(CoachingSession, "Session")
goals = Repository(Goal, "Goal")
payments = Repository(Payment, "Payment")
