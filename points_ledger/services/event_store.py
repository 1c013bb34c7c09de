"""Event store — purchase_events writes and read projections.

Responsible for:
- Insert-or-update of a ledger row by its natural key (external_session_id)
- Reporting, from the same transaction, whether that write moved the row
  into PAYMENT_SUCCESS (the gate for crediting points)
- Read projections for the admin APIs (all events, by customer, by seller)

Every write commits its own transaction. Database errors roll back the
session and surface as StorageUnavailable so the webhook answers 5xx.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError

from points_ledger.errors import StorageUnavailable
from points_ledger.extensions import db
from points_ledger.models.purchase_event import PurchaseEvent

logger = logging.getLogger(__name__)

_DIALECT_INSERTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


def dialect_insert(table):
    """Return an INSERT supporting ON CONFLICT for the bound database."""
    dialect = db.engine.dialect.name
    try:
        return _DIALECT_INSERTS[dialect](table)
    except KeyError:
        raise RuntimeError(f"Unsupported database dialect: {dialect}") from None


@dataclass
class UpsertResult:
    event: PurchaseEvent
    created: bool
    previous_status: Optional[str]
    applied: bool
    newly_succeeded: bool


def month_bounds(year, month):
    """Return the [start, end) UTC datetimes of a calendar month."""
    start = datetime(year, month, 1, tzinfo=timezone.utc)
    if month == 12:
        end = datetime(year + 1, 1, 1, tzinfo=timezone.utc)
    else:
        end = datetime(year, month + 1, 1, tzinfo=timezone.utc)
    return start, end


class EventStore:
    """Access to the purchase_events ledger."""

    def upsert_event(self, external_session_id, customer_id, status,
                     product_id=None, seller_id=0, points_awarded=0,
                     details=None, preserve_success=False):
        """Insert the row for external_session_id, or overwrite its mutable columns.

        The existing row is locked (SELECT ... FOR UPDATE on PostgreSQL, the
        database write lock on SQLite) between the insert attempt and the
        update, so the prior status read here is the one this write replaces.

        preserve_success: leave a row that already reached PAYMENT_SUCCESS
        untouched. Used for bookkeeping writes (INITIATED, CANCELLED) that
        can race with the completion webhook.

        Returns an UpsertResult; newly_succeeded is True only for the single
        write that moved this key into PAYMENT_SUCCESS.
        Raises StorageUnavailable if the write could not be committed.
        """
        if status not in PurchaseEvent.STATUSES:
            raise ValueError(f"Invalid status '{status}'")
        if status != PurchaseEvent.PAYMENT_SUCCESS and points_awarded:
            raise ValueError("points_awarded must be 0 unless status is PAYMENT_SUCCESS")

        values = {
            "customer_id": customer_id,
            "product_id": product_id,
            "seller_id": seller_id or 0,
            "status": status,
            "points_awarded": points_awarded or 0,
            "details": details,
        }

        try:
            stmt = (
                dialect_insert(PurchaseEvent.__table__)
                .values(external_session_id=external_session_id, **values)
                .on_conflict_do_nothing(index_elements=["external_session_id"])
            )
            created = db.session.execute(stmt).rowcount == 1

            event = db.session.execute(
                select(PurchaseEvent)
                .where(PurchaseEvent.external_session_id == external_session_id)
                .with_for_update()
                .execution_options(populate_existing=True)
            ).scalar_one()

            previous_status = None
            applied = True
            if not created:
                previous_status = event.status
                if preserve_success and previous_status == PurchaseEvent.PAYMENT_SUCCESS:
                    applied = False
                else:
                    for column in PurchaseEvent.MUTABLE_COLUMNS:
                        setattr(event, column, values[column])

            db.session.commit()
        except SQLAlchemyError as e:
            db.session.rollback()
            logger.error(
                f"Failed to record purchase event {external_session_id} ({status}): {e}",
                exc_info=True,
            )
            raise StorageUnavailable(
                f"Could not record event {external_session_id}"
            ) from e

        newly_succeeded = (
            applied
            and status == PurchaseEvent.PAYMENT_SUCCESS
            and previous_status != PurchaseEvent.PAYMENT_SUCCESS
        )

        if not applied:
            logger.info(
                f"Kept PAYMENT_SUCCESS for {external_session_id}, ignored {status}"
            )
        elif previous_status and previous_status != status:
            logger.info(
                f"Event {external_session_id}: {previous_status} -> {status}"
            )

        return UpsertResult(
            event=event,
            created=created,
            previous_status=previous_status,
            applied=applied,
            newly_succeeded=newly_succeeded,
        )

    # ──────────────────────────────────────────────
    # Read projections
    # ──────────────────────────────────────────────

    def get_event(self, external_session_id):
        return self._read(
            select(PurchaseEvent).where(
                PurchaseEvent.external_session_id == external_session_id
            )
        ).scalar_one_or_none()

    def list_events(self):
        """All events, newest first."""
        return self._read(
            select(PurchaseEvent).order_by(
                PurchaseEvent.timestamp.desc(), PurchaseEvent.id.desc()
            )
        ).scalars().all()

    def events_for_customer(self, customer_id):
        return self._read(
            select(PurchaseEvent)
            .where(PurchaseEvent.customer_id == customer_id)
            .order_by(PurchaseEvent.timestamp.desc(), PurchaseEvent.id.desc())
        ).scalars().all()

    def seller_report(self, seller_id, year=None, month=None):
        """Successful events for a seller and their summed price_paid.

        year and month must be given together to filter by calendar month.
        Returns (events, total_volume).
        """
        stmt = select(PurchaseEvent).where(
            PurchaseEvent.seller_id == seller_id,
            PurchaseEvent.status == PurchaseEvent.PAYMENT_SUCCESS,
        )
        if year is not None and month is not None:
            start, end = month_bounds(year, month)
            stmt = stmt.where(
                PurchaseEvent.timestamp >= start,
                PurchaseEvent.timestamp < end,
            )
        events = self._read(
            stmt.order_by(PurchaseEvent.timestamp.desc(), PurchaseEvent.id.desc())
        ).scalars().all()

        total_volume = 0
        for event in events:
            price_paid = (event.details or {}).get("price_paid")
            if isinstance(price_paid, (int, float)):
                total_volume += price_paid
        return events, total_volume

    def success_totals(self):
        """Map customer_id -> sum of points_awarded over PAYMENT_SUCCESS rows."""
        rows = self._read(
            select(
                PurchaseEvent.customer_id,
                func.coalesce(func.sum(PurchaseEvent.points_awarded), 0),
            )
            .where(PurchaseEvent.status == PurchaseEvent.PAYMENT_SUCCESS)
            .group_by(PurchaseEvent.customer_id)
        ).all()
        return {customer_id: int(total) for customer_id, total in rows}

    def _read(self, stmt):
        try:
            return db.session.execute(stmt)
        except SQLAlchemyError as e:
            db.session.rollback()
            logger.error(f"Ledger read failed: {e}", exc_info=True)
            raise StorageUnavailable("Ledger read failed") from e
