"""Balance projector — per-customer running points total.

apply_points is one INSERT ... ON CONFLICT DO UPDATE ... RETURNING statement,
so the database serializes concurrent increments for the same customer and
no update is lost.
"""

import logging
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from points_ledger.errors import BalanceIncrementFailed, StorageUnavailable
from points_ledger.extensions import db
from points_ledger.models.user_points import UserPoints
from points_ledger.services.event_store import dialect_insert

logger = logging.getLogger(__name__)


class BalanceProjector:
    """Maintains user_points."""

    def apply_points(self, customer_id, delta, external_session_id=None):
        """Add delta to the customer's balance, creating the row at 0 if absent.

        Returns the new total.
        Raises ValueError for a negative delta and BalanceIncrementFailed if
        the increment could not be committed.
        """
        if delta < 0:
            raise ValueError("Balances only increase; delta must be >= 0")

        table = UserPoints.__table__
        now = datetime.now(timezone.utc)
        stmt = (
            dialect_insert(table)
            .values(customer_id=customer_id, total_points=delta, last_updated=now)
            .on_conflict_do_update(
                index_elements=["customer_id"],
                set_={
                    "total_points": table.c.total_points + delta,
                    "last_updated": now,
                },
            )
            .returning(table.c.total_points)
        )

        try:
            new_total = db.session.execute(stmt).scalar_one()
            db.session.commit()
        except SQLAlchemyError as e:
            db.session.rollback()
            logger.error(
                f"Failed to update points for {customer_id} (session {external_session_id}): {e}",
                exc_info=True,
            )
            raise BalanceIncrementFailed(customer_id, delta, external_session_id) from e

        logger.info(
            f"Awarded {delta} points to {customer_id} for session {external_session_id}"
            f" (total {new_total})"
        )
        return new_total

    def get_balance(self, customer_id):
        """Current total for customer_id, 0 if they have no row yet."""
        row = self.get_record(customer_id)
        return row.total_points if row else 0

    def get_record(self, customer_id):
        try:
            return db.session.execute(
                select(UserPoints).where(UserPoints.customer_id == customer_id)
            ).scalar_one_or_none()
        except SQLAlchemyError as e:
            db.session.rollback()
            logger.error(f"Failed to read points for {customer_id}: {e}", exc_info=True)
            raise StorageUnavailable(f"Could not read balance for {customer_id}") from e

    def all_balances(self):
        """Map customer_id -> total_points for every customer with a row."""
        try:
            rows = db.session.execute(
                select(UserPoints.customer_id, UserPoints.total_points)
            ).all()
        except SQLAlchemyError as e:
            db.session.rollback()
            logger.error(f"Failed to read balances: {e}", exc_info=True)
            raise StorageUnavailable("Could not read balances") from e
        return {customer_id: total for customer_id, total in rows}
