"""Purchase event model (the ledger).

One row per external_session_id: the Stripe checkout session id for
completed/expired/initiated checkouts, the payment intent id for failed
payments. Later notifications for the same key overwrite the mutable
columns in place, so the row holds the latest known outcome of that attempt.
Rows are never deleted.
"""

from datetime import datetime, timezone

from points_ledger.extensions import db


def _utcnow():
    return datetime.now(timezone.utc)


class PurchaseEvent(db.Model):
    __tablename__ = "purchase_events"

    # -- Statuses --
    INITIATED = "INITIATED"
    PAYMENT_SUCCESS = "PAYMENT_SUCCESS"
    PAYMENT_FAILED = "PAYMENT_FAILED"
    CANCELLED = "CANCELLED"
    ERROR_MISSING_METADATA = "ERROR_MISSING_METADATA"
    ERROR_PRODUCT_NOT_FOUND = "ERROR_PRODUCT_NOT_FOUND"

    STATUSES = [
        INITIATED,
        PAYMENT_SUCCESS,
        PAYMENT_FAILED,
        CANCELLED,
        ERROR_MISSING_METADATA,
        ERROR_PRODUCT_NOT_FOUND,
    ]

    # Columns replaced when a notification for an existing key arrives.
    MUTABLE_COLUMNS = (
        "customer_id",
        "product_id",
        "seller_id",
        "status",
        "points_awarded",
        "details",
    )

    id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    external_session_id = db.Column(
        db.String(255), unique=True, nullable=False
    )  # e.g. "cs_test_a1b2..." or "pi_3Abc..."
    customer_id = db.Column(db.String(255), nullable=False, index=True)
    product_id = db.Column(db.String(100), nullable=True)
    seller_id = db.Column(db.Integer, nullable=False, default=0, index=True)
    status = db.Column(db.String(50), nullable=False, index=True)
    points_awarded = db.Column(db.Integer, nullable=False, default=0)
    details = db.Column(db.JSON, nullable=True)  # audit trail, never parsed
    timestamp = db.Column(
        db.DateTime(timezone=True), nullable=False, default=_utcnow
    )

    def to_dict(self):
        return {
            "id": self.id,
            "external_session_id": self.external_session_id,
            "customer_id": self.customer_id,
            "product_id": self.product_id,
            "seller_id": self.seller_id,
            "status": self.status,
            "points_awarded": self.points_awarded,
            "details": self.details,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }

    def __repr__(self):
        return f"<PurchaseEvent {self.external_session_id} ({self.status})>"
