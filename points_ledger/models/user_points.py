"""User points model (balance projection).

total_points is only ever increased, one increment per checkout session
that newly reached PAYMENT_SUCCESS.
"""

from datetime import datetime, timezone

from points_ledger.extensions import db


class UserPoints(db.Model):
    __tablename__ = "user_points"
    __table_args__ = (
        db.CheckConstraint("total_points >= 0", name="ck_user_points_non_negative"),
    )

    customer_id = db.Column(db.String(255), primary_key=True)
    total_points = db.Column(db.Integer, nullable=False, default=0)
    last_updated = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    def to_dict(self):
        return {
            "customer_id": self.customer_id,
            "total_points": self.total_points,
            "last_updated": (
                self.last_updated.isoformat() if self.last_updated else None
            ),
        }

    def __repr__(self):
        return f"<UserPoints {self.customer_id}={self.total_points}>"
