from __future__ import annotations

from ..extensions import db
from shopledger.time_utils import to_utc_z


class IncomeSummary(db.Model):
    """
    Running per-owner, per-day income aggregate.

    Maintained by income_service.apply_delta only: created on the first
    contribution for a day, then adjusted by signed deltas. Rows are never
    deleted; a day whose sales were all reversed keeps a zero row, which
    reads differently from a day with no activity.
    """
    __tablename__ = "income_summary"
    __table_args__ = (
        db.UniqueConstraint("owner_id", "date", name="uq_income_summary_owner_date"),
        db.Index("ix_income_summary_date", "date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    owner_id = db.Column(db.Integer, db.ForeignKey("owners.id"), nullable=False)
    date = db.Column(db.Date, nullable=False)

    total_sales_cents = db.Column(db.Integer, nullable=False, default=0)
    total_profit_cents = db.Column(db.Integer, nullable=False, default=0)
    total_items_sold = db.Column(db.Integer, nullable=False, default=0)

    # Bumped by every increment, including the upsert path
    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    owner = db.relationship("Owner", backref=db.backref("income_summaries", lazy=True))

    def __repr__(self) -> str:
        return f"<IncomeSummary owner_id={self.owner_id} date={self.date} sales={self.total_sales_cents}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "owner_id": self.owner_id,
            "owner_name": self.owner.full_name if self.owner else None,
            "date": self.date.isoformat() if self.date else None,
            "total_sales_cents": self.total_sales_cents,
            "total_profit_cents": self.total_profit_cents,
            "total_items_sold": self.total_items_sold,
            "updated_at": to_utc_z(self.updated_at),
        }
