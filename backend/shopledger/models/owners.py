from __future__ import annotations

from ..extensions import db
from shopledger.time_utils import to_utc_z


class Owner(db.Model):
    """
    Seller account that inventory items and sale lines are attributed to.

    Authentication lives outside this service; only the identity needed
    for income attribution is stored here.
    """
    __tablename__ = "owners"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(50), nullable=False, unique=True)
    full_name = db.Column(db.String(100), nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def __repr__(self) -> str:
        return f"<Owner id={self.id} username={self.username!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "username": self.username,
            "full_name": self.full_name,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }
