from datetime import datetime, timezone

from linkgrove.extensions import db


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class KeyValueEntry(db.Model):
    __tablename__ = "kv_entries"

    key = db.Column(db.String(255), primary_key=True)
    value = db.Column(db.JSON, nullable=True)
    updated_at = db.Column(
        db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )
