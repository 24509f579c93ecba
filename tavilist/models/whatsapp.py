"""
WhatsApp channel configuration (singleton row).

The API key is Fernet-encrypted at rest; ``to_dict`` never exposes it.
``connected`` is refreshed by every probe, including the one that runs
before each send.
"""

from tavilist.models import _utcnow, db


class WhatsAppConfig(db.Model):
    """Outbound Evolution API connection details."""

    __tablename__ = "whatsapp_config"

    id = db.Column(db.Integer, primary_key=True)
    api_url = db.Column(db.String(500), nullable=False)
    instance_name = db.Column(db.String(100), nullable=False)
    api_key_encrypted = db.Column(db.Text, nullable=False)
    connected = db.Column(db.Boolean, nullable=False, default=False)
    last_checked_at = db.Column(db.DateTime(timezone=True), nullable=True)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    def to_dict(self) -> dict:
        """Serialize without the encrypted key."""
        return {
            "id": self.id,
            "api_url": self.api_url,
            "instance_name": self.instance_name,
            "has_api_key": bool(self.api_key_encrypted),
            "connected": self.connected,
            "last_checked_at": self.last_checked_at.isoformat() if self.last_checked_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
