"""
Stage signature record.

One row per stage, created when an admin requests a client confirmation
for an approved stage. The token is the only credential the public
signing page needs; ``signed_at`` being set closes the write path for good.
"""

from tavilist.models import _utcnow, _uuid, db


class StageSignature(db.Model):
    """Single-use confirmation token and its eventual signature."""

    __tablename__ = "stage_signatures"

    id = db.Column(db.Integer, primary_key=True)
    stage_id = db.Column(
        db.Integer,
        db.ForeignKey("stages.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
        index=True,
    )
    token = db.Column(db.String(36), nullable=False, unique=True, index=True, default=_uuid)

    signer_name = db.Column(db.String(100), nullable=True)
    signed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    signer_ip = db.Column(db.String(64), nullable=True)
    signature_image_url = db.Column(db.Text, nullable=True)

    link_sent_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)

    stage = db.relationship("Stage", back_populates="signature")

    @property
    def is_signed(self) -> bool:
        return self.signed_at is not None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "stage_id": self.stage_id,
            "token": self.token,
            "signed": self.is_signed,
            "signer_name": self.signer_name,
            "signed_at": self.signed_at.isoformat() if self.signed_at else None,
            "signer_ip": self.signer_ip,
            "signature_image_url": self.signature_image_url,
            "link_sent_at": self.link_sent_at.isoformat() if self.link_sent_at else None,
        }

    def __repr__(self) -> str:
        state = "signed" if self.is_signed else "open"
        return f"<StageSignature stage={self.stage_id} {state}>"
