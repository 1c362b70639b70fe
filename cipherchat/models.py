from __future__ import annotations

from datetime import datetime

from .database import db
from .encryption.message_crypto import MessageEnvelope


class User(db.Model):
    """Account credentials plus the RSA key pair issued at signup."""

    __tablename__ = "user"

    userID = db.Column(db.Integer, primary_key=True, autoincrement=True)
    username = db.Column(db.String(255), unique=True, nullable=False, index=True)
    email = db.Column(db.String(255), unique=True, nullable=False, index=True)
    full_name = db.Column(db.String(255), nullable=False)
    password = db.Column(db.String(255), nullable=False)  # pbkdf2 hash
    prof_pic_url = db.Column(db.Text, default="")
    public_key = db.Column(db.Text, nullable=True)  # SPKI PEM
    private_key = db.Column(db.Text, nullable=True)  # PKCS8 PEM, handed to the client at login
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    def has_key_pair(self) -> bool:
        """Half a key pair counts as none."""
        return bool(self.public_key) and bool(self.private_key)

    def set_key_pair(self, public_key: str, private_key: str) -> None:
        self.public_key = public_key
        self.private_key = private_key

    def to_dict(self, include_public_key: bool = False) -> dict[str, object]:
        """Profile for API responses. Never carries the password hash or the private key."""
        data: dict[str, object] = {
            "id": self.userID,
            "username": self.username,
            "email": self.email,
            "fullName": self.full_name,
            "profilePic": self.prof_pic_url or "",
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }
        if include_public_key:
            data["publicKey"] = self.public_key
        return data


class Message(db.Model):
    """One stored envelope. Rows are inserted once and never updated."""

    __tablename__ = "message"
    __table_args__ = (
        db.Index("ix_message_pair_created", "senderID", "receiverID", "created_at"),
    )

    msgID = db.Column(db.Integer, primary_key=True, autoincrement=True)
    senderID = db.Column(db.Integer, db.ForeignKey("user.userID", ondelete="CASCADE"), nullable=False)
    receiverID = db.Column(db.Integer, db.ForeignKey("user.userID", ondelete="CASCADE"), nullable=False)

    encryptedContent = db.Column(db.Text, nullable=False)
    iv = db.Column(db.String(64), nullable=False)
    authTag = db.Column(db.String(64), nullable=False)
    senderEncryptedKey = db.Column(db.Text, nullable=False)
    receiverEncryptedKey = db.Column(db.Text, nullable=False)

    # Legacy plaintext columns; only filled when ACCEPT_PLAINTEXT_FALLBACK is on
    text = db.Column(db.Text, nullable=True)
    image = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    @classmethod
    def from_envelope(cls, envelope: MessageEnvelope) -> "Message":
        return cls(
            senderID=int(envelope.sender_id),
            receiverID=int(envelope.receiver_id),
            encryptedContent=envelope.encrypted_content,
            iv=envelope.iv,
            authTag=envelope.auth_tag,
            senderEncryptedKey=envelope.sender_encrypted_key,
            receiverEncryptedKey=envelope.receiver_encrypted_key,
            text=envelope.text,
            image=envelope.image,
            created_at=envelope.created_at or datetime.utcnow(),
        )

    def to_envelope(self) -> MessageEnvelope:
        return MessageEnvelope(
            sender_id=self.senderID,
            receiver_id=self.receiverID,
            encrypted_content=self.encryptedContent,
            iv=self.iv,
            auth_tag=self.authTag,
            sender_encrypted_key=self.senderEncryptedKey,
            receiver_encrypted_key=self.receiverEncryptedKey,
            created_at=self.created_at,
            message_id=self.msgID,
            text=self.text,
            image=self.image,
        )

    def to_dict(self) -> dict[str, object]:
        return self.to_envelope().to_dict()


__all__ = ["User", "Message"]
