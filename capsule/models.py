import enum
import json

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()


class MessageType(str, enum.Enum):
    TEXT = "text"
    IMAGE = "image"
    VOICE = "voice"


class Message(db.Model):
    __tablename__ = "messages"
    # Dense sequential ids starting at 0, assigned by the ledger (never autoincrement)
    id = db.Column(db.Integer, primary_key=True, autoincrement=False)
    author = db.Column(db.String(32), index=True, nullable=False)
    content_hash = db.Column(db.String(256), nullable=False)
    activation_point = db.Column(db.Integer, index=True, nullable=False)
    is_private = db.Column(db.Boolean, nullable=False, default=False)
    target_user = db.Column(db.String(32), index=True, nullable=True)
    is_processed = db.Column(db.Boolean, nullable=False, default=False)
    is_disabled = db.Column(db.Boolean, nullable=False, default=False)
    upvotes = db.Column(db.Integer, nullable=False, default=0)
    downvotes = db.Column(db.Integer, nullable=False, default=0)
    msg_type = db.Column(db.String(16), nullable=False, default=MessageType.TEXT.value)

    details = db.relationship("MessageDetails", uselist=False, lazy="joined")


class MessageDetails(db.Model):
    __tablename__ = "message_details"
    message_id = db.Column(db.Integer, db.ForeignKey("messages.id"), primary_key=True)
    subject = db.Column(db.String(64), nullable=False)
    content = db.Column(db.String(256), nullable=False)
    creation_block = db.Column(db.Integer, nullable=False)
    last_update = db.Column(db.Integer, nullable=False)
    tags = db.Column(db.Text, nullable=True)  # JSON string

    @property
    def tag_list(self) -> list[str]:
        return json.loads(self.tags) if self.tags else []


class Upvote(db.Model):
    __tablename__ = "upvotes"
    id = db.Column(db.Integer, primary_key=True)
    message_id = db.Column(db.Integer, index=True, nullable=False)
    username = db.Column(db.String(32), index=True, nullable=False)
    block_num = db.Column(db.Integer, nullable=False)

    __table_args__ = (
        db.UniqueConstraint("message_id", "username", name="uq_upvote_message_user"),
    )


class UserActivity(db.Model):
    __tablename__ = "user_activity"
    username = db.Column(db.String(32), primary_key=True)
    messages_posted = db.Column(db.Integer, nullable=False, default=0)
    messages_claimed = db.Column(db.Integer, nullable=False, default=0)
    upvotes_given = db.Column(db.Integer, nullable=False, default=0)


class NetworkState(db.Model):
    __tablename__ = "network_state"
    # Single row, id=1
    id = db.Column(db.Integer, primary_key=True)
    network_admin = db.Column(db.String(32), nullable=False)
    network_paused = db.Column(db.Boolean, nullable=False, default=False)
    message_counter = db.Column(db.Integer, nullable=False, default=0)
    random_seed = db.Column(db.BigInteger, nullable=False, default=0)


class Checkpoint(db.Model):
    __tablename__ = "checkpoints"
    id = db.Column(db.Integer, primary_key=True)
    last_block = db.Column(db.Integer, nullable=False, default=0)


class ModerationAction(db.Model):
    __tablename__ = "moderation_actions"
    id = db.Column(db.Integer, primary_key=True)
    message_id = db.Column(db.Integer, index=True, nullable=False)
    actor = db.Column(db.String(32), index=True, nullable=False)
    action = db.Column(db.String(16), nullable=False)  # report|disable
    block_num = db.Column(db.Integer, nullable=False, index=True)
