import sqlalchemy as sa

from fasbit.db.base import Base


class Message(Base):
    __tablename__ = "messages"

    id = sa.Column(sa.Integer, primary_key=True, autoincrement=True)

    sender_id = sa.Column(sa.Integer, nullable=False, index=True)
    recipient_id = sa.Column(sa.Integer, nullable=False, index=True)

    content = sa.Column(sa.Text, nullable=True)
    attachment_path = sa.Column(sa.String(512), nullable=True, index=True)  # relative to the media root

    sent_at = sa.Column(sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False)
