import sqlalchemy as sa

from fasbit.db.base import Base


class MediaFile(Base):
    __tablename__ = "media_files"

    id = sa.Column(sa.Integer, primary_key=True, autoincrement=True)

    owner_id = sa.Column(sa.Integer, nullable=False, index=True)
    purpose = sa.Column(sa.String(16), nullable=False)

    relative_path = sa.Column(sa.String(512), nullable=False, unique=True)
    original_name = sa.Column(sa.String(256), nullable=False)
    mime_type = sa.Column(sa.String(100), nullable=False)
    size_bytes = sa.Column(sa.BigInteger, nullable=False)
    content_hash = sa.Column(sa.String(64), index=True, nullable=False)

    created_at = sa.Column(sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False)
