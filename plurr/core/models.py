from datetime import datetime, timezone
from sqlalchemy import Column, String, Text, ForeignKey, DateTime, JSON, Boolean, Index
from .database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Lobby(Base):
    __tablename__ = "lobbies"

    id = Column(String(32), primary_key=True)
    lobby_code = Column(String(16), nullable=False, unique=True, index=True)
    created_on = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    first_upload_on = Column(DateTime(timezone=True), nullable=True)
    owner_id = Column(String(128), nullable=False, index=True)
    title = Column(String(255), nullable=False)
    background_color = Column(String(16), nullable=False, default="#e69c09")
    viewers_can_edit = Column(Boolean, nullable=False, default=False)
    is_draft = Column(Boolean, nullable=False, default=True)
    # Display order of the lobby's images; authoritative over row order
    images = Column(JSON, nullable=False, default=list)


class Image(Base):
    __tablename__ = "images"

    id = Column(String(32), primary_key=True)
    lobby_id = Column(String(32), ForeignKey("lobbies.id", ondelete="CASCADE"), nullable=False, index=True)
    uploaded_on = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    uploader_id = Column(String(128), nullable=False)
    reaction_string = Column(String(255), nullable=False, default="0")


class Reaction(Base):
    __tablename__ = "reactions"

    id = Column(String(32), primary_key=True)
    user_id = Column(String(128), nullable=False)
    lobby_id = Column(String(32), ForeignKey("lobbies.id", ondelete="CASCADE"), nullable=False, index=True)
    image_id = Column(String(32), ForeignKey("images.id", ondelete="CASCADE"), nullable=False)
    created_on = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    reaction = Column(String(64), nullable=False)

    __table_args__ = (
        Index("ix_reactions_image_user", "image_id", "user_id"),
    )


class JoinedLobby(Base):
    __tablename__ = "joined_lobbies"

    id = Column(String(32), primary_key=True)
    lobby_id = Column(String(32), ForeignKey("lobbies.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(String(128), nullable=False, index=True)
    joined_on = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        Index("ix_joined_lobbies_lobby_user", "lobby_id", "user_id"),
    )


class Report(Base):
    __tablename__ = "reports"

    id = Column(String(32), primary_key=True)
    status = Column(String(32), nullable=False, default="open")
    # Plain column: reports outlive the lobby they point at
    lobby_id = Column(String(32), nullable=False, index=True)
    creator_id = Column(String(128), nullable=False)
    created_on = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    email = Column(String(320), nullable=False)
    msg = Column(Text, nullable=False)
