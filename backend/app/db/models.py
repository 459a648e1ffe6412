from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey, Text, Index, JSON, UniqueConstraint
from sqlalchemy import Enum as SAEnum
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from app.db.database import Base
from app.db.enums import ChannelType, NotificationType


class User(Base):
    """Profile of a user authenticated by the external identity provider."""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    username = Column(String(50), unique=True, index=True, nullable=False)
    email = Column(String(255), unique=True, index=True, nullable=False)
    full_name = Column(String(100))
    avatar_url = Column(String(500))
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    memberships = relationship("GroupMember", back_populates="user")


class Group(Base):
    __tablename__ = "groups"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(50), nullable=False)
    description = Column(Text)
    icon_url = Column(String(500))
    owner_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    owner = relationship("User")
    roles = relationship("Role", back_populates="group")
    members = relationship("GroupMember", back_populates="group")
    channels = relationship("Channel", back_populates="group")


class Role(Base):
    __tablename__ = "roles"
    __table_args__ = (
        Index("ix_roles_group_position", "group_id", "position"),
    )

    id = Column(Integer, primary_key=True, index=True)
    # Null only for system roles not tied to a group
    group_id = Column(Integer, ForeignKey("groups.id", ondelete="CASCADE"), nullable=True)
    name = Column(String(30), nullable=False)
    color = Column(String(7), nullable=False, default="#9E9E9E")
    position = Column(Integer, nullable=False, default=0)
    permissions = Column(JSON, nullable=False, default=dict)  # {"VIEW_CHANNELS": true, ...}
    is_default = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    group = relationship("Group", back_populates="roles")


class GroupMember(Base):
    __tablename__ = "group_members"
    __table_args__ = (
        UniqueConstraint("group_id", "user_id", name="uq_group_members_group_user"),
    )

    id = Column(Integer, primary_key=True, index=True)
    group_id = Column(Integer, ForeignKey("groups.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    role_ids = Column(JSON, nullable=False, default=list)  # weak references to roles.id
    joined_at = Column(DateTime(timezone=True), server_default=func.now())

    group = relationship("Group", back_populates="members")
    user = relationship("User", back_populates="memberships")


class Channel(Base):
    __tablename__ = "channels"

    id = Column(Integer, primary_key=True, index=True)
    group_id = Column(Integer, ForeignKey("groups.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(100), nullable=False)
    description = Column(Text)
    type = Column(SAEnum(ChannelType, name="channeltype", native_enum=False), default=ChannelType.text, nullable=False)
    allowed_role_ids = Column(JSON, nullable=True)  # null or [] means open to the whole group
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    group = relationship("Group", back_populates="channels")
    messages = relationship("ChannelMessage", back_populates="channel")
    attachments = relationship("FileAttachment", back_populates="channel")


class ChannelMessage(Base):
    __tablename__ = "channel_messages"
    __table_args__ = (
        Index("ix_channel_messages_channel_created", "channel_id", "created_at"),
    )

    id = Column(Integer, primary_key=True, index=True)
    channel_id = Column(Integer, ForeignKey("channels.id", ondelete="CASCADE"), nullable=False)
    author_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    content = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    channel = relationship("Channel", back_populates="messages")
    author = relationship("User")
    attachments = relationship("FileAttachment", back_populates="message", lazy="selectin")


class FileAttachment(Base):
    __tablename__ = "file_attachments"

    id = Column(Integer, primary_key=True, index=True)
    message_id = Column(Integer, ForeignKey("channel_messages.id", ondelete="SET NULL"), nullable=True)
    channel_id = Column(Integer, ForeignKey("channels.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    filename = Column(String(255), nullable=False)
    storage_path = Column(String(500), nullable=False)
    file_size = Column(Integer)
    mime_type = Column(String(100))
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    user = relationship("User")
    channel = relationship("Channel", back_populates="attachments")
    message = relationship("ChannelMessage", back_populates="attachments")


class AuditLog(Base):
    __tablename__ = "audit_logs"
    __table_args__ = (
        Index("ix_audit_logs_group_id", "group_id"),
        Index("ix_audit_logs_created_at", "created_at"),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    group_id = Column(Integer, nullable=True)  # kept after the group is deleted
    action = Column(String(100), nullable=False)
    target_type = Column(String(50))  # group, role, member, channel, message, attachment
    target_id = Column(Integer)
    meta = Column(Text)  # JSON details
    request_id = Column(String(64))
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    user = relationship("User")


class DirectConversation(Base):
    """A one-to-one conversation; at most one per pair of users."""
    __tablename__ = "conversations"

    id = Column(Integer, primary_key=True, index=True)
    user1_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    user2_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    participant_pair = Column(String(50), unique=True, nullable=False)  # "min_id:max_id"
    last_message = Column(Text)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    messages = relationship("DirectMessage", back_populates="conversation")


class DirectMessage(Base):
    __tablename__ = "direct_messages"
    __table_args__ = (
        Index("ix_direct_messages_conversation_created", "conversation_id", "created_at"),
    )

    id = Column(Integer, primary_key=True, index=True)
    conversation_id = Column(Integer, ForeignKey("conversations.id", ondelete="CASCADE"), nullable=False)
    sender_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    content = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    conversation = relationship("DirectConversation", back_populates="messages")
    sender = relationship("User")


class Notification(Base):
    __tablename__ = "notifications"
    __table_args__ = (
        Index("ix_notifications_user_read", "user_id", "is_read"),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    type = Column(SAEnum(NotificationType, name="notificationtype", native_enum=False), nullable=False)
    title = Column(String(200), nullable=False)
    message = Column(Text)
    link = Column(String(500))
    sender_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    entity_id = Column(Integer)
    entity_type = Column(String(50))  # conversation, group, member, channel
    is_read = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    sender = relationship("User", foreign_keys=[sender_id])
