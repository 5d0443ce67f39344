"""
agora.database.models — SQLAlchemy 2.0 Data Models
===================================================

Tables:
- users                — Forum members + cached economy/moderation aggregates
- point_history        — Append-only point/experience ledger
- topics / replies     — Minimal forum content feeding badge counts
- topic_likes          — One like per (user, topic)
- course_enrollments   — Course completion records
- badges / user_badges — Achievement definitions and idempotent grants
- special_tags / user_special_tags — Time-limited, revocable tags
- daily_tasks / daily_task_progress — Task templates + per-day counters
- user_punishments     — Moderation actions with expiry
- user_appeals         — User contests of punishments
- batch_operations     — Tracked bulk moderation runs
- notifications        — In-app notifications
- admin_log            — Append-only audit trail
"""

from __future__ import annotations

import enum
from datetime import UTC, datetime

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def _utcnow() -> datetime:
    return datetime.now(UTC)


# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------
class Base(DeclarativeBase):
    """Shared base for all Agora ORM models."""


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class UserRole(enum.StrEnum):
    USER = "user"
    MODERATOR = "moderator"
    ADMIN = "admin"


class UserStatus(enum.StrEnum):
    """Cached moderation state; always mirrors the most severe active punishment."""
    ACTIVE = "active"
    MUTED = "muted"
    SUSPENDED = "suspended"
    BANNED = "banned"


class PunishmentType(enum.StrEnum):
    WARNING = "warning"
    MUTE = "mute"
    SUSPEND = "suspend"
    BAN = "ban"


class PunishmentStatus(enum.StrEnum):
    ACTIVE = "active"
    EXPIRED = "expired"
    REVOKED = "revoked"


class AppealStatus(enum.StrEnum):
    PENDING = "pending"
    PROCESSING = "processing"
    APPROVED = "approved"
    REJECTED = "rejected"
    CLOSED = "closed"


class AppealPriority(enum.StrEnum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"


class BatchType(enum.StrEnum):
    BAN = "batch_ban"
    MUTE = "batch_mute"
    SUSPEND = "batch_suspend"
    WARNING = "batch_warning"


class BatchStatus(enum.StrEnum):
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class DailyTaskType(enum.StrEnum):
    POST = "post"
    REPLY = "reply"
    LIKE = "like"
    CHECKIN = "checkin"
    COURSE_TIME = "course_time"


class AdminActionType(enum.StrEnum):
    """Categories of admin mutations recorded in admin_log."""
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    PUNISH = "PUNISH"
    REVOKE = "REVOKE"
    BATCH = "BATCH"
    APPEAL = "APPEAL"
    ADJUST_POINTS = "ADJUST_POINTS"
    GRANT_TAG = "GRANT_TAG"
    REVOKE_TAG = "REVOKE_TAG"


OPEN_APPEAL_STATUSES = (AppealStatus.PENDING, AppealStatus.PROCESSING)
_OPEN_APPEAL_WHERE = text("status IN ('pending', 'processing')")


# ---------------------------------------------------------------------------
# Users — forum members
# ---------------------------------------------------------------------------
class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    username: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    email: Mapped[str | None] = mapped_column(String(255), default=None)
    avatar: Mapped[str | None] = mapped_column(String(500), default=None)
    role: Mapped[str] = mapped_column(String(20), nullable=False, default=UserRole.USER)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=UserStatus.ACTIVE)
    balance: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    experience: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    level: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    trust_score: Mapped[int] = mapped_column(Integer, nullable=False, default=100)
    violation_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now(),
        onupdate=_utcnow,
    )

    # Relationships
    badges: Mapped[list[UserBadge]] = relationship(
        back_populates="user", cascade="all, delete-orphan"
    )
    punishments: Mapped[list[UserPunishment]] = relationship(
        back_populates="user", cascade="all, delete-orphan"
    )

    __table_args__ = (
        Index("ix_users_experience_desc", "experience"),
        Index("ix_users_status", "status"),
    )

    def __repr__(self) -> str:
        return f"<User id={self.id} name={self.username!r} lvl={self.level}>"


# ---------------------------------------------------------------------------
# PointHistory — append-only ledger
# ---------------------------------------------------------------------------
class PointHistory(Base):
    """One point/experience movement.  ``amount`` is signed points.

    Also the daily-limit counter: same-type rows since local midnight.
    """
    __tablename__ = "point_history"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    experience: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    type: Mapped[str] = mapped_column(String(50), nullable=False)
    reason: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    related_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    related_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now()
    )

    __table_args__ = (
        Index("ix_point_history_user_type_time", "user_id", "type", "created_at"),
        Index("ix_point_history_user_time", "user_id", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<PointHistory id={self.id} user={self.user_id} type={self.type} amount={self.amount}>"


# ---------------------------------------------------------------------------
# Forum content — minimal topic / reply / like tables
# ---------------------------------------------------------------------------
class Topic(Base):
    __tablename__ = "topics"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    author_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    like_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    reply_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now()
    )

    __table_args__ = (
        Index("ix_topics_author_time", "author_id", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<Topic id={self.id} author={self.author_id} title={self.title!r}>"


class Reply(Base):
    __tablename__ = "replies"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    topic_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("topics.id", ondelete="CASCADE"), nullable=False
    )
    author_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    content: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now()
    )

    __table_args__ = (
        Index("ix_replies_author_time", "author_id", "created_at"),
        Index("ix_replies_topic", "topic_id"),
    )

    def __repr__(self) -> str:
        return f"<Reply id={self.id} topic={self.topic_id} author={self.author_id}>"


class TopicLike(Base):
    __tablename__ = "topic_likes"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    topic_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("topics.id", ondelete="CASCADE"), nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now()
    )

    __table_args__ = (
        UniqueConstraint("user_id", "topic_id", name="uq_topic_likes_user_topic"),
        Index("ix_topic_likes_topic_time", "topic_id", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<TopicLike user={self.user_id} topic={self.topic_id}>"


# ---------------------------------------------------------------------------
# CourseEnrollment — feeds course_complete conditions
# ---------------------------------------------------------------------------
class CourseEnrollment(Base):
    __tablename__ = "course_enrollments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    course_id: Mapped[int] = mapped_column(Integer, nullable=False)
    completed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now()
    )

    __table_args__ = (
        UniqueConstraint("user_id", "course_id", name="uq_course_enrollments_user_course"),
    )

    def __repr__(self) -> str:
        return f"<CourseEnrollment user={self.user_id} course={self.course_id} done={self.completed}>"


# ---------------------------------------------------------------------------
# Badges — achievement definitions + earned grants
# ---------------------------------------------------------------------------
class Badge(Base):
    __tablename__ = "badges"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    title: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, default=None)
    icon: Mapped[str] = mapped_column(String(50), nullable=False, default="\U0001f3c5")
    category: Mapped[str] = mapped_column(String(50), nullable=False, default="general")
    rarity: Mapped[str] = mapped_column(String(20), nullable=False, default="common")
    condition: Mapped[dict] = mapped_column(JSONB, nullable=False)
    points: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    experience: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now()
    )

    earned_by: Mapped[list[UserBadge]] = relationship(
        back_populates="badge", cascade="all, delete-orphan"
    )

    __table_args__ = (
        Index("ix_badges_active_sort", "active", "sort_order"),
    )

    def __repr__(self) -> str:
        return f"<Badge id={self.id} name={self.name!r}>"


class UserBadge(Base):
    __tablename__ = "user_badges"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    badge_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("badges.id", ondelete="CASCADE"), nullable=False
    )
    earned_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now()
    )

    user: Mapped[User] = relationship(back_populates="badges")
    badge: Mapped[Badge] = relationship(back_populates="earned_by")

    __table_args__ = (
        UniqueConstraint("user_id", "badge_id", name="uq_user_badges_user_badge"),
    )

    def __repr__(self) -> str:
        return f"<UserBadge user={self.user_id} badge={self.badge_id}>"


# ---------------------------------------------------------------------------
# Special tags — permanent, timed, or condition-granted
# ---------------------------------------------------------------------------
class SpecialTag(Base):
    __tablename__ = "special_tags"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    title: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, default=None)
    icon: Mapped[str] = mapped_column(String(50), nullable=False, default="\U0001f3f7️")
    color: Mapped[str] = mapped_column(String(20), nullable=False, default="#3b82f6")
    category: Mapped[str] = mapped_column(String(50), nullable=False, default="general")
    condition: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    permanent: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    duration_days: Mapped[int | None] = mapped_column(Integer, nullable=True)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now()
    )

    def __repr__(self) -> str:
        return f"<SpecialTag id={self.id} name={self.name!r}>"


class UserSpecialTag(Base):
    __tablename__ = "user_special_tags"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    tag_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("special_tags.id", ondelete="CASCADE"), nullable=False
    )
    granted_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now()
    )
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    granted_by: Mapped[int | None] = mapped_column(Integer, nullable=True)

    tag: Mapped[SpecialTag] = relationship()

    __table_args__ = (
        UniqueConstraint("user_id", "tag_id", name="uq_user_special_tags_user_tag"),
        Index("ix_user_special_tags_expiry", "active", "expires_at"),
    )

    def __repr__(self) -> str:
        return f"<UserSpecialTag user={self.user_id} tag={self.tag_id} active={self.active}>"


# ---------------------------------------------------------------------------
# Daily tasks — templates + per-user-per-day progress
# ---------------------------------------------------------------------------
class DailyTask(Base):
    __tablename__ = "daily_tasks"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    title: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, default=None)
    type: Mapped[str] = mapped_column(String(20), nullable=False)
    target: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    points: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    experience: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    icon: Mapped[str] = mapped_column(String(50), nullable=False, default="\U0001f4cb")
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    def __repr__(self) -> str:
        return f"<DailyTask id={self.id} name={self.name!r} type={self.type}>"


class DailyTaskProgress(Base):
    __tablename__ = "daily_task_progress"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    task_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("daily_tasks.id", ondelete="CASCADE"), nullable=False
    )
    date: Mapped[str] = mapped_column(String(10), nullable=False)  # local YYYY-MM-DD
    progress: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    completed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    task: Mapped[DailyTask] = relationship()

    __table_args__ = (
        UniqueConstraint("user_id", "task_id", "date", name="uq_daily_task_progress_user_task_date"),
        Index("ix_daily_task_progress_user_date", "user_id", "date"),
    )

    def __repr__(self) -> str:
        return (
            f"<DailyTaskProgress user={self.user_id} task={self.task_id} "
            f"date={self.date} {self.progress}>"
        )


# ---------------------------------------------------------------------------
# UserPunishment — moderation actions
# ---------------------------------------------------------------------------
class UserPunishment(Base):
    """``end_time`` is NULL for permanent punishments.

    Transitions: active → expired (sweep), active → revoked (admin/appeal).
    """
    __tablename__ = "user_punishments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    type: Mapped[str] = mapped_column(String(20), nullable=False)
    severity: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    start_time: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, nullable=False
    )
    end_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=PunishmentStatus.ACTIVE
    )
    admin_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    revoked_by: Mapped[int | None] = mapped_column(Integer, nullable=True)
    revoked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    revoke_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now()
    )

    user: Mapped[User] = relationship(back_populates="punishments")

    __table_args__ = (
        Index("ix_user_punishments_user_status", "user_id", "status"),
        Index("ix_user_punishments_sweep", "status", "end_time"),
    )

    def __repr__(self) -> str:
        return (
            f"<UserPunishment id={self.id} user={self.user_id} "
            f"type={self.type} status={self.status}>"
        )


# ---------------------------------------------------------------------------
# UserAppeal — at most one open appeal per punishment
# ---------------------------------------------------------------------------
class UserAppeal(Base):
    __tablename__ = "user_appeals"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    punishment_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("user_punishments.id", ondelete="CASCADE"), nullable=False
    )
    type: Mapped[str] = mapped_column(String(30), nullable=False, default="punishment")
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    evidence: Mapped[list | None] = mapped_column(JSONB, nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=AppealStatus.PENDING)
    priority: Mapped[str] = mapped_column(String(20), nullable=False, default=AppealPriority.NORMAL)
    admin_note: Mapped[str | None] = mapped_column(Text, nullable=True)
    handled_by: Mapped[int | None] = mapped_column(Integer, nullable=True)
    handled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now()
    )

    punishment: Mapped[UserPunishment] = relationship()

    __table_args__ = (
        Index(
            "uq_user_appeals_open_per_punishment",
            "punishment_id",
            unique=True,
            postgresql_where=_OPEN_APPEAL_WHERE,
            sqlite_where=_OPEN_APPEAL_WHERE,
        ),
        Index("ix_user_appeals_user_time", "user_id", "created_at"),
        Index("ix_user_appeals_status", "status"),
    )

    def __repr__(self) -> str:
        return f"<UserAppeal id={self.id} punishment={self.punishment_id} status={self.status}>"


# ---------------------------------------------------------------------------
# BatchOperation — tracked bulk moderation run
# ---------------------------------------------------------------------------
class BatchOperation(Base):
    __tablename__ = "batch_operations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    admin_id: Mapped[int] = mapped_column(Integer, nullable=False)
    type: Mapped[str] = mapped_column(String(30), nullable=False)
    targets: Mapped[list] = mapped_column(JSONB, nullable=False)
    params: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=BatchStatus.PROCESSING)
    progress: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    result: Mapped[list | None] = mapped_column(JSONB, nullable=True)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now()
    )
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return (
            f"<BatchOperation id={self.id} type={self.type} "
            f"status={self.status} progress={self.progress}>"
        )


# ---------------------------------------------------------------------------
# Notification — in-app messages
# ---------------------------------------------------------------------------
class Notification(Base):
    __tablename__ = "notifications"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    type: Mapped[str] = mapped_column(String(30), nullable=False)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False, default="")
    data: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now()
    )

    __table_args__ = (
        Index("ix_notifications_user_read", "user_id", "read"),
        Index("ix_notifications_user_time", "user_id", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<Notification id={self.id} user={self.user_id} type={self.type}>"


# ---------------------------------------------------------------------------
# AdminLog — append-only audit trail
# ---------------------------------------------------------------------------
class AdminLog(Base):
    __tablename__ = "admin_log"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    actor_id: Mapped[int] = mapped_column(Integer, nullable=False)
    action_type: Mapped[str] = mapped_column(String(50), nullable=False)
    target_table: Mapped[str] = mapped_column(String(50), nullable=False)
    target_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    before_snapshot: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    after_snapshot: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now()
    )

    __table_args__ = (
        Index("ix_admin_log_actor_time", "actor_id", "timestamp"),
        Index("ix_admin_log_target", "target_table", "target_id", "timestamp"),
    )

    def __repr__(self) -> str:
        return f"<AdminLog id={self.id} actor={self.actor_id} action={self.action_type}>"
