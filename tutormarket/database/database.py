from sqlalchemy import create_engine, event, Column, Integer, String, Float, Text, DateTime, Date, Time, Boolean, ForeignKey, Enum, Index, CheckConstraint, UniqueConstraint, Table, JSON
from sqlalchemy.orm import relationship, declarative_base, sessionmaker
from datetime import datetime
import uuid
import enum
from typing import List
from tutormarket.config import get_settings

"""
Database models for the tutoring marketplace.
Includes models for users, tutors, availability, bookings, learner progress,
goals, reviews, certificates, messages, notifications and mock payments.
Uses SQLAlchemy ORM with PostgreSQL/SQLite backend.
"""

# Base class for ORM models
Base = declarative_base()

# Enum for user roles. Closed set: every role-dependent branch must handle all three.
class UserRole(enum.Enum):
    STUDENT = "student"
    TUTOR = "tutor"
    ADMIN = "admin"

class BookingStatus(enum.Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

# Statuses that hold a tutor's time
ACTIVE_BOOKING_STATUSES = [BookingStatus.PENDING.value, BookingStatus.CONFIRMED.value]

class SkillLevel(enum.Enum):
    NEEDS_SUPPORT = "Needs support"
    SATISFACTORY = "Satisfactory"
    GOOD = "Good"
    EXCELLENT = "Excellent"

    @property
    def ordinal(self) -> int:
        """Position on the 1-4 scale used by progress charts."""
        return list(SkillLevel).index(self) + 1

class PaymentStatus(enum.Enum):
    HELD = "held"          # escrow, waiting for the session to complete
    RELEASED = "released"
    REFUNDED = "refunded"

def generate_uuid() -> str:
    """Generate a string UUID."""
    return str(uuid.uuid4()).lower()

# Subject Model for normalized subject storage
class Subject(Base):
    """Represents academic subjects that can be taught/studied."""
    __tablename__ = 'subjects'
    id = Column(String(36), primary_key=True, default=generate_uuid)
    name = Column(String(100), nullable=False, unique=True)

    def __repr__(self):
        return f"<Subject(id={self.id}, name={self.name})>"

# Junction table for tutor-subject relationship
tutor_subjects = Table('tutor_subjects', Base.metadata,
    Column('tutor_id', String(36), ForeignKey('tutors.id', ondelete='CASCADE'), primary_key=True),
    Column('subject_id', String(36), ForeignKey('subjects.id', ondelete='CASCADE'), primary_key=True)
)

# User Model
class User(Base):
    """User account and profile. The role column is the single source of truth for role checks."""
    __tablename__ = 'users'
    id = Column(String(36), primary_key=True, default=generate_uuid)
    role = Column(Enum(UserRole), nullable=False, default=UserRole.STUDENT)
    email = Column(String(255), unique=True, nullable=False, index=True)
    full_name = Column(String(100), nullable=False)
    email_verified = Column(Boolean, default=False, nullable=False)
    verification_token = Column(String(36), nullable=True, default=generate_uuid)
    verification_sent_at = Column(DateTime, nullable=True, default=datetime.now)
    learning_level = Column(String(50))
    location = Column(String(100))
    preferred_mode = Column(JSON, default=list)
    subjects_of_interest = Column(JSON, default=list)
    banned_until = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.now, nullable=False)
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now, nullable=False)

    # Relationships
    tutor_profile = relationship("Tutor", back_populates="user", uselist=False, cascade='all, delete-orphan')
    notifications = relationship("Notification", back_populates="user", cascade='all, delete-orphan')

    @property
    def is_banned(self) -> bool:
        return self.banned_until is not None and self.banned_until > datetime.now()

    def __repr__(self):
        return f"<User(id={self.id}, email={self.email}, role={self.role})>"

# Tutor Model
class Tutor(Base):
    """Tutor profile with subjects, rate, approval flag and aggregate rating. Never hard deleted."""
    __tablename__ = 'tutors'
    id = Column(String(36), primary_key=True, default=generate_uuid)
    user_id = Column(String(36), ForeignKey('users.id', ondelete='CASCADE'), nullable=False, unique=True)
    full_name = Column(String(100), nullable=False)
    email = Column(String(255), nullable=False)
    bio = Column(Text)
    hourly_rate = Column(Float, nullable=False, default=0.0)
    is_approved = Column(Boolean, default=False, nullable=False)
    rating = Column(Float)
    total_reviews = Column(Integer, default=0, nullable=False)
    education_level = Column(String(50))
    experience_years = Column(Integer)
    gender = Column(String(20))
    location = Column(String(100))
    phone = Column(String(30))
    languages = Column(JSON, default=list)
    qualifications = Column(JSON, default=list)
    teaching_level = Column(JSON, default=list)
    teaching_location = Column(JSON, default=list)
    created_at = Column(DateTime, default=datetime.now, nullable=False)
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now, nullable=False)

    # Table-level constraints
    __table_args__ = (
        CheckConstraint('hourly_rate >= 0', name='check_hourly_rate_positive'),
        CheckConstraint('rating >= 0 AND rating <= 5', name='check_rating_range'),
    )

    subjects = relationship("Subject", secondary=tutor_subjects, backref="tutors", lazy='selectin')

    # Relationships
    user = relationship("User", back_populates="tutor_profile")
    availability = relationship("AvailabilityWindow", back_populates="tutor", cascade='all, delete-orphan')

    @property
    def subject_names(self) -> List[str]:
        return sorted(subject.name for subject in self.subjects)

    def __repr__(self):
        return f"<Tutor(id={self.id}, user_id={self.user_id}, approved={self.is_approved})>"

class AvailabilityWindow(Base):
    """Weekly recurring window. day_of_week: 0=Sunday .. 6=Saturday."""
    __tablename__ = 'tutor_availability'
    id = Column(String(36), primary_key=True, default=generate_uuid)
    tutor_id = Column(String(36), ForeignKey('tutors.id', ondelete='CASCADE'), nullable=False)
    day_of_week = Column(Integer, nullable=False)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    is_available = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=datetime.now, nullable=False)
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now, nullable=False)

    __table_args__ = (
        CheckConstraint('day_of_week >= 0 AND day_of_week <= 6', name='check_day_of_week_range'),
        CheckConstraint('start_time < end_time', name='check_window_order'),
    )

    tutor = relationship("Tutor", back_populates="availability")

    def __repr__(self):
        return f"<AvailabilityWindow(tutor_id={self.tutor_id}, day={self.day_of_week}, {self.start_time}-{self.end_time})>"

# Booking Model
class Booking(Base):
    __tablename__ = 'bookings'
    id = Column(String(36), primary_key=True, default=generate_uuid)
    tutor_id = Column(String(36), ForeignKey('tutors.id', ondelete='CASCADE'), nullable=False)
    student_id = Column(String(36), ForeignKey('users.id', ondelete='CASCADE'), nullable=False)
    session_date = Column(Date, nullable=False)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    status = Column(String(20), default=BookingStatus.PENDING.value, nullable=False)
    subject = Column(String(100))
    notes = Column(Text)
    focus_topic = Column(String(255))
    cancellation_deadline = Column(DateTime)
    cancelled_at = Column(DateTime)
    cancelled_by = Column(String(36), ForeignKey('users.id', ondelete='SET NULL'))
    completed_at = Column(DateTime)
    created_at = Column(DateTime, default=datetime.now, nullable=False)
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now, nullable=False)

    __table_args__ = (
        CheckConstraint('start_time < end_time', name='check_booking_order'),
    )

    # Relationships
    tutor = relationship("Tutor", foreign_keys=[tutor_id])
    student = relationship("User", foreign_keys=[student_id])
    progress = relationship("LearnerProgress", back_populates="booking", uselist=False, cascade='all, delete-orphan')
    payment = relationship("PaymentTransaction", back_populates="booking", uselist=False, cascade='all, delete-orphan')

    def __repr__(self):
        return f"<Booking(id={self.id}, tutor_id={self.tutor_id}, date={self.session_date}, status={self.status})>"

class LearnerProgress(Base):
    """Tutor's assessment of one completed session. One entry per booking."""
    __tablename__ = 'learner_progress'
    id = Column(String(36), primary_key=True, default=generate_uuid)
    booking_id = Column(String(36), ForeignKey('bookings.id', ondelete='CASCADE'), nullable=False, unique=True)
    learner_id = Column(String(36), ForeignKey('users.id', ondelete='CASCADE'), nullable=False)
    tutor_id = Column(String(36), ForeignKey('tutors.id', ondelete='CASCADE'), nullable=False)
    subject = Column(String(100), nullable=False)
    date_of_session = Column(Date, nullable=False)
    skill_level = Column(String(20), nullable=False)
    progress_note = Column(Text, nullable=False)
    homework_next_action = Column(Text)
    created_at = Column(DateTime, default=datetime.now, nullable=False)
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now, nullable=False)

    booking = relationship("Booking", back_populates="progress")

class LearningGoal(Base):
    __tablename__ = 'learning_goals'
    id = Column(String(36), primary_key=True, default=generate_uuid)
    learner_id = Column(String(36), ForeignKey('users.id', ondelete='CASCADE'), nullable=False)
    tutor_id = Column(String(36), ForeignKey('tutors.id', ondelete='CASCADE'), nullable=False)
    subject = Column(String(100), nullable=False)
    goal_text = Column(Text, nullable=False)
    target_date = Column(Date)
    is_achieved = Column(Boolean, default=False, nullable=False)
    achieved_date = Column(Date)
    created_at = Column(DateTime, default=datetime.now, nullable=False)
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now, nullable=False)

class Review(Base):
    __tablename__ = 'reviews'
    id = Column(String(36), primary_key=True, default=generate_uuid)
    tutor_id = Column(String(36), ForeignKey('tutors.id', ondelete='CASCADE'), nullable=False)
    student_id = Column(String(36), ForeignKey('users.id', ondelete='CASCADE'), nullable=False)
    rating = Column(Integer, nullable=False)
    comment = Column(Text)
    created_at = Column(DateTime, default=datetime.now, nullable=False)
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now, nullable=False)

    __table_args__ = (
        CheckConstraint('rating >= 1 AND rating <= 5', name='check_review_rating_range'),
        UniqueConstraint('tutor_id', 'student_id', name='uq_review_per_student'),
    )

    tutor = relationship("Tutor", foreign_keys=[tutor_id])
    student = relationship("User", foreign_keys=[student_id])

class CertificateApproval(Base):
    """Uploaded certificate awaiting moderation. is_approved is None while pending."""
    __tablename__ = 'certificate_approvals'
    id = Column(String(36), primary_key=True, default=generate_uuid)
    tutor_id = Column(String(36), ForeignKey('tutors.id', ondelete='CASCADE'), nullable=False)
    file_name = Column(String(255), nullable=False)
    is_approved = Column(Boolean, nullable=True)
    approved_at = Column(DateTime)
    approved_by = Column(String(36), ForeignKey('users.id', ondelete='SET NULL'))
    created_at = Column(DateTime, default=datetime.now, nullable=False)
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now, nullable=False)

    tutor = relationship("Tutor", foreign_keys=[tutor_id])

class Message(Base):
    __tablename__ = 'messages'
    id = Column(String(36), primary_key=True, default=generate_uuid)
    sender_id = Column(String(36), ForeignKey('users.id', ondelete='CASCADE'), nullable=False)
    receiver_id = Column(String(36), ForeignKey('users.id', ondelete='CASCADE'), nullable=False)
    sender_name = Column(String(100), nullable=False)
    message = Column(Text, nullable=False)
    created_at = Column(DateTime, default=datetime.now, nullable=False)
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now, nullable=False)

class Notification(Base):
    __tablename__ = 'notifications'
    id = Column(String(36), primary_key=True, default=generate_uuid)
    user_id = Column(String(36), ForeignKey('users.id', ondelete='CASCADE'), nullable=False)
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)
    type = Column(String(50), default="general", nullable=False)
    related_id = Column(String(36))
    is_read = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=datetime.now, nullable=False)

    user = relationship("User", back_populates="notifications")

class PaymentTransaction(Base):
    """Mock payment. Funds stay held until the booking completes."""
    __tablename__ = 'payment_transactions'
    id = Column(String(36), primary_key=True, default=generate_uuid)
    booking_id = Column(String(36), ForeignKey('bookings.id', ondelete='CASCADE'), nullable=False, unique=True)
    student_id = Column(String(36), ForeignKey('users.id', ondelete='CASCADE'), nullable=False)
    tutor_id = Column(String(36), ForeignKey('tutors.id', ondelete='CASCADE'), nullable=False)
    amount = Column(Float, nullable=False)
    platform_fee = Column(Float, nullable=False, default=0.0)
    payment_method = Column(String(20))
    status = Column(String(20), default=PaymentStatus.HELD.value, nullable=False)
    released_at = Column(DateTime)
    created_at = Column(DateTime, default=datetime.now, nullable=False)
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now, nullable=False)

    booking = relationship("Booking", back_populates="payment")

class ParentChildAccount(Base):
    __tablename__ = 'parent_child_accounts'
    id = Column(String(36), primary_key=True, default=generate_uuid)
    parent_user_id = Column(String(36), ForeignKey('users.id', ondelete='CASCADE'), nullable=False)
    child_user_id = Column(String(36), ForeignKey('users.id', ondelete='CASCADE'), nullable=False)
    created_at = Column(DateTime, default=datetime.now, nullable=False)

    __table_args__ = (
        UniqueConstraint('parent_user_id', 'child_user_id', name='uq_parent_child'),
    )

    child = relationship("User", foreign_keys=[child_user_id])

class TutorResource(Base):
    __tablename__ = 'tutor_resources'
    id = Column(String(36), primary_key=True, default=generate_uuid)
    tutor_id = Column(String(36), ForeignKey('tutors.id', ondelete='CASCADE'), nullable=False)
    title = Column(String(255), nullable=False)
    description = Column(Text)
    file_path = Column(String(500), nullable=False)
    file_type = Column(String(100))
    subject = Column(String(100))
    is_public = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=datetime.now, nullable=False)
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now, nullable=False)

# Add indexes for frequently queried columns
Index('idx_user_email_role', User.email, User.role)
Index('idx_tutor_rating', Tutor.rating)
Index('idx_availability_tutor_day', AvailabilityWindow.tutor_id, AvailabilityWindow.day_of_week)
Index('idx_booking_tutor_date', Booking.tutor_id, Booking.session_date)
Index('idx_booking_student', Booking.student_id)
Index('idx_progress_learner_subject', LearnerProgress.learner_id, LearnerProgress.subject)
Index('idx_message_pair', Message.sender_id, Message.receiver_id)
Index('idx_notification_user', Notification.user_id, Notification.is_read)

# Database setup
def build_engine(database_url: str):
    """Create an engine; SQLite needs cross-thread access for the threadpool FastAPI runs sync endpoints in."""
    if database_url.startswith("sqlite"):
        engine = create_engine(database_url, echo=False, connect_args={"check_same_thread": False})

        # SQLite ignores foreign keys (and ON DELETE) unless asked per connection
        @event.listens_for(engine, "connect")
        def _enable_foreign_keys(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        return engine
    return create_engine(
        database_url,
        echo=False,
        pool_size=5,
        max_overflow=10,
        pool_timeout=30,
        pool_pre_ping=True
    )

DATABASE_URL = get_settings().db_url
engine = build_engine(DATABASE_URL)
SessionLocal = sessionmaker(bind=engine, autoflush=False)

def init_db(bind=None):
    """Create all tables. Called on application startup."""
    Base.metadata.create_all(bind or engine)

# Dependency to get DB session
def get_db():
    """Provides a transactional scope around a series of operations."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
