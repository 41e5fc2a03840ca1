from datetime import datetime
from sqlalchemy import (
    Column, Integer, Text, Float, Boolean, ForeignKey, Index,
    DateTime,
)
from sqlalchemy.orm import relationship
from db.database import Base


class Homeschool(Base):
    __tablename__ = "homeschools"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(Text, nullable=False)
    timezone = Column(Text)  # IANA name; NULL falls back to settings.DEFAULT_TIMEZONE
    week_start_day = Column(Integer)  # 0 = Sunday; NULL falls back to settings.DEFAULT_WEEK_START_DAY
    allow_multiple_records_per_day = Column(Boolean)
    public_dashboard_id = Column(Text, unique=True)
    cycle_seconds = Column(Integer)
    created_at = Column(DateTime, default=datetime.utcnow)

    people = relationship("Person", back_populates="homeschool", cascade="all, delete-orphan")
    activities = relationship("Activity", back_populates="homeschool", cascade="all, delete-orphan")
    goals = relationship("Goal", back_populates="homeschool", cascade="all, delete-orphan")


class Person(Base):
    __tablename__ = "people"

    id = Column(Integer, primary_key=True, autoincrement=True)
    homeschool_id = Column(Integer, ForeignKey("homeschools.id"), nullable=False)
    name = Column(Text, nullable=False)
    role = Column(Text, nullable=False, default="student")  # parent | tutor | observer | student
    email = Column(Text)
    daily_work_hours_goal = Column(Float)
    last_activity_at = Column(DateTime)  # set whenever the person records an activity
    created_at = Column(DateTime, default=datetime.utcnow)

    homeschool = relationship("Homeschool", back_populates="people")

    __table_args__ = (
        Index("idx_people_homeschool_role", "homeschool_id", "role"),
    )


class Activity(Base):
    __tablename__ = "activities"

    id = Column(Integer, primary_key=True, autoincrement=True)
    homeschool_id = Column(Integer, ForeignKey("homeschools.id"), nullable=False)
    name = Column(Text, nullable=False)
    description = Column(Text)
    subject = Column(Text)
    tracks_percentage = Column(Boolean, nullable=False, default=False)
    tracks_time = Column(Boolean, nullable=False, default=False)
    tracks_count = Column(Boolean, nullable=False, default=False)
    progress_count_name = Column(Text)  # e.g. "pages", "problems"
    created_at = Column(DateTime, default=datetime.utcnow)

    homeschool = relationship("Homeschool", back_populates="activities")
    goals = relationship("Goal", back_populates="activity")


class Goal(Base):
    __tablename__ = "goals"

    id = Column(Integer, primary_key=True, autoincrement=True)
    homeschool_id = Column(Integer, ForeignKey("homeschools.id"), nullable=False)
    activity_id = Column(Integer, ForeignKey("activities.id"), nullable=False)
    name = Column(Text)
    student_ids_json = Column(Text, nullable=False, default="[]")  # JSON array of person ids
    times_per_week = Column(Integer)
    minutes_per_session = Column(Float)
    daily_percentage_increase = Column(Float)
    percentage_goal = Column(Float)
    progress_count = Column(Integer)
    start_date = Column(DateTime)
    deadline = Column(DateTime)
    times_done = Column(Integer)
    completions_json = Column(Text)  # JSON {student_id: {completion_date, grade}}
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    homeschool = relationship("Homeschool", back_populates="goals")
    activity = relationship("Activity", back_populates="goals")
    instances = relationship("ActivityInstance", back_populates="goal", cascade="all, delete-orphan")


class ActivityInstance(Base):
    __tablename__ = "activity_instances"

    id = Column(Integer, primary_key=True, autoincrement=True)
    goal_id = Column(Integer, ForeignKey("goals.id"), nullable=False)
    student_id = Column(Integer, ForeignKey("people.id"), nullable=False)
    description = Column(Text)
    date = Column(DateTime, nullable=False)  # UTC instant of local midnight of the intended day
    start_time = Column(DateTime)
    end_time = Column(DateTime)
    duration = Column(Float)  # minutes
    starting_percentage = Column(Float)
    ending_percentage = Column(Float)
    percentage_completed = Column(Float)
    count_completed = Column(Integer)
    created_by = Column(Text)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    goal = relationship("Goal", back_populates="instances")

    __table_args__ = (
        Index("idx_activity_instances_goal_student_date", "goal_id", "student_id", "date"),
        Index("idx_activity_instances_student_date", "student_id", "date"),
    )
