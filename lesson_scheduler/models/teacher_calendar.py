"""Per-teacher calendar version used for compare-and-set writes."""

from sqlalchemy import Column, Integer, String

from lesson_scheduler.database import Base


class TeacherCalendar(Base):
    """One row per teacher; ``version`` changes on every calendar write."""
    __tablename__ = "teacher_calendars"

    teacher_id = Column(String, primary_key=True)
    version = Column(Integer, nullable=False, default=0)
