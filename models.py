# models.py
import datetime

from sqlalchemy import (Boolean, Column, Date, DateTime, Enum, ForeignKey, Integer, String, Text,
                        UniqueConstraint)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()

ROLES = ('admin', 'teacher')
STUDENT_STATUSES = ('active', 'inactive', 'graduated')
SPORTS_HOUSES = ('yellow', 'green', 'blue')
CCAS = ('silat', 'taekwondo')
OPTIONAL_CCAS = ('badminton', 'swimming', 'none')
GENDERS = ('male', 'female')
PRIORITIES = ('low', 'normal', 'high', 'urgent')
TERM_NUMBERS = (1, 2, 3)

# urgent sorts first
PRIORITY_RANK = {name: rank for rank, name in enumerate(PRIORITIES)}


def utcnow():
    return datetime.datetime.now(datetime.timezone.utc).replace(tzinfo=None)


def _iso(value):
    return value.isoformat() if value is not None else None


class User(Base):
    __tablename__ = 'users'
    id = Column(Integer, primary_key=True, autoincrement=True)
    username = Column(String(50), unique=True, nullable=False)
    email = Column(String(100), unique=True, nullable=False)
    password_hash = Column(String(255), nullable=False)
    role = Column(Enum(*ROLES, name='user_role'), nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    def to_dict(self):
        return {
            'id': self.id,
            'username': self.username,
            'email': self.email,
            'password_hash': self.password_hash,
            'role': self.role,
            'created_at': _iso(self.created_at),
            'updated_at': _iso(self.updated_at),
        }


class Student(Base):
    __tablename__ = 'students'
    id = Column(Integer, primary_key=True, autoincrement=True)
    full_name = Column(String(255), nullable=False)
    date_of_birth = Column(Date, nullable=False)
    class_code = Column('class', String(20), nullable=False)
    status = Column(Enum(*STUDENT_STATUSES, name='student_status'), nullable=False, default='active')
    # Columns below were added after the first release; see migrations.LATE_COLUMNS
    sports_house = Column(String(20))
    cca = Column(String(20))
    cca_optional = Column(String(20), default='none')
    quran_teacher = Column(String(255))
    gender = Column(String(10))
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)
    terms = relationship('StudentTerm', back_populates='student', cascade='all, delete-orphan')

    def to_dict(self):
        return {
            'id': self.id,
            'full_name': self.full_name,
            'date_of_birth': _iso(self.date_of_birth),
            'class': self.class_code,
            'status': self.status,
            'sports_house': self.sports_house,
            'cca': self.cca,
            'cca_optional': self.cca_optional,
            'quran_teacher': self.quran_teacher,
            'gender': self.gender,
            'created_at': _iso(self.created_at),
            'updated_at': _iso(self.updated_at),
        }


class StudentTerm(Base):
    __tablename__ = 'student_terms'
    __table_args__ = (
        UniqueConstraint('student_id', 'term_number', 'academic_year', name='uq_student_term_year'),
    )
    id = Column(Integer, primary_key=True, autoincrement=True)
    student_id = Column(Integer, ForeignKey('students.id', ondelete='CASCADE'), nullable=False)
    term_number = Column(Integer, nullable=False)
    academic_year = Column(String(9))
    attendance = Column(Integer, nullable=False)
    academic_score = Column(Integer, nullable=False)
    remarks = Column(Text)
    file_name = Column(String(255))
    file_path = Column(String(500))
    file_size = Column(Integer)
    file_type = Column(String(100))
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)
    student = relationship('Student', back_populates='terms')

    def to_dict(self):
        return {
            'id': self.id,
            'student_id': self.student_id,
            'term_number': self.term_number,
            'academic_year': self.academic_year,
            'attendance': self.attendance,
            'academic_score': self.academic_score,
            'remarks': self.remarks,
            'file_name': self.file_name,
            'file_path': self.file_path,
            'file_size': self.file_size,
            'file_type': self.file_type,
            'created_at': _iso(self.created_at),
            'updated_at': _iso(self.updated_at),
        }


class Announcement(Base):
    __tablename__ = 'announcements'
    id = Column(Integer, primary_key=True, autoincrement=True)
    title = Column(String(255), nullable=False)
    content = Column(Text, nullable=False)
    priority = Column(Enum(*PRIORITIES, name='priority_level'), nullable=False, default='normal')
    is_active = Column(Boolean, nullable=False, default=True)
    created_by = Column(Integer, ForeignKey('users.id', ondelete='SET NULL'))
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)
    creator = relationship('User')

    def to_dict(self):
        return {
            'id': self.id,
            'title': self.title,
            'content': self.content,
            'priority': self.priority,
            'is_active': self.is_active,
            'created_by': self.created_by,
            'created_by_name': self.creator.username if self.creator else None,
            'created_at': _iso(self.created_at),
            'updated_at': _iso(self.updated_at),
        }


class Event(Base):
    __tablename__ = 'events'
    id = Column(Integer, primary_key=True, autoincrement=True)
    title = Column(String(255), nullable=False)
    description = Column(Text)
    event_date = Column(Date, nullable=False)
    event_time = Column(String(8))  # HH:MM
    location = Column(String(255))
    priority = Column(Enum(*PRIORITIES, name='priority_level'), nullable=False, default='normal')
    is_active = Column(Boolean, nullable=False, default=True)
    created_by = Column(Integer, ForeignKey('users.id', ondelete='SET NULL'))
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)
    creator = relationship('User')

    def to_dict(self):
        return {
            'id': self.id,
            'title': self.title,
            'description': self.description,
            'event_date': _iso(self.event_date),
            'event_time': self.event_time,
            'location': self.location,
            'priority': self.priority,
            'is_active': self.is_active,
            'created_by': self.created_by,
            'created_by_name': self.creator.username if self.creator else None,
            'created_at': _iso(self.created_at),
            'updated_at': _iso(self.updated_at),
        }
