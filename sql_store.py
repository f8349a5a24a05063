import logging
from contextlib import contextmanager

from sqlalchemy import case, create_engine, func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

from errors import Conflict, NotFound
from models import PRIORITY_RANK, Announcement, Base, Event, Student, StudentTerm, User
from store import Store

log = logging.getLogger(__name__)

# Student dict keys -> model attributes
_STUDENT_ATTRS = {
    'full_name': 'full_name',
    'date_of_birth': 'date_of_birth',
    'class': 'class_code',
    'status': 'status',
    'sports_house': 'sports_house',
    'cca': 'cca',
    'cca_optional': 'cca_optional',
    'quran_teacher': 'quran_teacher',
    'gender': 'gender',
}


def _priority_rank(column):
    return case(PRIORITY_RANK, value=column, else_=0)


class SqlStore(Store):
    backend = 'sql'

    def __init__(self, url, echo=False):
        connect_args = {'check_same_thread': False} if url.startswith('sqlite') else {}
        self.engine = create_engine(url, echo=echo, connect_args=connect_args)
        self.SessionLocal = sessionmaker(bind=self.engine, expire_on_commit=False)

    def create_tables(self):
        Base.metadata.create_all(self.engine)

    def dispose(self):
        self.engine.dispose()

    @contextmanager
    def session(self):
        db = self.SessionLocal()
        try:
            yield db
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    @staticmethod
    def _one(db, model, row_id, label):
        row = db.get(model, row_id)
        if row is None:
            raise NotFound(f'{label} not found')
        return row

    def is_empty(self):
        with self.session() as db:
            return db.query(User.id).first() is None

    # users
    def get_user(self, user_id):
        with self.session() as db:
            return self._one(db, User, user_id, 'User').to_dict()

    def get_user_by_username(self, username):
        with self.session() as db:
            user = db.query(User).filter_by(username=username).first()
            return user.to_dict() if user else None

    def list_users(self):
        with self.session() as db:
            return [u.to_dict() for u in db.query(User).order_by(User.created_at, User.id).all()]

    def create_user(self, username, email, password_hash, role):
        try:
            with self.session() as db:
                taken = db.query(User.id).filter(
                    or_(User.username == username, User.email == email)).first()
                if taken:
                    raise Conflict('Username or email already exists')
                user = User(username=username, email=email, password_hash=password_hash, role=role)
                db.add(user)
                db.flush()
                return user.to_dict()
        except IntegrityError:
            raise Conflict('Username or email already exists')

    def delete_user(self, user_id):
        with self.session() as db:
            user = self._one(db, User, user_id, 'User')
            data = user.to_dict()
            for model in (Announcement, Event):
                db.query(model).filter_by(created_by=user_id).update({'created_by': None})
            db.delete(user)
            return data

    # students
    def list_students(self, page=1, limit=10, class_code=None, class_in=None, status=None,
                      search=None):
        with self.session() as db:
            query = db.query(Student)
            if class_code:
                query = query.filter(Student.class_code == class_code)
            if class_in:
                query = query.filter(Student.class_code.in_(class_in))
            if status:
                query = query.filter(Student.status == status)
            if search:
                pattern = search.replace('\\', '\\\\').replace('%', '\\%').replace('_', '\\_')
                query = query.filter(Student.full_name.ilike(f'%{pattern}%', escape='\\'))
            total = query.count()
            rows = (query.order_by(Student.created_at.desc(), Student.id.desc())
                    .offset((page - 1) * limit).limit(limit).all())
            return [s.to_dict() for s in rows], total

    def get_student(self, student_id):
        with self.session() as db:
            return self._one(db, Student, student_id, 'Student').to_dict()

    def create_student(self, fields):
        with self.session() as db:
            student = Student(**{_STUDENT_ATTRS[k]: v for k, v in fields.items()
                                 if v is not None})
            db.add(student)
            db.flush()
            return student.to_dict()

    def update_student(self, student_id, changes):
        with self.session() as db:
            student = self._one(db, Student, student_id, 'Student')
            for key, value in changes.items():
                setattr(student, _STUDENT_ATTRS[key], value)
            db.flush()
            return student.to_dict()

    def delete_student(self, student_id):
        with self.session() as db:
            student = self._one(db, Student, student_id, 'Student')
            paths = [t.file_path for t in student.terms if t.file_path]
            db.delete(student)
            return paths

    def student_stats(self):
        with self.session() as db:
            total = db.query(func.count(Student.id)).scalar() or 0
            count = func.count(Student.id)
            genders = (db.query(Student.gender, count).group_by(Student.gender)
                       .order_by(count.desc()).all())
            classes = (db.query(Student.class_code, count).group_by(Student.class_code)
                       .order_by(Student.class_code).all())
            return {
                'total_students': total,
                'gender_stats': [{'gender': g, 'count': c} for g, c in genders],
                'class_stats': [{'class': k, 'count': c} for k, c in classes],
            }

    # terms
    def list_terms(self, student_id, term=None, academic_year=None):
        with self.session() as db:
            self._one(db, Student, student_id, 'Student')
            query = db.query(StudentTerm).filter_by(student_id=student_id)
            if term is not None:
                query = query.filter_by(term_number=term)
            if academic_year:
                query = query.filter_by(academic_year=academic_year)
            rows = query.order_by(StudentTerm.academic_year, StudentTerm.term_number).all()
            return [t.to_dict() for t in rows]

    def get_term(self, student_id, term_id):
        with self.session() as db:
            term = db.query(StudentTerm).filter_by(id=term_id, student_id=student_id).first()
            if term is None:
                raise NotFound('Term record not found')
            return term.to_dict()

    def upsert_term(self, student_id, term_number, academic_year, fields):
        try:
            with self.session() as db:
                self._one(db, Student, student_id, 'Student')
                term = db.query(StudentTerm).filter_by(
                    student_id=student_id, term_number=term_number,
                    academic_year=academic_year).first()
                created, replaced = term is None, None
                if created:
                    term = StudentTerm(student_id=student_id, term_number=term_number,
                                       academic_year=academic_year)
                    db.add(term)
                elif fields.get('file_path') and term.file_path != fields['file_path']:
                    replaced = term.file_path
                for key, value in fields.items():
                    setattr(term, key, value)
                db.flush()
                return term.to_dict(), created, replaced
        except IntegrityError:
            log.warning('Concurrent write on term %s/%s for student %s', term_number,
                        academic_year, student_id)
            raise Conflict('Term record was modified concurrently, retry')

    # announcements
    def list_announcements(self):
        with self.session() as db:
            rows = (db.query(Announcement).filter(Announcement.is_active.is_(True))
                    .order_by(_priority_rank(Announcement.priority).desc(),
                              Announcement.created_at.desc(), Announcement.id.desc())
                    .all())
            return [a.to_dict() for a in rows]

    def create_announcement(self, fields, created_by):
        with self.session() as db:
            ann = Announcement(created_by=created_by,
                               **{k: v for k, v in fields.items() if v is not None})
            db.add(ann)
            db.flush()
            return ann.to_dict()

    def update_announcement(self, announcement_id, changes):
        with self.session() as db:
            ann = self._one(db, Announcement, announcement_id, 'Announcement')
            for key, value in changes.items():
                setattr(ann, key, value)
            db.flush()
            return ann.to_dict()

    def delete_announcement(self, announcement_id):
        with self.session() as db:
            ann = self._one(db, Announcement, announcement_id, 'Announcement')
            data = ann.to_dict()
            db.delete(ann)
            return data

    # events
    def list_upcoming_events(self, today, limit=10):
        with self.session() as db:
            rows = (db.query(Event)
                    .filter(Event.is_active.is_(True), Event.event_date >= today)
                    .order_by(Event.event_date.asc(), _priority_rank(Event.priority).desc(),
                              Event.id)
                    .limit(limit).all())
            return [e.to_dict() for e in rows]

    def create_event(self, fields, created_by):
        with self.session() as db:
            event = Event(created_by=created_by,
                          **{k: v for k, v in fields.items() if v is not None})
            db.add(event)
            db.flush()
            return event.to_dict()

    def update_event(self, event_id, changes):
        with self.session() as db:
            event = self._one(db, Event, event_id, 'Event')
            for key, value in changes.items():
                setattr(event, key, value)
            db.flush()
            return event.to_dict()

    def delete_event(self, event_id):
        with self.session() as db:
            event = self._one(db, Event, event_id, 'Event')
            data = event.to_dict()
            db.delete(event)
            return data
