"""Persistence layer.

The API talks to a ``Store``; ``make_store`` picks the implementation named by
``STORE_BACKEND``. ``SqlStore`` (sql_store.py) keeps rows in a relational
database through SQLAlchemy, ``MemoryStore`` keeps them in process memory and
is handy for demos and tests. Both return plain dicts shaped like the
``to_dict`` output of the models.
"""
import copy
import datetime
import threading

from errors import Conflict, NotFound
from models import PRIORITY_RANK, utcnow


class Store:
    backend = None

    def is_empty(self):
        raise NotImplementedError

    # users
    def get_user(self, user_id):
        raise NotImplementedError

    def get_user_by_username(self, username):
        raise NotImplementedError

    def list_users(self):
        raise NotImplementedError

    def create_user(self, username, email, password_hash, role):
        raise NotImplementedError

    def delete_user(self, user_id):
        raise NotImplementedError

    # students
    def list_students(self, page=1, limit=10, class_code=None, class_in=None, status=None,
                      search=None):
        raise NotImplementedError

    def get_student(self, student_id):
        raise NotImplementedError

    def create_student(self, fields):
        raise NotImplementedError

    def update_student(self, student_id, changes):
        raise NotImplementedError

    def delete_student(self, student_id):
        """Delete a student and its terms; returns the term attachment paths."""
        raise NotImplementedError

    def student_stats(self):
        raise NotImplementedError

    # terms
    def list_terms(self, student_id, term=None, academic_year=None):
        raise NotImplementedError

    def get_term(self, student_id, term_id):
        raise NotImplementedError

    def upsert_term(self, student_id, term_number, academic_year, fields):
        """Insert or update the (student, term, year) row.

        Returns ``(row, created, replaced_file_path)``; the last item is the
        path of an attachment superseded by a new upload, else None.
        """
        raise NotImplementedError

    # announcements
    def list_announcements(self):
        raise NotImplementedError

    def create_announcement(self, fields, created_by):
        raise NotImplementedError

    def update_announcement(self, announcement_id, changes):
        raise NotImplementedError

    def delete_announcement(self, announcement_id):
        raise NotImplementedError

    # events
    def list_upcoming_events(self, today, limit=10):
        raise NotImplementedError

    def create_event(self, fields, created_by):
        raise NotImplementedError

    def update_event(self, event_id, changes):
        raise NotImplementedError

    def delete_event(self, event_id):
        raise NotImplementedError


def _stamp():
    return utcnow().isoformat()


def _plain(value):
    if isinstance(value, (datetime.date, datetime.datetime)):
        return value.isoformat()
    return value


class MemoryStore(Store):
    backend = 'memory'

    TABLES = ('users', 'students', 'student_terms', 'announcements', 'events')

    def __init__(self):
        self._lock = threading.RLock()
        self._rows = {name: {} for name in self.TABLES}
        self._ids = {name: 0 for name in self.TABLES}

    def _insert(self, table, row):
        self._ids[table] += 1
        now = _stamp()
        row = {k: _plain(v) for k, v in row.items()}
        row.update({'id': self._ids[table], 'created_at': now, 'updated_at': now})
        self._rows[table][row['id']] = row
        return row

    def _get(self, table, row_id, label):
        row = self._rows[table].get(row_id)
        if row is None:
            raise NotFound(f'{label} not found')
        return row

    def _touch(self, row, changes):
        row.update({k: _plain(v) for k, v in changes.items()})
        row['updated_at'] = _stamp()
        return row

    def _with_creator(self, row):
        out = copy.deepcopy(row)
        creator = self._rows['users'].get(row.get('created_by'))
        out['created_by_name'] = creator['username'] if creator else None
        return out

    def is_empty(self):
        with self._lock:
            return not self._rows['users']

    # users
    def get_user(self, user_id):
        with self._lock:
            return copy.deepcopy(self._get('users', user_id, 'User'))

    def get_user_by_username(self, username):
        with self._lock:
            for row in self._rows['users'].values():
                if row['username'] == username:
                    return copy.deepcopy(row)
        return None

    def list_users(self):
        with self._lock:
            rows = sorted(self._rows['users'].values(), key=lambda r: (r['created_at'], r['id']))
            return copy.deepcopy(rows)

    def create_user(self, username, email, password_hash, role):
        with self._lock:
            for row in self._rows['users'].values():
                if row['username'] == username or row['email'] == email:
                    raise Conflict('Username or email already exists')
            row = self._insert('users', {'username': username, 'email': email,
                                         'password_hash': password_hash, 'role': role})
            return copy.deepcopy(row)

    def delete_user(self, user_id):
        with self._lock:
            row = self._get('users', user_id, 'User')
            del self._rows['users'][user_id]
            for table in ('announcements', 'events'):
                for item in self._rows[table].values():
                    if item.get('created_by') == user_id:
                        item['created_by'] = None
            return copy.deepcopy(row)

    # students
    def list_students(self, page=1, limit=10, class_code=None, class_in=None, status=None,
                      search=None):
        with self._lock:
            rows = list(self._rows['students'].values())
        if class_code:
            rows = [r for r in rows if r['class'] == class_code]
        if class_in:
            rows = [r for r in rows if r['class'] in class_in]
        if status:
            rows = [r for r in rows if r['status'] == status]
        if search:
            needle = search.lower()
            rows = [r for r in rows if needle in r['full_name'].lower()]
        rows.sort(key=lambda r: (r['created_at'], r['id']), reverse=True)
        offset = (page - 1) * limit
        return copy.deepcopy(rows[offset:offset + limit]), len(rows)

    def get_student(self, student_id):
        with self._lock:
            return copy.deepcopy(self._get('students', student_id, 'Student'))

    def create_student(self, fields):
        row = {
            'full_name': None, 'date_of_birth': None, 'class': None, 'status': 'active',
            'sports_house': None, 'cca': None, 'cca_optional': 'none', 'quran_teacher': None,
            'gender': None,
        }
        row.update({k: v for k, v in fields.items() if v is not None})
        with self._lock:
            return copy.deepcopy(self._insert('students', row))

    def update_student(self, student_id, changes):
        with self._lock:
            row = self._get('students', student_id, 'Student')
            return copy.deepcopy(self._touch(row, changes))

    def delete_student(self, student_id):
        with self._lock:
            self._get('students', student_id, 'Student')
            del self._rows['students'][student_id]
            paths = []
            for term_id, term in list(self._rows['student_terms'].items()):
                if term['student_id'] == student_id:
                    if term.get('file_path'):
                        paths.append(term['file_path'])
                    del self._rows['student_terms'][term_id]
            return paths

    def student_stats(self):
        with self._lock:
            rows = list(self._rows['students'].values())
        genders, classes = {}, {}
        for row in rows:
            genders[row['gender']] = genders.get(row['gender'], 0) + 1
            classes[row['class']] = classes.get(row['class'], 0) + 1
        return {
            'total_students': len(rows),
            'gender_stats': [{'gender': g, 'count': c}
                             for g, c in sorted(genders.items(), key=lambda i: -i[1])],
            'class_stats': [{'class': k, 'count': classes[k]} for k in sorted(classes)],
        }

    # terms
    def list_terms(self, student_id, term=None, academic_year=None):
        with self._lock:
            self._get('students', student_id, 'Student')
            rows = [r for r in self._rows['student_terms'].values() if r['student_id'] == student_id]
        if term is not None:
            rows = [r for r in rows if r['term_number'] == term]
        if academic_year:
            rows = [r for r in rows if r['academic_year'] == academic_year]
        rows.sort(key=lambda r: (r['academic_year'] or '', r['term_number']))
        return copy.deepcopy(rows)

    def get_term(self, student_id, term_id):
        with self._lock:
            row = self._rows['student_terms'].get(term_id)
            if row is None or row['student_id'] != student_id:
                raise NotFound('Term record not found')
            return copy.deepcopy(row)

    def upsert_term(self, student_id, term_number, academic_year, fields):
        with self._lock:
            self._get('students', student_id, 'Student')
            for row in self._rows['student_terms'].values():
                if (row['student_id'], row['term_number'], row['academic_year']) == \
                        (student_id, term_number, academic_year):
                    replaced = None
                    if fields.get('file_path') and row.get('file_path') != fields['file_path']:
                        replaced = row.get('file_path')
                    changes = {k: v for k, v in fields.items()
                               if not k.startswith('file_') or fields.get('file_path')}
                    return copy.deepcopy(self._touch(row, changes)), False, replaced
            row = {
                'student_id': student_id, 'term_number': term_number,
                'academic_year': academic_year, 'remarks': None, 'file_name': None,
                'file_path': None, 'file_size': None, 'file_type': None,
            }
            row.update(fields)
            return copy.deepcopy(self._insert('student_terms', row)), True, None

    # announcements
    def list_announcements(self):
        with self._lock:
            rows = [self._with_creator(r) for r in self._rows['announcements'].values()
                    if r['is_active']]
        rows.sort(key=lambda r: (r['created_at'], r['id']), reverse=True)
        rows.sort(key=lambda r: PRIORITY_RANK[r['priority']], reverse=True)
        return rows

    def create_announcement(self, fields, created_by):
        row = {'priority': 'normal', 'is_active': True}
        row.update({k: v for k, v in fields.items() if v is not None})
        row['created_by'] = created_by
        with self._lock:
            return self._with_creator(self._insert('announcements', row))

    def update_announcement(self, announcement_id, changes):
        with self._lock:
            row = self._get('announcements', announcement_id, 'Announcement')
            return self._with_creator(self._touch(row, changes))

    def delete_announcement(self, announcement_id):
        with self._lock:
            row = self._get('announcements', announcement_id, 'Announcement')
            del self._rows['announcements'][announcement_id]
            return copy.deepcopy(row)

    # events
    def list_upcoming_events(self, today, limit=10):
        cutoff = today.isoformat()
        with self._lock:
            rows = [self._with_creator(r) for r in self._rows['events'].values()
                    if r['is_active'] and r['event_date'] >= cutoff]
        rows.sort(key=lambda r: (r['event_date'], -PRIORITY_RANK[r['priority']], r['id']))
        return rows[:limit]

    def create_event(self, fields, created_by):
        row = {'description': None, 'event_time': None, 'location': None,
               'priority': 'normal', 'is_active': True}
        row.update({k: v for k, v in fields.items() if v is not None})
        row['created_by'] = created_by
        with self._lock:
            return self._with_creator(self._insert('events', row))

    def update_event(self, event_id, changes):
        with self._lock:
            row = self._get('events', event_id, 'Event')
            return self._with_creator(self._touch(row, changes))

    def delete_event(self, event_id):
        with self._lock:
            row = self._get('events', event_id, 'Event')
            del self._rows['events'][event_id]
            return copy.deepcopy(row)


def make_store(config):
    backend = (config.get('STORE_BACKEND') or 'sql').lower()
    if backend == 'memory':
        return MemoryStore()
    if backend == 'sql':
        from sql_store import SqlStore
        return SqlStore(config['DATABASE_URL'])
    raise ValueError(f'Unknown STORE_BACKEND: {backend!r}')
