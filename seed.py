import datetime
import logging

import click
from flask import current_app

from auth import hash_password
from errors import Conflict
from migrations import apply_schema_guards
from models import GENDERS, ROLES

log = logging.getLogger(__name__)

DEMO_USERS = [
    ('admin', 'admin@school.com', 'admin'),
    ('teacher1', 'teacher1@school.com', 'teacher'),
]
DEMO_PASSWORD = 'password'

DEMO_STUDENTS = [
    {'full_name': 'John Doe', 'date_of_birth': datetime.date(2005, 3, 15), 'class': '10A',
     'status': 'active', 'gender': 'male', 'sports_house': 'blue', 'cca': 'silat'},
    {'full_name': 'Jane Smith', 'date_of_birth': datetime.date(2005, 7, 22), 'class': '10A',
     'status': 'active', 'gender': 'female', 'sports_house': 'green', 'cca': 'taekwondo',
     'cca_optional': 'swimming'},
    {'full_name': 'Mike Johnson', 'date_of_birth': datetime.date(2005, 11, 8), 'class': '10B',
     'status': 'active', 'gender': 'male', 'sports_house': 'yellow'},
    {'full_name': 'Sarah Williams', 'date_of_birth': datetime.date(2005, 1, 30), 'class': '10B',
     'status': 'inactive', 'gender': 'female'},
]

# (student index, term, attendance, score, remarks)
DEMO_TERMS = [
    (0, 1, 95, 88, 'Excellent performance'),
    (0, 2, 92, 85, 'Consistent progress'),
    (0, 3, 94, 90, 'Outstanding results'),
    (1, 1, 88, 92, 'Very good academic performance'),
    (1, 2, 90, 89, 'Maintaining good standards'),
    (2, 1, 85, 78, 'Needs improvement in attendance'),
    (3, 1, 78, 82, 'Fair performance, room for growth'),
]


def seed_demo_data(store, academic_year='2024/2025'):
    """Create the demo accounts and records; running it again changes nothing."""
    users = {}
    for username, email, role in DEMO_USERS:
        user = store.get_user_by_username(username)
        if user is None:
            try:
                user = store.create_user(username, email, hash_password(DEMO_PASSWORD), role)
                log.info('Seeded user %s (%s)', username, role)
            except Conflict:
                log.warning('Skipping demo user %s: username or email taken', username)
                continue
        users[username] = user

    _, total = store.list_students(page=1, limit=1)
    if total == 0:
        students = [store.create_student(dict(s)) for s in DEMO_STUDENTS]
        for index, term, attendance, score, remarks in DEMO_TERMS:
            store.upsert_term(students[index]['id'], term, academic_year,
                              {'attendance': attendance, 'academic_score': score, 'remarks': remarks})
        log.info('Seeded %d students and %d term records', len(students), len(DEMO_TERMS))

    admin = users.get('admin')
    if admin and not store.list_announcements():
        store.create_announcement({
            'title': 'Welcome back',
            'content': 'Term 1 starts next week. Please update attendance records daily.',
            'priority': 'high',
        }, created_by=admin['id'])
    if admin and not store.list_upcoming_events(datetime.date.today()):
        store.create_event({
            'title': 'Sports day',
            'description': 'Inter-house athletics meet',
            'event_date': datetime.date.today() + datetime.timedelta(days=14),
            'event_time': '08:00',
            'location': 'School field',
        }, created_by=admin['id'])


def normalize_genders(store, replacement):
    """Rewrite gender values outside the supported set; returns (changed, distribution)."""
    changed, page = 0, 1
    while True:
        students, total = store.list_students(page=page, limit=100)
        for student in students:
            if student['gender'] is not None and student['gender'] not in GENDERS:
                store.update_student(student['id'], {'gender': replacement})
                changed += 1
        if page * 100 >= total:
            break
        page += 1
    return changed, store.student_stats()['gender_stats']


def register_commands(app):
    @app.cli.command('migrate')
    def migrate_command():
        """Add missing tables and columns to the database."""
        store = current_app.extensions['store']
        if store.backend != 'sql':
            click.echo(f'Nothing to migrate for the {store.backend} store.')
            return
        added = apply_schema_guards(store.engine, current_app.config.get('DEFAULT_ACADEMIC_YEAR'))
        if added:
            for column in added:
                click.echo(f'added {column}')
        else:
            click.echo('Schema is up to date.')

    @app.cli.command('seed')
    def seed_command():
        """Load demo users, students, terms, an announcement and an event."""
        seed_demo_data(current_app.extensions['store'],
                       current_app.config.get('DEFAULT_ACADEMIC_YEAR', '2024/2025'))
        click.echo(f'Seeded demo data. Log in as admin / {DEMO_PASSWORD}.')

    @app.cli.command('normalize-genders')
    @click.option('--to', 'replacement', type=click.Choice(GENDERS), default='female',
                  show_default=True, help='Value given to unsupported genders.')
    def normalize_genders_command(replacement):
        """Rewrite legacy gender values (e.g. 'other') to male/female."""
        changed, distribution = normalize_genders(current_app.extensions['store'], replacement)
        click.echo(f"Updated {changed} students to '{replacement}'")
        for row in distribution:
            click.echo(f"  {row['gender']}: {row['count']}")

    @app.cli.command('create-user')
    @click.argument('username')
    @click.argument('email')
    @click.option('--role', type=click.Choice(ROLES), default='teacher', show_default=True)
    @click.password_option()
    def create_user_command(username, email, role, password):
        """Create a login account."""
        if len(password) < 6:
            raise click.BadParameter('must be at least 6 characters', param_hint='password')
        try:
            user = current_app.extensions['store'].create_user(
                username, email.lower(), hash_password(password), role)
        except Conflict as e:
            raise click.ClickException(e.msg)
        click.echo(f"Created {user['role']} {user['username']} (id {user['id']})")
