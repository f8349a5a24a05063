import datetime
import logging
import math
import os
import time
from logging.handlers import RotatingFileHandler
from pathlib import Path

from flask import Blueprint, Flask, current_app, g, jsonify, request, send_file
from flask.logging import default_handler
from flask_cors import CORS
from werkzeug.exceptions import HTTPException, RequestEntityTooLarge

from auth import hash_password, issue_token, require_role, token_required, verify_password
from config import check_secrets, config_for_env
from errors import ApiError, BadRequest, NotFound, Unauthorized
from migrations import apply_schema_guards
from models import (CCAS, GENDERS, OPTIONAL_CCAS, PRIORITIES, ROLES, SPORTS_HOUSES,
                    STUDENT_STATUSES, TERM_NUMBERS)
from seed import register_commands, seed_demo_data
from store import make_store
from uploads import remove_file, save_term_file
from validation import (MISSING, check_academic_year, check_bool, check_choice, check_date,
                        check_email, check_int, check_min_length, check_str, check_time, present,
                        raise_if)

api = Blueprint('api', __name__, url_prefix='/api')

MODULE_LOGGERS = ('sql_store', 'migrations', 'uploads', 'seed')


def configure_logging(app):
    level = app.config.get('LOG_LEVEL', 'INFO')
    app.logger.setLevel(level)
    app.logger.removeHandler(default_handler)
    module_loggers = [logging.getLogger(name) for name in MODULE_LOGGERS]
    for logger in module_loggers:
        logger.setLevel(level)
    # app.logger is shared by every app built from this module
    if app.logger.handlers:
        return

    console = logging.StreamHandler()
    console.setFormatter(logging.Formatter('[%(asctime)s] %(levelname)s in %(module)s: %(message)s'))
    app.logger.addHandler(console)
    # module loggers (store, migrations, uploads) share the app's console handler
    for logger in module_loggers:
        if not logger.handlers:
            logger.addHandler(console)

    log_dir = app.config.get('LOG_DIR')
    if log_dir:
        log_dir = Path(log_dir)
        log_dir.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(log_dir / 'app.log', maxBytes=2_000_000, backupCount=5)
        file_handler.setLevel(level)
        file_handler.setFormatter(
            logging.Formatter('%(asctime)s %(levelname)s %(name)s %(funcName)s: %(message)s'))
        app.logger.addHandler(file_handler)


def get_store():
    return current_app.extensions['store']


def _public_user(user):
    return {k: user[k] for k in ('id', 'username', 'email', 'role', 'created_at')}


def _public_term(term):
    data = {k: v for k, v in term.items() if k != 'file_path'}
    data['has_file'] = bool(term.get('file_path'))
    return data


def _json_body():
    body = request.get_json(silent=True)
    return body if isinstance(body, dict) else {}


# --- health ---------------------------------------------------------------

@api.route('/health', methods=['GET'])
def health():
    return jsonify({
        'status': 'OK',
        'timestamp': datetime.datetime.now(datetime.timezone.utc).isoformat(),
        'uptime': round(time.time() - current_app.extensions['started_at'], 3),
    })


# --- auth -----------------------------------------------------------------

@api.route('/auth/login', methods=['POST'])
def login():
    d = _json_body()
    errors = []
    username = check_str(d, 'username', errors, 'Username is required', required=True)
    password = d.get('password')
    if not isinstance(password, str) or not password:
        errors.append({'field': 'password', 'msg': 'Password is required'})
    raise_if(errors)

    user = get_store().get_user_by_username(username)
    if not user or not verify_password(user['password_hash'], password):
        current_app.logger.warning('Failed login for %r from %s', username, request.remote_addr)
        raise Unauthorized('Invalid credentials')
    current_app.logger.info('User %s logged in', username)
    return jsonify({
        'ok': True,
        'token': issue_token(user),
        'user': {k: user[k] for k in ('id', 'username', 'email', 'role')},
    })


@api.route('/auth/me', methods=['GET'])
@token_required
def me():
    user = get_store().get_user(g.user['id'])
    return jsonify({'ok': True, 'user': _public_user(user)})


@api.route('/auth/logout', methods=['POST'])
@token_required
def logout():
    # tokens are stateless; the client drops its copy
    current_app.logger.info('User %s logged out', g.user.get('username'))
    return jsonify({'ok': True, 'msg': 'Logout successful'})


# --- students -------------------------------------------------------------

def _student_fields(d, partial=False):
    errors = []
    required = not partial
    fields = {
        'full_name': check_str(d, 'full_name', errors, 'Full name is required',
                               required=required, blank_ok=False),
        'date_of_birth': check_date(d, 'date_of_birth', errors, 'Valid date of birth is required',
                                    required=required, blank_ok=False),
        'class': check_str(d, 'class', errors, 'Class is required', required=required,
                           blank_ok=False, max_length=20),
        'status': check_choice(d, 'status', STUDENT_STATUSES, errors, 'Invalid status',
                               required=required, blank_ok=False),
        'sports_house': check_choice(d, 'sports_house', SPORTS_HOUSES, errors, 'Invalid sports house'),
        'cca': check_choice(d, 'cca', CCAS, errors, 'Invalid CCA'),
        'cca_optional': check_choice(d, 'cca_optional', OPTIONAL_CCAS, errors,
                                     'Invalid optional CCA', blank='none'),
        'quran_teacher': check_str(d, 'quran_teacher', errors, 'Invalid Quran teacher'),
        'gender': check_choice(d, 'gender', GENDERS, errors, 'Invalid gender'),
    }
    raise_if(errors)
    return present(fields)


@api.route('/students', methods=['GET'])
@token_required
def list_students():
    args = request.args
    errors = []
    page = check_int(args, 'page', errors, 'page must be a positive integer', low=1)
    limit = check_int(args, 'limit', errors, 'limit must be between 1 and 100', low=1, high=100)
    status = check_choice(args, 'status', STUDENT_STATUSES, errors, 'Invalid status')
    raise_if(errors)
    page = page if isinstance(page, int) else 1
    limit = limit if isinstance(limit, int) else 10
    class_in = [c.strip() for c in args.get('class_in', '').split(',') if c.strip()]

    students, total = get_store().list_students(
        page=page, limit=limit,
        class_code=args.get('class') or None,
        class_in=class_in or None,
        status=status if isinstance(status, str) else None,
        search=(args.get('search') or '').strip() or None,
    )
    return jsonify({
        'ok': True,
        'students': students,
        'total': total,
        'page': page,
        'limit': limit,
        'totalPages': math.ceil(total / limit),
    })


@api.route('/students/stats', methods=['GET'])
@token_required
def student_stats():
    stats = get_store().student_stats()
    current_app.logger.debug('Student stats: %s', stats)
    return jsonify({'ok': True, **stats})


@api.route('/students/<int:student_id>', methods=['GET'])
@token_required
def get_student(student_id):
    return jsonify({'ok': True, 'student': get_store().get_student(student_id)})


@api.route('/students', methods=['POST'])
@token_required
@require_role('admin', 'teacher')
def create_student():
    fields = _student_fields(_json_body())
    student = get_store().create_student(fields)
    current_app.logger.info('Student %s created by %s', student['id'], g.user['username'])
    return jsonify({'ok': True, 'msg': 'Student added successfully', 'student': student}), 201


@api.route('/students/<int:student_id>', methods=['PUT'])
@token_required
@require_role('admin', 'teacher')
def update_student(student_id):
    store = get_store()
    store.get_student(student_id)
    changes = _student_fields(_json_body(), partial=True)
    if not changes:
        raise BadRequest('No valid fields to update')
    student = store.update_student(student_id, changes)
    current_app.logger.info('Student %s updated by %s: %s', student_id, g.user['username'],
                            sorted(changes))
    return jsonify({'ok': True, 'student': student})


@api.route('/students/<int:student_id>', methods=['DELETE'])
@token_required
@require_role('admin', 'teacher')
def delete_student(student_id):
    for path in get_store().delete_student(student_id):
        remove_file(path)
    current_app.logger.info('Student %s deleted by %s', student_id, g.user['username'])
    return jsonify({'ok': True, 'msg': 'Student deleted successfully'})


# --- terms ----------------------------------------------------------------

@api.route('/students/<int:student_id>/terms', methods=['GET'])
@token_required
def list_terms(student_id):
    errors = []
    term = check_choice(request.args, 'term', {str(n) for n in TERM_NUMBERS}, errors,
                        'term must be 1, 2 or 3')
    year = check_academic_year(request.args, 'academic_year', errors,
                               'academic_year must look like 2024/2025')
    raise_if(errors)
    terms = get_store().list_terms(
        student_id,
        term=int(term) if isinstance(term, str) else None,
        academic_year=year if isinstance(year, str) else None,
    )
    return jsonify({'ok': True, 'terms': [_public_term(t) for t in terms]})


@api.route('/students/<int:student_id>/terms', methods=['POST'])
@token_required
@require_role('admin', 'teacher')
def upsert_term(student_id):
    d = request.form if (request.form or request.files) else _json_body()
    errors = []
    term_number = check_int(d, 'term_number', errors, 'Term number must be 1, 2 or 3',
                            low=1, high=3, required=True)
    academic_year = check_academic_year(d, 'academic_year', errors,
                                        'Academic year must look like 2024/2025', required=True)
    attendance = check_int(d, 'attendance', errors, 'Attendance must be between 0 and 100',
                           low=0, high=100, required=True)
    score = check_int(d, 'academic_score', errors, 'Academic score must be between 0 and 100',
                      low=0, high=100, required=True)
    remarks = check_str(d, 'remarks', errors, 'Invalid remarks', max_length=2000)
    raise_if(errors)

    store = get_store()
    store.get_student(student_id)

    fields = {'attendance': attendance, 'academic_score': score}
    if remarks is not MISSING:
        fields['remarks'] = remarks
    upload = request.files.get('studentFile')
    if upload and upload.filename:
        fields.update(save_term_file(upload, current_app.config['UPLOAD_FOLDER']))

    try:
        term, created, replaced = store.upsert_term(student_id, term_number, academic_year, fields)
    except Exception:
        remove_file(fields.get('file_path'))
        raise
    remove_file(replaced)
    current_app.logger.info('Term %s %s for student %s %s by %s', term_number, academic_year,
                            student_id, 'created' if created else 'updated', g.user['username'])
    return jsonify({'ok': True, 'created': created, 'term': _public_term(term)}), 201 if created else 200


@api.route('/students/<int:student_id>/terms/<int:term_id>/file', methods=['GET'])
@token_required
def download_term_file(student_id, term_id):
    term = get_store().get_term(student_id, term_id)
    if not term.get('file_path'):
        raise NotFound('File not found')
    if not os.path.isfile(term['file_path']):
        current_app.logger.warning('Attachment of term %s missing on disk: %s', term_id,
                                   term['file_path'])
        raise NotFound('File not found on server')
    return send_file(
        term['file_path'],
        mimetype=term.get('file_type') or 'application/octet-stream',
        as_attachment=False,
        download_name=term.get('file_name') or os.path.basename(term['file_path']),
    )


# --- announcements --------------------------------------------------------

@api.route('/announcements', methods=['GET'])
@token_required
def list_announcements():
    announcements = get_store().list_announcements()
    return jsonify({'ok': True, 'announcements': announcements})


def _announcement_fields(d, partial=False):
    errors = []
    required = not partial
    fields = {
        'title': check_str(d, 'title', errors, 'Title is required', required=required, blank_ok=False),
        'content': check_str(d, 'content', errors, 'Content is required', required=required,
                             blank_ok=False, max_length=None),
        'priority': check_choice(d, 'priority', PRIORITIES, errors, 'Invalid priority',
                                 blank_ok=False),
    }
    if partial:
        fields['is_active'] = check_bool(d, 'is_active', errors, 'is_active must be a boolean')
    raise_if(errors)
    return present(fields)


@api.route('/announcements', methods=['POST'])
@token_required
@require_role('admin')
def create_announcement():
    fields = _announcement_fields(_json_body())
    announcement = get_store().create_announcement(fields, created_by=g.user['id'])
    current_app.logger.info('Announcement %s created by %s', announcement['id'], g.user['username'])
    return jsonify({'ok': True, 'announcement': announcement}), 201


@api.route('/announcements/<int:announcement_id>', methods=['PUT'])
@token_required
@require_role('admin')
def update_announcement(announcement_id):
    changes = _announcement_fields(_json_body(), partial=True)
    if not changes:
        raise BadRequest('No valid fields to update')
    announcement = get_store().update_announcement(announcement_id, changes)
    return jsonify({'ok': True, 'announcement': announcement})


@api.route('/announcements/<int:announcement_id>', methods=['DELETE'])
@token_required
@require_role('admin')
def delete_announcement(announcement_id):
    get_store().delete_announcement(announcement_id)
    current_app.logger.info('Announcement %s deleted by %s', announcement_id, g.user['username'])
    return jsonify({'ok': True, 'msg': 'Announcement deleted successfully'})


# --- events ---------------------------------------------------------------

@api.route('/events', methods=['GET'])
@token_required
def list_events():
    events = get_store().list_upcoming_events(datetime.date.today())
    return jsonify({'ok': True, 'events': events})


def _event_fields(d, partial=False):
    errors = []
    required = not partial
    fields = {
        'title': check_str(d, 'title', errors, 'Title is required', required=required, blank_ok=False),
        'event_date': check_date(d, 'event_date', errors, 'Valid event date is required',
                                 required=required, blank_ok=False),
        'description': check_str(d, 'description', errors, 'Invalid description', max_length=None),
        'event_time': check_time(d, 'event_time', errors, 'Event time must be HH:MM'),
        'location': check_str(d, 'location', errors, 'Invalid location'),
        'priority': check_choice(d, 'priority', PRIORITIES, errors, 'Invalid priority',
                                 blank_ok=False),
    }
    if partial:
        fields['is_active'] = check_bool(d, 'is_active', errors, 'is_active must be a boolean')
    raise_if(errors)
    return present(fields)


@api.route('/events', methods=['POST'])
@token_required
@require_role('admin')
def create_event():
    fields = _event_fields(_json_body())
    event = get_store().create_event(fields, created_by=g.user['id'])
    current_app.logger.info('Event %s created by %s', event['id'], g.user['username'])
    return jsonify({'ok': True, 'event': event}), 201


@api.route('/events/<int:event_id>', methods=['PUT'])
@token_required
@require_role('admin')
def update_event(event_id):
    changes = _event_fields(_json_body(), partial=True)
    if not changes:
        raise BadRequest('No valid fields to update')
    event = get_store().update_event(event_id, changes)
    return jsonify({'ok': True, 'event': event})


@api.route('/events/<int:event_id>', methods=['DELETE'])
@token_required
@require_role('admin')
def delete_event(event_id):
    get_store().delete_event(event_id)
    current_app.logger.info('Event %s deleted by %s', event_id, g.user['username'])
    return jsonify({'ok': True, 'msg': 'Event deleted successfully'})


# --- users ----------------------------------------------------------------

@api.route('/users', methods=['GET'])
@token_required
@require_role('admin')
def list_users():
    return jsonify({'ok': True, 'users': [_public_user(u) for u in get_store().list_users()]})


@api.route('/users', methods=['POST'])
@token_required
@require_role('admin')
def create_user():
    d = _json_body()
    errors = []
    username = check_str(d, 'username', errors, 'Username is required', required=True, max_length=50)
    email = check_email(d, 'email', errors, 'Valid email is required')
    password = check_min_length(d, 'password', 6, errors, 'Password must be at least 6 characters')
    role = check_choice(d, 'role', ROLES, errors, 'Role must be admin or teacher', required=True)
    raise_if(errors)

    user = get_store().create_user(username, email, hash_password(password), role)
    current_app.logger.info('User %s (%s) created by %s', username, role, g.user['username'])
    return jsonify({'ok': True, 'user': _public_user(user)}), 201


@api.route('/users/<int:user_id>', methods=['DELETE'])
@token_required
@require_role('admin')
def delete_user(user_id):
    if user_id == g.user['id']:
        raise BadRequest('You cannot delete your own account')
    user = get_store().delete_user(user_id)
    current_app.logger.info('User %s deleted by %s', user['username'], g.user['username'])
    return jsonify({'ok': True, 'msg': f"User {user['username']} deleted successfully"})


# --- errors ---------------------------------------------------------------

def register_error_handlers(app):
    @app.errorhandler(ApiError)
    def handle_api_error(e):
        return jsonify(e.to_dict()), e.status

    @app.errorhandler(RequestEntityTooLarge)
    def handle_too_large(e):
        limit_mb = app.config['MAX_CONTENT_LENGTH'] // (1024 * 1024)
        return jsonify({'ok': False, 'msg': f'File too large (limit {limit_mb}MB)'}), 413

    @app.errorhandler(HTTPException)
    def handle_http_error(e):
        return jsonify({'ok': False, 'msg': e.description or e.name}), e.code

    @app.errorhandler(Exception)
    def handle_unexpected(e):
        app.logger.exception('Unhandled error on %s %s', request.method, request.path)
        return jsonify({'ok': False, 'msg': 'Internal server error'}), 500


def create_app(config=None, store=None, **overrides):
    app = Flask(__name__)
    app.config.from_object(config or config_for_env())
    app.config.update(overrides)
    check_secrets(app.config)
    configure_logging(app)

    origins = app.config.get('CORS_ORIGINS', '*')
    if origins != '*':
        origins = [o.strip() for o in origins.split(',') if o.strip()]
    CORS(app, resources={r'/api/*': {'origins': origins}})

    store = store or make_store(app.config)
    if store.backend == 'sql':
        added = apply_schema_guards(store.engine, app.config.get('DEFAULT_ACADEMIC_YEAR'))
        if added:
            app.logger.info('Schema guard added columns: %s', ', '.join(added))
    app.extensions['store'] = store
    app.extensions['started_at'] = time.time()
    os.makedirs(app.config['UPLOAD_FOLDER'], exist_ok=True)

    if app.config.get('SEED_DEMO_DATA') and store.is_empty():
        seed_demo_data(store, app.config.get('DEFAULT_ACADEMIC_YEAR', '2024/2025'))
        app.logger.info('Seeded demo data (%s store)', store.backend)

    app.register_blueprint(api)
    register_error_handlers(app)
    register_commands(app)
    return app


if __name__ == '__main__':
    port = int(os.getenv('PORT', 5000))
    create_app().run(host='0.0.0.0', port=port)
