import logging
import os
import random
import time

from errors import ValidationFailed

log = logging.getLogger(__name__)

ALLOWED_EXTENSIONS = {'jpeg', 'jpg', 'png', 'gif', 'pdf', 'doc', 'docx', 'xls', 'xlsx'}


def extension_of(filename):
    _, ext = os.path.splitext(filename or '')
    return ext.lower().lstrip('.')


def allowed_file(filename):
    return extension_of(filename) in ALLOWED_EXTENSIONS


def display_name(filename):
    """Basename of the client's file name, kept as typed (non-ASCII included)."""
    name = (filename or '').replace('\\', '/').rsplit('/', 1)[-1]
    return ''.join(ch for ch in name if ch.isprintable() and ch != '"').strip()


def save_term_file(file, upload_folder):
    """Store an uploaded term attachment; returns the file_* columns for the term row."""
    if not allowed_file(file.filename):
        raise ValidationFailed(errors=[{
            'field': 'studentFile',
            'msg': 'Invalid file type. Only JPEG, PNG, GIF, PDF, DOC, DOCX, XLS, XLSX files are allowed.',
        }])
    os.makedirs(upload_folder, exist_ok=True)
    fname = f'{int(time.time() * 1000)}-{random.randint(0, 10**9)}.{extension_of(file.filename)}'
    path = os.path.join(upload_folder, fname)
    file.save(path)
    return {
        'file_name': display_name(file.filename) or fname,
        'file_path': path,
        'file_size': os.path.getsize(path),
        'file_type': file.mimetype or 'application/octet-stream',
    }


def remove_file(path):
    if not path or not os.path.isfile(path):
        return
    try:
        os.remove(path)
    except OSError as e:
        log.warning('Error deleting file %s: %s', path, e)
