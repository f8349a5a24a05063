"""Startup schema guard.

Databases created by early releases lack the columns added later. Instead of
probing for them on every request, ``apply_schema_guards`` runs once when the
app starts: it creates missing tables, adds missing late columns with
``ALTER TABLE`` and backfills their defaults.
"""
import logging

from sqlalchemy import inspect, text

from models import Base

log = logging.getLogger(__name__)

# table -> [(column, DDL type)], in the order they were introduced
LATE_COLUMNS = {
    'students': [
        ('sports_house', 'VARCHAR(20)'),
        ('cca', 'VARCHAR(20)'),
        ('cca_optional', 'VARCHAR(20)'),
        ('quran_teacher', 'VARCHAR(255)'),
        ('gender', 'VARCHAR(10)'),
    ],
    'student_terms': [
        ('academic_year', 'VARCHAR(9)'),
        ('file_name', 'VARCHAR(255)'),
        ('file_path', 'VARCHAR(500)'),
        ('file_size', 'INTEGER'),
        ('file_type', 'VARCHAR(100)'),
    ],
}


def column_names(engine, table):
    return {c['name'] for c in inspect(engine).get_columns(table)}


def apply_schema_guards(engine, default_academic_year=None):
    """Bring an existing database up to the current model; returns 'table.column' names added."""
    Base.metadata.create_all(engine)
    added = []
    with engine.begin() as conn:
        for table, columns in LATE_COLUMNS.items():
            existing = column_names(conn, table)
            for name, ddl in columns:
                if name in existing:
                    continue
                conn.execute(text(f'ALTER TABLE {table} ADD COLUMN {name} {ddl}'))
                added.append(f'{table}.{name}')
                log.info('Added missing column %s.%s', table, name)

        filled = conn.execute(
            text("UPDATE students SET cca_optional = 'none' WHERE cca_optional IS NULL")).rowcount
        if filled:
            log.info("Backfilled cca_optional='none' on %d students", filled)
        if default_academic_year:
            filled = conn.execute(
                text('UPDATE student_terms SET academic_year = :year WHERE academic_year IS NULL'),
                {'year': default_academic_year}).rowcount
            if filled:
                log.info('Backfilled academic_year=%s on %d term rows', default_academic_year, filled)
    return added
