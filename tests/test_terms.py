import io
import os

import pytest


def _term(**overrides):
    data = {'term_number': 1, 'academic_year': '2024/2025', 'attendance': 95,
            'academic_score': 88, 'remarks': 'Excellent performance'}
    data.update(overrides)
    return data


@pytest.fixture
def student(make_student):
    return make_student()


def test_upsert_creates_then_updates_same_row(client, admin_headers, student):
    url = f"/api/students/{student['id']}/terms"
    first = client.post(url, json=_term(), headers=admin_headers)
    assert first.status_code == 201
    assert first.get_json()['created'] is True

    second = client.post(url, json=_term(attendance=80, remarks='Dropped off'), headers=admin_headers)
    assert second.status_code == 200
    body = second.get_json()
    assert body['created'] is False
    assert body['term']['id'] == first.get_json()['term']['id']
    assert body['term']['attendance'] == 80

    terms = client.get(url, headers=admin_headers).get_json()['terms']
    assert len(terms) == 1
    assert terms[0]['remarks'] == 'Dropped off'


def test_same_term_in_another_year_is_a_new_row(client, admin_headers, student):
    url = f"/api/students/{student['id']}/terms"
    client.post(url, json=_term(), headers=admin_headers)
    resp = client.post(url, json=_term(academic_year='2025-2026'), headers=admin_headers)
    assert resp.status_code == 201
    assert resp.get_json()['term']['academic_year'] == '2025/2026'

    terms = client.get(url, headers=admin_headers).get_json()['terms']
    assert [t['academic_year'] for t in terms] == ['2024/2025', '2025/2026']


def test_list_filters_and_ordering(client, admin_headers, student):
    url = f"/api/students/{student['id']}/terms"
    for year in ('2025/2026', '2024/2025'):
        for term in (3, 1, 2):
            client.post(url, json=_term(term_number=term, academic_year=year), headers=admin_headers)

    terms = client.get(url, headers=admin_headers).get_json()['terms']
    assert [(t['academic_year'], t['term_number']) for t in terms] == [
        ('2024/2025', 1), ('2024/2025', 2), ('2024/2025', 3),
        ('2025/2026', 1), ('2025/2026', 2), ('2025/2026', 3),
    ]
    only = client.get(f'{url}?term=2&academic_year=2025/2026', headers=admin_headers).get_json()
    assert [(t['academic_year'], t['term_number']) for t in only['terms']] == [('2025/2026', 2)]


def test_zero_attendance_is_accepted(client, admin_headers, student):
    resp = client.post(f"/api/students/{student['id']}/terms", json=_term(attendance=0),
                       headers=admin_headers)
    assert resp.status_code == 201
    assert resp.get_json()['term']['attendance'] == 0


@pytest.mark.parametrize('field,value', [
    ('term_number', 4),
    ('term_number', 'two'),
    ('academic_year', '2024/2026'),
    ('academic_year', ''),
    ('attendance', 101),
    ('academic_score', -1),
    ('academic_score', 72.5),
])
def test_upsert_validation(client, admin_headers, student, field, value):
    resp = client.post(f"/api/students/{student['id']}/terms", json=_term(**{field: value}),
                       headers=admin_headers)
    assert resp.status_code == 400
    assert [e['field'] for e in resp.get_json()['errors']] == [field]


def test_terms_of_missing_student_are_404(client, admin_headers):
    assert client.get('/api/students/9999/terms', headers=admin_headers).status_code == 404
    resp = client.post('/api/students/9999/terms', json=_term(), headers=admin_headers)
    assert resp.status_code == 404


def test_other_roles_cannot_write_terms(client, token_for, student):
    resp = client.post(f"/api/students/{student['id']}/terms", json=_term(),
                       headers=token_for(role='parent'))
    assert resp.status_code == 403


def _multipart(content=b'%PDF-1.4 report', filename='report.pdf', **overrides):
    data = {k: str(v) for k, v in _term(**overrides).items()}
    data['studentFile'] = (io.BytesIO(content), filename)
    return data


def test_upload_and_download_attachment(client, teacher_headers, student):
    url = f"/api/students/{student['id']}/terms"
    resp = client.post(url, data=_multipart(), headers=teacher_headers,
                       content_type='multipart/form-data')
    assert resp.status_code == 201
    term = resp.get_json()['term']
    assert term['has_file'] is True
    assert term['file_name'] == 'report.pdf'
    assert term['file_size'] == len(b'%PDF-1.4 report')
    assert 'file_path' not in term

    download = client.get(f"{url}/{term['id']}/file", headers=teacher_headers)
    assert download.status_code == 200
    assert download.data == b'%PDF-1.4 report'
    assert download.mimetype == 'application/pdf'
    assert download.headers['Content-Disposition'].startswith('inline')
    assert 'report.pdf' in download.headers['Content-Disposition']


def test_non_ascii_file_name_survives_upload(client, admin_headers, student):
    url = f"/api/students/{student['id']}/terms"
    resp = client.post(url, data=_multipart(filename='تقرير.pdf'), headers=admin_headers,
                       content_type='multipart/form-data')
    assert resp.status_code == 201
    term = resp.get_json()['term']
    assert term['file_name'] == 'تقرير.pdf'

    download = client.get(f'{url}/{term["id"]}/file', headers=admin_headers)
    assert download.status_code == 200
    assert "filename*=UTF-8''" in download.headers['Content-Disposition']


def test_huge_attendance_is_a_validation_error(client, admin_headers, student):
    resp = client.post(f"/api/students/{student['id']}/terms", json=_term(attendance=10 ** 400),
                       headers=admin_headers)
    assert resp.status_code == 400
    assert [e['field'] for e in resp.get_json()['errors']] == ['attendance']


def test_new_upload_replaces_old_file(client, admin_headers, student, store):
    url = f"/api/students/{student['id']}/terms"
    first = client.post(url, data=_multipart(b'old'), headers=admin_headers,
                        content_type='multipart/form-data').get_json()['term']
    old_path = store.get_term(student['id'], first['id'])['file_path']
    assert os.path.isfile(old_path)

    client.post(url, data=_multipart(b'new', 'scan.png'), headers=admin_headers,
                content_type='multipart/form-data')
    new_path = store.get_term(student['id'], first['id'])['file_path']
    assert new_path != old_path
    assert not os.path.exists(old_path)
    assert os.path.isfile(new_path)


def test_update_without_file_keeps_attachment(client, admin_headers, student):
    url = f"/api/students/{student['id']}/terms"
    client.post(url, data=_multipart(), headers=admin_headers, content_type='multipart/form-data')
    resp = client.post(url, json=_term(academic_score=70), headers=admin_headers)
    assert resp.status_code == 200
    assert resp.get_json()['term']['has_file'] is True
    assert resp.get_json()['term']['file_name'] == 'report.pdf'


def test_rejects_disallowed_file_type(client, admin_headers, student, app):
    resp = client.post(f"/api/students/{student['id']}/terms",
                       data=_multipart(b'#!/bin/sh', 'run.sh'), headers=admin_headers,
                       content_type='multipart/form-data')
    assert resp.status_code == 400
    assert resp.get_json()['errors'][0]['field'] == 'studentFile'
    assert os.listdir(app.config['UPLOAD_FOLDER']) == []


def test_oversized_upload_is_413(client, admin_headers, student, app):
    app.config['MAX_CONTENT_LENGTH'] = 1024
    resp = client.post(f"/api/students/{student['id']}/terms",
                       data=_multipart(b'x' * 4096), headers=admin_headers,
                       content_type='multipart/form-data')
    assert resp.status_code == 413


def test_download_without_attachment_is_404(client, admin_headers, student):
    url = f"/api/students/{student['id']}/terms"
    term = client.post(url, json=_term(), headers=admin_headers).get_json()['term']
    resp = client.get(f"{url}/{term['id']}/file", headers=admin_headers)
    assert resp.status_code == 404
    assert resp.get_json()['msg'] == 'File not found'


def test_download_with_file_gone_from_disk_is_404(client, admin_headers, student, store):
    url = f"/api/students/{student['id']}/terms"
    term = client.post(url, data=_multipart(), headers=admin_headers,
                       content_type='multipart/form-data').get_json()['term']
    os.remove(store.get_term(student['id'], term['id'])['file_path'])
    resp = client.get(f"{url}/{term['id']}/file", headers=admin_headers)
    assert resp.status_code == 404
    assert resp.get_json()['msg'] == 'File not found on server'


def test_download_checks_term_belongs_to_student(client, admin_headers, make_student):
    owner, other = make_student(), make_student(full_name='Other')
    term = client.post(f"/api/students/{owner['id']}/terms", data=_multipart(),
                       headers=admin_headers, content_type='multipart/form-data').get_json()['term']
    resp = client.get(f"/api/students/{other['id']}/terms/{term['id']}/file", headers=admin_headers)
    assert resp.status_code == 404


def test_deleting_student_removes_terms_and_files(client, admin_headers, student, store):
    url = f"/api/students/{student['id']}/terms"
    term = client.post(url, data=_multipart(), headers=admin_headers,
                       content_type='multipart/form-data').get_json()['term']
    path = store.get_term(student['id'], term['id'])['file_path']

    assert client.delete(f"/api/students/{student['id']}", headers=admin_headers).status_code == 200
    assert not os.path.exists(path)
    assert client.get(url, headers=admin_headers).status_code == 404
