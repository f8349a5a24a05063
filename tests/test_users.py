from conftest import login

NEW_USER = {'username': 'teacher2', 'email': 'Teacher2@School.com', 'password': 'secret1',
            'role': 'teacher'}


def test_list_users_hides_password_hash(client, admin_headers):
    resp = client.get('/api/users', headers=admin_headers)
    assert resp.status_code == 200
    users = resp.get_json()['users']
    assert [u['username'] for u in users] == ['admin', 'teacher1']
    assert all('password_hash' not in u for u in users)


def test_teacher_cannot_manage_users(client, teacher_headers):
    assert client.get('/api/users', headers=teacher_headers).status_code == 403
    assert client.post('/api/users', json=NEW_USER, headers=teacher_headers).status_code == 403
    assert client.delete('/api/users/1', headers=teacher_headers).status_code == 403


def test_create_user_and_log_in(client, admin_headers):
    resp = client.post('/api/users', json=NEW_USER, headers=admin_headers)
    assert resp.status_code == 201
    user = resp.get_json()['user']
    assert user['email'] == 'teacher2@school.com'
    assert user['role'] == 'teacher'
    assert 'password_hash' not in user

    headers = login(client, 'teacher2', 'secret1')
    me = client.get('/api/auth/me', headers=headers).get_json()['user']
    assert me['id'] == user['id']


def test_duplicate_username_or_email_is_rejected(client, admin_headers):
    resp = client.post('/api/users', json=dict(NEW_USER, username='admin'), headers=admin_headers)
    assert resp.status_code == 400
    assert resp.get_json()['msg'] == 'Username or email already exists'
    resp = client.post('/api/users', json=dict(NEW_USER, email='admin@school.com'),
                       headers=admin_headers)
    assert resp.status_code == 400


def test_create_user_validation(client, admin_headers):
    resp = client.post('/api/users', json={'username': '', 'email': 'nope', 'password': '123',
                                           'role': 'principal'}, headers=admin_headers)
    assert resp.status_code == 400
    assert {e['field'] for e in resp.get_json()['errors']} == {'username', 'email', 'password', 'role'}


def test_delete_user(client, admin_headers):
    user = client.post('/api/users', json=NEW_USER, headers=admin_headers).get_json()['user']
    resp = client.delete(f"/api/users/{user['id']}", headers=admin_headers)
    assert resp.status_code == 200
    names = [u['username'] for u in client.get('/api/users', headers=admin_headers).get_json()['users']]
    assert 'teacher2' not in names
    assert client.delete(f"/api/users/{user['id']}", headers=admin_headers).status_code == 404


def test_admin_cannot_delete_own_account(client, admin_headers):
    me = client.get('/api/auth/me', headers=admin_headers).get_json()['user']
    resp = client.delete(f"/api/users/{me['id']}", headers=admin_headers)
    assert resp.status_code == 400
    assert resp.get_json()['msg'] == 'You cannot delete your own account'


def test_deleted_users_token_no_longer_resolves(client, admin_headers):
    client.post('/api/users', json=NEW_USER, headers=admin_headers)
    headers = login(client, 'teacher2', 'secret1')
    user_id = client.get('/api/auth/me', headers=headers).get_json()['user']['id']
    client.delete(f'/api/users/{user_id}', headers=admin_headers)
    resp = client.get('/api/auth/me', headers=headers)
    assert resp.status_code == 404
    assert resp.get_json()['msg'] == 'User not found'


def test_deleting_author_keeps_their_announcements(client, admin_headers):
    client.post('/api/users', json=dict(NEW_USER, username='admin2', email='admin2@school.com',
                                        role='admin'), headers=admin_headers)
    other = login(client, 'admin2', 'secret1')
    client.post('/api/announcements', json={'title': 't', 'content': 'c'}, headers=other)
    admin2 = [u for u in client.get('/api/users', headers=admin_headers).get_json()['users']
              if u['username'] == 'admin2'][0]
    assert client.delete(f"/api/users/{admin2['id']}", headers=admin_headers).status_code == 200

    anns = client.get('/api/announcements', headers=admin_headers).get_json()['announcements']
    assert len(anns) == 1
    assert anns[0]['created_by'] is None
    assert anns[0]['created_by_name'] is None
