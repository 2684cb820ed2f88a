"""
Integration tests for authentication and authorization.
"""


class TestLogin:
    """Test the password login flow."""

    def test_login_returns_token(self, client, admin_user):
        response = client.post('/api/auth/login', json={
            'email': 'admin@example.com',
            'password': 'password123',
        })

        assert response.status_code == 200
        data = response.get_json()
        assert data['status'] == 'success'
        assert data['user']['email'] == 'admin@example.com'
        assert data['user']['role'] == 'ADMIN'

        me = client.get('/api/auth/me', headers={'Authorization': f"Bearer {data['token']}"})
        assert me.status_code == 200
        assert me.get_json()['user']['email'] == 'admin@example.com'

    def test_login_with_wrong_password(self, client, admin_user):
        response = client.post('/api/auth/login', json={
            'email': 'admin@example.com',
            'password': 'not-it',
        })

        assert response.status_code == 401
        data = response.get_json()
        assert data['status'] == 'error'
        assert data['error'] == 'UnauthorizedError'

    def test_login_requires_json_object(self, client):
        response = client.post('/api/auth/login', json=['admin@example.com'])
        assert response.status_code == 400


class TestProtectedRoutes:
    """Every API route needs a bearer token."""

    def test_no_token(self, client):
        response = client.get('/api/suppliers')
        assert response.status_code == 401
        assert response.get_json()['message'] == 'Authentication required'

    def test_garbage_token(self, client):
        response = client.get('/api/auth/me', headers={'Authorization': 'Bearer nonsense'})
        assert response.status_code == 401

    def test_basic_scheme_is_ignored(self, client, admin_user):
        response = client.get('/api/auth/me', headers={'Authorization': 'Basic YWRtaW46cGFzcw=='})
        assert response.status_code == 401

    def test_health_is_public(self, client):
        response = client.get('/health')
        assert response.status_code == 200
        assert response.get_json() == {'status': 'healthy', 'database': 'connected'}

    def test_cache_health_degrades(self, client):
        response = client.get('/health/cache')
        assert response.status_code == 200
        assert response.get_json()['status'] == 'degraded'


class TestUserManagement:
    """User routes are restricted to ADMIN."""

    def test_staff_is_forbidden(self, client, staff_headers):
        response = client.get('/api/users', headers=staff_headers)
        assert response.status_code == 403
        assert response.get_json()['error'] == 'ForbiddenError'

    def test_admin_creates_user(self, client, auth_headers):
        response = client.post('/api/users', headers=auth_headers, json={
            'name': 'Yamada', 'email': 'yamada@example.com', 'password': 'password123',
        })
        assert response.status_code == 201
        assert response.get_json()['user']['role'] == 'USER'

        listing = client.get('/api/users', headers=auth_headers).get_json()
        assert {u['email'] for u in listing['users']} == {'admin@example.com', 'yamada@example.com'}

    def test_last_admin_cannot_be_demoted(self, client, admin_user, auth_headers):
        admin_id = admin_user.id

        response = client.put(f'/api/users/{admin_id}', headers=auth_headers, json={'role': 'USER'})

        assert response.status_code == 400
        assert response.get_json()['error'] == 'AdminFloorViolationError'

    def test_admin_cannot_delete_self(self, client, admin_user, auth_headers):
        admin_id = admin_user.id
        client.post('/api/users', headers=auth_headers, json={
            'name': 'Second', 'email': 'second@example.com', 'password': 'password123', 'role': 'ADMIN',
        })

        response = client.delete(f'/api/users/{admin_id}', headers=auth_headers)
        assert response.status_code == 400

    def test_delete_staff(self, client, staff_user, auth_headers):
        staff_id = staff_user.id

        response = client.delete(f'/api/users/{staff_id}', headers=auth_headers)
        assert response.status_code == 200

        response = client.delete(f'/api/users/{staff_id}', headers=auth_headers)
        assert response.status_code == 404
