"""Tests for profile endpoints and admin user listing."""

from tests.conftest import auth_headers, make_user

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 64
PDF_BYTES = b"%PDF-1.4\n%fake\n"


class TestMe:
    def test_requires_auth(self, client):
        resp = client.get("/api/users/me")
        assert resp.status_code == 401
        body = resp.json()
        assert body == {"statusCode": 401, "data": None, "message": "Not authorized", "success": False}

    def test_invalid_token(self, client):
        resp = client.get("/api/users/me", headers={"Authorization": "Bearer nope"})
        assert resp.status_code == 401

    def test_returns_profile_without_secrets(self, client, jobseeker):
        resp = client.get("/api/users/me", headers=auth_headers(jobseeker))
        assert resp.status_code == 200
        user = resp.json()["data"]["user"]
        assert user["email"] == jobseeker["email"]
        assert user["name"] == jobseeker["name"]
        assert "password" not in user
        assert "refresh_token_hash" not in user

    def test_employer_sees_company(self, client, employer, company):
        resp = client.get("/api/users/me", headers=auth_headers(employer))
        assert resp.json()["data"]["user"]["company"]["name"] == "Acme Corp"

    def test_deleted_user_token_rejected(self, client, db, jobseeker):
        headers = auth_headers(jobseeker)
        db.users.delete_one({"_id": jobseeker["_id"]})
        resp = client.get("/api/users/me", headers=headers)
        assert resp.status_code == 401
        assert resp.json()["message"] == "User not found"


class TestUpdateMe:
    def test_update_text_fields(self, client, jobseeker):
        resp = client.patch(
            "/api/users/me",
            data={
                "name": "Sam Updated",
                "bio": "Backend developer",
                "skills": "python, fastapi ,, mongodb",
                "location.city": "Mumbai",
            },
            headers=auth_headers(jobseeker),
        )
        assert resp.status_code == 200, resp.text
        user = resp.json()["data"]["user"]
        assert user["name"] == "Sam Updated"
        assert user["skills"] == ["python", "fastapi", "mongodb"]
        assert user["location"]["city"] == "Mumbai"

    def test_nothing_to_update(self, client, jobseeker):
        resp = client.patch("/api/users/me", data={}, headers=auth_headers(jobseeker))
        assert resp.status_code == 400

    def test_upload_avatar_and_resume(self, client, cloud, jobseeker):
        resp = client.patch(
            "/api/users/me",
            files={
                "avatar": ("me.png", PNG_BYTES, "image/png"),
                "resume": ("cv.pdf", PDF_BYTES, "application/pdf"),
            },
            headers=auth_headers(jobseeker),
        )
        assert resp.status_code == 200, resp.text
        user = resp.json()["data"]["user"]
        assert user["avatar_url"].startswith("https://")
        assert user["resume_url"].startswith("https://")

        folders = [options["folder"] for _, options in cloud["uploads"]]
        assert f"jobportal/avatars/{jobseeker['_id']}" in folders
        assert f"jobportal/resumes/{jobseeker['_id']}" in folders
        resume_opts = [o for _, o in cloud["uploads"] if "resumes" in o["folder"]][0]
        assert resume_opts["resource_type"] == "raw"

    def test_replacing_avatar_deletes_old_one(self, client, cloud, jobseeker):
        headers = auth_headers(jobseeker)
        client.patch("/api/users/me", files={"avatar": ("a.png", PNG_BYTES, "image/png")}, headers=headers)
        first_id = cloud["uploads"][0][0]
        client.patch("/api/users/me", files={"avatar": ("b.png", PNG_BYTES, "image/png")}, headers=headers)
        assert cloud["deleted"] == [first_id]

    def test_avatar_type_checked(self, client, cloud, jobseeker):
        resp = client.patch(
            "/api/users/me",
            files={"avatar": ("me.gif", b"GIF89a", "image/gif")},
            headers=auth_headers(jobseeker),
        )
        assert resp.status_code == 400
        assert cloud["uploads"] == []

    def test_resume_must_be_pdf(self, client, cloud, jobseeker):
        resp = client.patch(
            "/api/users/me",
            files={"resume": ("cv.png", PNG_BYTES, "image/png")},
            headers=auth_headers(jobseeker),
        )
        assert resp.status_code == 400

    def test_upload_failure_is_500(self, client, cloud, jobseeker):
        cloud["fail"] = True
        resp = client.patch(
            "/api/users/me",
            files={"avatar": ("me.png", PNG_BYTES, "image/png")},
            headers=auth_headers(jobseeker),
        )
        assert resp.status_code == 500
        assert resp.json()["message"] == "Failed to upload avatar"


class TestGetUser:
    def test_self_gets_full_profile(self, client, jobseeker):
        resp = client.get(f"/api/users/{jobseeker['_id']}", headers=auth_headers(jobseeker))
        assert resp.status_code == 200
        assert resp.json()["data"]["user"]["email"] == jobseeker["email"]

    def test_others_get_public_fields(self, client, jobseeker, employer):
        resp = client.get(f"/api/users/{jobseeker['_id']}", headers=auth_headers(employer))
        assert resp.status_code == 200
        user = resp.json()["data"]["user"]
        assert user["name"] == jobseeker["name"]
        assert "email" not in user
        assert "email_verified" not in user

    def test_invalid_id(self, client, jobseeker):
        resp = client.get("/api/users/not-an-id", headers=auth_headers(jobseeker))
        assert resp.status_code == 400

    def test_unknown_user(self, client, jobseeker):
        resp = client.get("/api/users/5f1d7f3e9b1e8b3a2c4d5e6f", headers=auth_headers(jobseeker))
        assert resp.status_code == 404
        assert resp.json()["message"] == "User not found"


class TestListUsers:
    def test_admin_only(self, client, jobseeker):
        resp = client.get("/api/users", headers=auth_headers(jobseeker))
        assert resp.status_code == 403
        assert resp.json()["message"] == "Forbidden: insufficient role"

    def test_filters_and_pagination(self, client, db, admin):
        for i in range(3):
            make_user(db, "employer", email=f"emp{i}@example.com", name=f"Employer {i}")
        make_user(db, "jobseeker", email="zed@example.com", name="Zed")

        resp = client.get(
            "/api/users", params={"role": "employer", "limit": 2, "sort": "name"},
            headers=auth_headers(admin),
        )
        assert resp.status_code == 200
        data = resp.json()["data"]
        assert data["meta"] == {"total": 3, "page": 1, "limit": 2, "total_pages": 2}
        assert [u["name"] for u in data["users"]] == ["Employer 0", "Employer 1"]
        assert all("password" not in u for u in data["users"])

    def test_search_escapes_regex(self, client, db, admin):
        make_user(db, "jobseeker", email="plain@example.com", name="Plain")
        resp = client.get("/api/users", params={"q": ".*"}, headers=auth_headers(admin))
        assert resp.json()["data"]["meta"]["total"] == 0

    def test_limit_is_capped(self, client, admin):
        resp = client.get("/api/users", params={"limit": 5000}, headers=auth_headers(admin))
        assert resp.json()["data"]["meta"]["limit"] == 100


class TestUpdateMeJson:
    def test_update_from_json(self, client, db, jobseeker):
        resp = client.patch(
            "/api/users/me",
            json={"bio": "Data engineer", "skills": ["python", " spark "], "location": {"country": "India"}},
            headers=auth_headers(jobseeker),
        )
        assert resp.status_code == 200, resp.text
        stored = db.users.find_one({"_id": jobseeker["_id"]})
        assert stored["bio"] == "Data engineer"
        assert stored["skills"] == ["python", "spark"]
        assert stored["location"]["country"] == "India"

    def test_empty_json_is_400(self, client, jobseeker):
        resp = client.patch("/api/users/me", json={}, headers=auth_headers(jobseeker))
        assert resp.status_code == 400
        assert resp.json()["message"] == "No fields provided to update"

    def test_unsupported_content_type(self, client, jobseeker):
        resp = client.patch(
            "/api/users/me",
            content=b"name=x",
            headers={**auth_headers(jobseeker), "Content-Type": "text/plain"},
        )
        assert resp.status_code == 415
