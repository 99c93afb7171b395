"""Tests for company endpoints."""

from tests.conftest import auth_headers, make_user

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 64


class TestCreateCompany:
    def test_created_with_slug_and_owner(self, client, db, employer, company):
        assert company["slug"] == "acme-corp"
        assert company["owner"] == str(employer["_id"])
        assert company["verified"] is False
        assert company["meta"]["jobs_count"] == 0
        assert company["location"]["city"] == "Pune"
        # The employer is linked to their new company
        assert str(db.users.find_one({"_id": employer["_id"]})["company"]) == company["_id"]

    def test_jobseeker_cannot_create(self, client, jobseeker, cloud):
        resp = client.post("/api/companies", data={"name": "Nope Inc"}, headers=auth_headers(jobseeker))
        assert resp.status_code == 403

    def test_name_required(self, client, employer, cloud):
        resp = client.post("/api/companies", data={"industry": "x"}, headers=auth_headers(employer))
        assert resp.status_code == 400

    def test_duplicate_name(self, client, employer, company):
        resp = client.post("/api/companies", data={"name": "Acme Corp"}, headers=auth_headers(employer))
        assert resp.status_code == 409

    def test_with_logo(self, client, employer, cloud):
        resp = client.post(
            "/api/companies",
            data={"name": "Logo Co"},
            files={"logo": ("logo.png", PNG_BYTES, "image/png")},
            headers=auth_headers(employer),
        )
        assert resp.status_code == 201, resp.text
        assert resp.json()["data"]["company"]["logo_url"].startswith("https://")
        assert cloud["uploads"][0][1]["folder"] == "jobportal/companies"


class TestReadCompanies:
    def test_public_list_and_filters(self, client, db, admin, company, cloud):
        client.post("/api/companies", data={"name": "Beta Labs", "industry": "Biotech"}, headers=auth_headers(admin))

        resp = client.get("/api/companies")
        assert resp.status_code == 200
        assert resp.json()["data"]["meta"]["total"] == 2

        resp = client.get("/api/companies", params={"industry": "biotech"})
        names = [c["name"] for c in resp.json()["data"]["companies"]]
        assert names == ["Beta Labs"]

        resp = client.get("/api/companies", params={"q": "acme"})
        assert [c["name"] for c in resp.json()["data"]["companies"]] == ["Acme Corp"]

    def test_verified_filter_validated(self, client, company):
        resp = client.get("/api/companies", params={"verified": "maybe"})
        assert resp.status_code == 400

    def test_get_by_id_and_slug(self, client, company):
        by_id = client.get(f"/api/companies/{company['_id']}")
        by_slug = client.get("/api/companies/acme-corp")
        assert by_id.status_code == by_slug.status_code == 200
        assert by_id.json()["data"]["company"]["_id"] == by_slug.json()["data"]["company"]["_id"]
        assert by_id.json()["data"]["company"]["owner"]["name"] == "Erin Employer"

    def test_unknown(self, client, db):
        resp = client.get("/api/companies/no-such-company")
        assert resp.status_code == 404
        assert resp.json()["message"] == "Company not found"


class TestUpdateCompany:
    def test_owner_updates_and_slug_follows_name(self, client, employer, company):
        resp = client.patch(
            f"/api/companies/{company['_id']}",
            data={"name": "Acme Global", "description": "Widgets"},
            headers=auth_headers(employer),
        )
        assert resp.status_code == 200, resp.text
        updated = resp.json()["data"]["company"]
        assert updated["slug"] == "acme-global"
        assert updated["description"] == "Widgets"

    def test_unsent_fields_are_kept(self, client, employer, company):
        resp = client.patch(
            f"/api/companies/{company['_id']}", data={"website": "https://acme.test"}, headers=auth_headers(employer)
        )
        updated = resp.json()["data"]["company"]
        assert updated["website"] == "https://acme.test"
        assert updated["industry"] == "Software"
        assert updated["slug"] == "acme-corp"

    def test_other_employer_forbidden(self, client, db, company):
        other = make_user(db, "employer", email="other@example.com")
        resp = client.patch(
            f"/api/companies/{company['_id']}", data={"name": "Hijack"}, headers=auth_headers(other)
        )
        assert resp.status_code == 403
        assert resp.json()["message"] == "Forbidden: you are not the owner"

    def test_invalid_and_missing_id(self, client, employer, company):
        headers = auth_headers(employer)
        assert client.patch("/api/companies/bad-id", data={"name": "X Co"}, headers=headers).status_code == 400
        resp = client.patch("/api/companies/5f1d7f3e9b1e8b3a2c4d5e6f", data={"name": "X Co"}, headers=headers)
        assert resp.status_code == 404

    def test_only_admin_reassigns_owner(self, client, db, employer, admin, company):
        new_owner = make_user(db, "employer", email="heir@example.com")
        resp = client.patch(
            f"/api/companies/{company['_id']}",
            data={"owner": str(new_owner["_id"])},
            headers=auth_headers(employer),
        )
        assert resp.status_code == 403

        resp = client.patch(
            f"/api/companies/{company['_id']}",
            data={"owner": str(new_owner["_id"])},
            headers=auth_headers(admin),
        )
        assert resp.status_code == 200
        assert resp.json()["data"]["company"]["owner"] == str(new_owner["_id"])

    def test_new_logo_replaces_old(self, client, employer, company, cloud):
        headers = auth_headers(employer)
        url = f"/api/companies/{company['_id']}"
        client.patch(url, files={"logo": ("a.png", PNG_BYTES, "image/png")}, headers=headers)
        first = cloud["uploads"][-1][0]
        client.patch(url, files={"logo": ("b.png", PNG_BYTES, "image/png")}, headers=headers)
        assert cloud["deleted"] == [first]


class TestDeleteAndVerify:
    def test_owner_deletes(self, client, db, employer, company):
        resp = client.delete(f"/api/companies/{company['_id']}", headers=auth_headers(employer))
        assert resp.status_code == 200
        assert db.companies.count_documents({}) == 0
        assert db.users.find_one({"_id": employer["_id"]})["company"] is None

    def test_verify_is_admin_only_and_idempotent(self, client, employer, admin, company):
        url = f"/api/companies/{company['_id']}/verify"
        assert client.post(url, headers=auth_headers(employer)).status_code == 403

        first = client.post(url, headers=auth_headers(admin))
        assert first.json()["message"] == "Company verified successfully"
        assert first.json()["data"]["company"]["verified"] is True
        second = client.post(url, headers=auth_headers(admin))
        assert second.json()["message"] == "Company already verified"

        unverify = f"/api/companies/{company['_id']}/unverify"
        assert client.post(unverify, headers=auth_headers(admin)).json()["message"] == "Company has been unverified"
        assert client.post(unverify, headers=auth_headers(admin)).json()["message"] == "Company already unverified"


class TestJsonBodies:
    def test_create_from_json(self, client, db, employer):
        resp = client.post(
            "/api/companies",
            json={"name": "Json Works", "industry": "Fintech", "location": {"city": "Chennai"}},
            headers=auth_headers(employer),
        )
        assert resp.status_code == 201, resp.text
        created = resp.json()["data"]["company"]
        assert created["slug"] == "json-works"
        assert created["location"]["city"] == "Chennai"

    def test_update_from_json(self, client, db, employer, company):
        resp = client.patch(
            f"/api/companies/{company['_id']}",
            json={"description": "New description", "industry": "Fintech", "location": {"state": "MH"}},
            headers=auth_headers(employer),
        )
        assert resp.status_code == 200, resp.text
        stored = db.companies.find_one({"slug": "acme-corp"})
        assert stored["description"] == "New description"
        assert stored["industry"] == "Fintech"
        assert stored["location"] == {"city": "Pune", "state": "MH", "country": None}

    def test_json_null_clears_field(self, client, db, employer, company):
        resp = client.patch(
            f"/api/companies/{company['_id']}", json={"industry": None}, headers=auth_headers(employer)
        )
        assert resp.status_code == 200
        assert db.companies.find_one({"slug": "acme-corp"})["industry"] is None

    def test_blank_form_field_clears_it(self, client, db, employer, company):
        resp = client.patch(
            f"/api/companies/{company['_id']}",
            files={"industry": (None, "")},
            headers=auth_headers(employer),
        )
        assert resp.status_code == 200
        assert db.companies.find_one({"slug": "acme-corp"})["industry"] is None

    def test_empty_update_is_400(self, client, employer, company):
        url = f"/api/companies/{company['_id']}"
        for kwargs in ({"json": {}}, {}):
            resp = client.patch(url, headers=auth_headers(employer), **kwargs)
            assert resp.status_code == 400
            assert resp.json()["message"] == "No fields provided to update"

    def test_unknown_json_field_rejected(self, client, employer, company):
        resp = client.patch(
            f"/api/companies/{company['_id']}", json={"$set": {"verified": True}}, headers=auth_headers(employer)
        )
        assert resp.status_code == 400

    def test_malformed_json(self, client, employer, company):
        resp = client.patch(
            f"/api/companies/{company['_id']}",
            content=b"{not json",
            headers={**auth_headers(employer), "Content-Type": "application/json"},
        )
        assert resp.status_code == 400
        assert resp.json()["message"] == "Malformed JSON body"

    def test_markup_stripped(self, client, employer, cloud):
        resp = client.post(
            "/api/companies",
            json={"name": "<b>Bold</b> Co", "description": "<script>alert(1)</script>Hi"},
            headers=auth_headers(employer),
        )
        company = resp.json()["data"]["company"]
        assert company["name"] == "Bold Co"
        assert "<script" not in company["description"]
