import pytest

from wastewatch.config import Settings
from wastewatch.controllers.reports import get_submission_service
from wastewatch.main import app
from wastewatch.services.points import Label
from wastewatch.services.submission import SubmissionService
from tests.utils.fakes import (
    PNG_BYTES,
    MemoryStore,
    StaticClassifier,
    classified,
    create_report,
    user_points,
)

SETTINGS = Settings()
MODERATOR = {"X-Moderator-Key": SETTINGS.moderator_key}


def _headers(user_id: int) -> dict[str, str]:
    return {
        "X-API-Key": SETTINGS.api_key,
        "X-API-Ver": "v1",
        "X-User-ID": str(user_id),
    }


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def override_service(store):
    def _install(label: Label = Label.PLASTIC, *, fail_storage: bool = False):
        store.fail = fail_storage
        service = SubmissionService(
            SETTINGS,
            StaticClassifier(classified(label)),
            store=store.store,
            discard=store.discard,
        )
        app.dependency_overrides[get_submission_service] = lambda: service
        return service

    yield _install
    app.dependency_overrides.pop(get_submission_service, None)


def _submit(client, user_id, *, files=None, **form):
    data = {"title": "Broken bin", "location": "5th avenue", "category": "bins"}
    data.update(form)
    if files is None:
        files = {"image": ("bin.png", PNG_BYTES, "image/png")}
    return client.post("/v1/reports", headers=_headers(user_id), data=data, files=files)


def test_submit_report(client, make_user, override_service, store):
    uid = make_user()
    override_service(Label.PLASTIC)

    resp = _submit(client, uid, description="Lid is missing")

    assert resp.status_code == 201
    body = resp.json()
    assert body["classification"] == {"label": "plastic", "annotation": "♻️", "points": 10}
    report = body["report"]
    assert report["status"] == "pending"
    assert report["points"] == 10
    assert report["user_id"] == uid
    assert report["description"] == "Lid is missing"
    assert report["votes"] == 0
    assert "classifier_raw" not in report
    assert any(key in report["image_url"] for key in store.objects)
    assert body["points_total"] == 10
    assert user_points(uid) == 10


def test_submit_missing_title(client, make_user, override_service):
    uid = make_user()
    override_service()
    resp = _submit(client, uid, title="")
    assert resp.status_code == 400
    assert resp.json()["code"] == "BAD_REQUEST"


def test_submit_without_image(client, make_user, override_service):
    uid = make_user()
    override_service()
    resp = client.post(
        "/v1/reports",
        headers=_headers(uid),
        data={"title": "Bin", "location": "Here"},
    )
    assert resp.status_code == 400


def test_submit_undecodable_image(client, make_user, override_service):
    uid = make_user()
    override_service()
    resp = _submit(client, uid, files={"image": ("x.png", b"garbage", "image/png")})
    assert resp.status_code == 415
    assert resp.json()["code"] == "UNSUPPORTED_MEDIA"


def test_submit_unknown_user(client, override_service):
    override_service()
    resp = _submit(client, 987_654_321)
    assert resp.status_code == 404
    assert resp.json()["code"] == "USER_NOT_FOUND"


def test_submit_storage_failure(client, make_user, override_service):
    uid = make_user(points=3)
    override_service(fail_storage=True)
    resp = _submit(client, uid)
    assert resp.status_code == 503
    assert resp.json() == {
        "code": "STORAGE_FAILED",
        "message": "report could not be stored, try again later",
    }
    assert user_points(uid) == 3


def test_submit_requires_api_key(client, make_user, override_service):
    override_service()
    headers = _headers(make_user())
    headers["X-API-Key"] = "wrong"
    resp = client.post(
        "/v1/reports",
        headers=headers,
        data={"title": "Bin", "location": "Here"},
        files={"image": ("bin.png", PNG_BYTES, "image/png")},
    )
    assert resp.status_code == 401


def test_list_and_get_reports(client, make_user, override_service):
    uid = make_user()
    other = make_user()
    override_service(Label.BIODEGRADABLE)
    first = _submit(client, uid).json()["report"]["id"]
    second = _submit(client, uid).json()["report"]["id"]
    foreign = create_report(other, 0)

    mine = client.get("/v1/reports/mine", headers=_headers(uid))
    assert mine.status_code == 200
    assert [r["id"] for r in mine.json()] == [second, first]

    feed = client.get("/v1/reports", params={"limit": 50}, headers=_headers(uid))
    assert foreign in {r["id"] for r in feed.json()}

    single = client.get(f"/v1/reports/{first}", headers=_headers(uid))
    assert single.status_code == 200
    assert single.json()["annotation"] == "🌿"

    missing = client.get("/v1/reports/987654321", headers=_headers(uid))
    assert missing.status_code == 404

    bad_filter = client.get("/v1/reports", params={"status": "closed"}, headers=_headers(uid))
    assert bad_filter.status_code == 422


def test_moderation_status_changes(client, make_user):
    uid = make_user()
    report_id = create_report(uid, 10)
    url = f"/v1/reports/{report_id}/status"

    resp = client.patch(url, headers=_headers(uid), json={"status": "investigating"})
    assert resp.status_code == 403

    headers = {**_headers(uid), **MODERATOR}
    resp = client.patch(url, headers=headers, json={"status": "investigating"})
    assert resp.status_code == 200
    assert resp.json()["status"] == "investigating"

    resp = client.patch(url, headers=headers, json={"status": "pending"})
    assert resp.status_code == 409
    assert resp.json()["code"] == "INVALID_TRANSITION"

    resp = client.patch(url, headers=headers, json={"status": "closed"})
    assert resp.status_code == 422

    resp = client.patch(url, headers=headers, json={"status": "verified"})
    assert resp.status_code == 200
    assert resp.json()["status"] == "verified"


def test_votes(client, make_user):
    uid = make_user()
    report_id = create_report(uid, 0)
    for expected in (1, 2):
        resp = client.post(f"/v1/reports/{report_id}/votes", headers=_headers(uid))
        assert resp.status_code == 200
        assert resp.json() == {"id": report_id, "votes": expected}
    resp = client.post("/v1/reports/987654321/votes", headers=_headers(uid))
    assert resp.status_code == 404


def test_my_points(client, make_user):
    uid = make_user(points=15)
    resp = client.get("/v1/users/me/points", headers=_headers(uid))
    assert resp.status_code == 200
    assert resp.json() == {"user_id": uid, "points": 15}

    resp = client.get("/v1/users/me/points", headers=_headers(987_654_321))
    assert resp.status_code == 404
