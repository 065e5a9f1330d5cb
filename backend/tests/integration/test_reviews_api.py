import pytest

from tests.utils.api_client import API_PREFIX, as_user


async def _invite(client, submission_id, reviewer_id):
    res = await client.post(
        f"{API_PREFIX}/submissions/{submission_id}/reviewers",
        json={"reviewer_id": reviewer_id},
        headers=as_user("editor"),
    )
    assert res.status_code == 201
    return res.json()["data"]


@pytest.mark.asyncio
async def test_review_round_trip(client, actors, make_submission):
    sub = make_submission("under_review")
    review = await _invite(client, sub["id"], actors["reviewer"].id)

    res = await client.get(f"{API_PREFIX}/reviews/mine", headers=as_user("reviewer"))
    assert [r["id"] for r in res.json()["data"]] == [review["id"]]

    res = await client.post(f"{API_PREFIX}/reviews/{review['id']}/accept", headers=as_user("reviewer"))
    assert res.json()["data"]["status"] == "in_progress"

    res = await client.post(
        f"{API_PREFIX}/reviews/{review['id']}/submit",
        json={"recommendation": "MAJOR_REVISION", "rating": 2, "author_comments": "Needs work", "confidential_comments": "Weak"},
        headers=as_user("reviewer"),
    )
    assert res.status_code == 200
    assert res.json()["data"]["status"] == "completed"

    res = await client.get(f"{API_PREFIX}/submissions/{sub['id']}/decision-context", headers=as_user("editor"))
    ctx = res.json()["data"]
    assert ctx["recommendations"]["major_revision"] == 1
    assert ctx["reviews"][0]["confidential_comments"] == "Weak"

    res = await client.get(f"{API_PREFIX}/submissions/{sub['id']}/reviews", headers=as_user("author"))
    author_view = res.json()["data"]
    assert author_view == [
        {
            "label": "Reviewer 1",
            "recommendation": "major_revision",
            "author_comments": "Needs work",
            "submitted_at": author_view[0]["submitted_at"],
        }
    ]

    res = await client.get(f"{API_PREFIX}/reviews/stats", headers=as_user("reviewer"))
    assert res.json()["data"]["completed"] == 1


@pytest.mark.asyncio
async def test_duplicate_invite_returns_409(client, actors, make_submission):
    sub = make_submission("submitted")
    await _invite(client, sub["id"], actors["reviewer"].id)
    res = await client.post(
        f"{API_PREFIX}/submissions/{sub['id']}/reviewers",
        json={"reviewer_id": actors["reviewer"].id},
        headers=as_user("editor"),
    )
    assert res.status_code == 409
    assert res.json()["type"] == "duplicate_invitation"


@pytest.mark.asyncio
async def test_decline_then_submit_returns_409(client, actors, make_submission):
    sub = make_submission("under_review")
    review = await _invite(client, sub["id"], actors["reviewer"].id)

    res = await client.post(
        f"{API_PREFIX}/reviews/{review['id']}/decline",
        json={"reason": "Out of my area"},
        headers=as_user("reviewer"),
    )
    assert res.json()["data"]["decline_reason"] == "Out of my area"

    res = await client.post(
        f"{API_PREFIX}/reviews/{review['id']}/submit",
        json={"recommendation": "accept", "rating": 5},
        headers=as_user("reviewer"),
    )
    assert res.status_code == 409
    assert res.json()["type"] == "invalid_transition"


@pytest.mark.asyncio
async def test_confidential_view_is_editor_only(client, make_submission):
    sub = make_submission("under_review")
    res = await client.get(f"{API_PREFIX}/submissions/{sub['id']}/decision-context", headers=as_user("reviewer"))
    assert res.status_code == 403
