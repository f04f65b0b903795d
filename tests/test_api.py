"""
Tests for the HTTP API.

The app is built around the in-memory store with a mocked catalog service;
delegates answer offline unless query_delegate is patched.
"""

import asyncio
import time
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi.testclient import TestClient

from icracy import settings
from icracy.api.app import clamp_limit, create_app, parse_offset, snapshot_job
from icracy.errors import PersistenceFailure
from icracy.storage import reports
from tests.conftest import SAMPLE_MODEL_IDS, scripted_delegates

ALICE = {"x-user-id": "user-1"}
BOB = {"x-user-id": "user-2", "x-user-handle": "bob", "x-user-name": "Bob"}


@pytest.fixture
def catalog(seeded_store):
    catalog = MagicMock()
    catalog.eligible = AsyncMock(side_effect=lambda limit=20, force=False: seeded_store.list_delegates(limit))
    return catalog


@pytest.fixture
def client(seeded_store, bus, catalog):
    app = create_app(seeded_store, bus, catalog=catalog, sync_catalog=False)
    with TestClient(app) as client:
        yield client


def submit(client, title="Fund public libraries", headers=ALICE, **extra):
    payload = {"title": title, "body": "Every town gets one.", **extra}
    return client.post("/v1/resolutions/submit", json=payload, headers=headers)


class TestHelpers:
    @pytest.mark.parametrize(
        "raw,expected",
        [(None, 20), ("", 20), ("abc", 20), ("0", 20), ("5", 5), ("7.9", 7), ("500", 100), ("-3", 1)],
    )
    def test_clamp_limit(self, raw, expected):
        assert clamp_limit(raw, 20, 1, 100) == expected

    def test_parse_offset(self):
        assert parse_offset("15") == 15
        assert parse_offset("-2") == 0
        assert parse_offset(None) == 0
        assert parse_offset("x") == 0


class TestHealthAndStartup:
    def test_health(self, client, seeded_store):
        with patch.object(settings, "OPENROUTER_API_KEY", None):
            response = client.get("/v1/health")

        assert response.status_code == 200
        body = response.json()
        assert body["ok"] is True
        assert body["dbUrl"] == seeded_store.url
        assert body["openrouterConfigured"] is False

    def test_startup_creates_default_user(self, client, seeded_store):
        assert seeded_store.get_user(settings.DEFAULT_USER_ID) is not None

    def test_startup_sync(self, seeded_store, bus, catalog):
        app = create_app(seeded_store, bus, catalog=catalog)
        with TestClient(app):
            pass

        catalog.eligible.assert_awaited_once_with(settings.CATALOG_SYNC_LIMIT)

    def test_eligible_delegates(self, client, catalog):
        response = client.get("/v1/delegates/eligible", params={"limit": "3"})

        assert [d["id"] for d in response.json()["delegates"]] == SAMPLE_MODEL_IDS[:3]
        catalog.eligible.assert_awaited_with(3)


class TestSnapshotJob:
    """Tests for the periodic leaderboard snapshot job."""

    @pytest.mark.asyncio
    async def test_persists_every_period(self, seeded_store):
        task = asyncio.create_task(snapshot_job(seeded_store, 0.01))
        await asyncio.sleep(0.05)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        for period in reports.PERIODS:
            assert reports.snapshot_history(seeded_store, period)

    @pytest.mark.asyncio
    async def test_keeps_running_after_a_failure(self, seeded_store):
        with patch.object(
            reports, "persist_all_snapshots", side_effect=PersistenceFailure("locked")
        ) as persist:
            task = asyncio.create_task(snapshot_job(seeded_store, 0.01))
            await asyncio.sleep(0.05)
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task

        assert persist.call_count >= 2

    def test_runs_while_the_app_is_up(self, seeded_store, bus, catalog):
        app = create_app(seeded_store, bus, catalog=catalog, sync_catalog=False, snapshot_interval=0.01)
        with TestClient(app):
            time.sleep(0.1)

        assert reports.snapshot_history(seeded_store, "weekly")

    def test_disabled_with_zero_interval(self, seeded_store, bus, catalog):
        app = create_app(seeded_store, bus, catalog=catalog, sync_catalog=False, snapshot_interval=0)
        with TestClient(app):
            time.sleep(0.05)

        assert reports.snapshot_history(seeded_store, "weekly") == []


class TestIdentity:
    """Tests for header-based user resolution."""

    def test_default_user(self, client):
        profile = client.get("/v1/me/profile").json()

        assert profile["user"]["id"] == settings.DEFAULT_USER_ID

    def test_user_id_creates_user(self, client, seeded_store):
        profile = client.get("/v1/me/profile", headers=BOB).json()

        assert profile["user"]["handle"] == "bob"
        assert seeded_store.get_user("user-2")["displayName"] == "Bob"

    def test_handle_only_is_stable(self, client):
        first = client.get("/v1/me/profile", headers={"x-user-handle": "dana"}).json()
        second = client.get("/v1/me/profile", headers={"x-user-handle": "dana"}).json()

        assert first["user"]["id"] == second["user"]["id"]
        assert first["user"]["id"].startswith("user-")
        assert first["user"]["displayName"] == "dana"


class TestDrafts:
    """Tests for draft endpoints."""

    def test_create_update_get(self, client):
        created = client.post(
            "/v1/drafts", json={"title": "Tax cuts", "resolution": "Cut income tax."}, headers=ALICE
        )
        assert created.status_code == 201
        draft = created.json()["draft"]
        assert draft["status"] == "draft"
        assert draft["body"] == "Cut income tax."

        updated = client.put(
            f"/v1/drafts/{draft['id']}",
            json={"title": "Tax cuts", "body": "Cut income tax by 5%.", "topic": "Economics"},
            headers=ALICE,
        )
        assert updated.status_code == 200
        assert updated.json()["draft"]["topic"] == "Economics"

        fetched = client.get(f"/v1/drafts/{draft['id']}", headers=ALICE)
        assert fetched.json()["draft"]["body"] == "Cut income tax by 5%."

    def test_missing_text_is_400(self, client):
        response = client.post("/v1/drafts", json={"title": "  "}, headers=ALICE)

        assert response.status_code == 400
        assert response.json() == {"error": "title and body are required"}

    def test_other_users_draft_is_403(self, client):
        draft = client.post(
            "/v1/drafts", json={"title": "Mine", "body": "Only mine."}, headers=ALICE
        ).json()["draft"]

        assert client.get(f"/v1/drafts/{draft['id']}", headers=BOB).status_code == 403
        response = client.put(
            f"/v1/drafts/{draft['id']}", json={"title": "Yours", "body": "Now."}, headers=BOB
        )
        assert response.status_code == 403

    def test_unknown_draft_is_404(self, client):
        response = client.get("/v1/drafts/missing", headers=ALICE)

        assert response.status_code == 404
        assert response.json() == {"error": "Draft not found"}


class TestSubmitAndDebate:
    """Tests for submission and debate endpoints."""

    def test_submit(self, client, catalog):
        response = submit(client, delegates=SAMPLE_MODEL_IDS[:2], userVote="intelligent")

        assert response.status_code == 201
        view = response.json()
        assert view["status"] == "closed"
        assert [r["modelId"] for r in view["delegateResults"]] == SAMPLE_MODEL_IDS[:2]
        assert view["consensus"]["totalVotes"] == 2
        catalog.eligible.assert_awaited()

    def test_submit_without_body_is_400(self, client):
        response = client.post("/v1/resolutions/submit", json={"title": "Only a title"})

        assert response.status_code == 400

    def test_debate_reads(self, client):
        debate_id = submit(client).json()["id"]

        assert client.get(f"/v1/debates/{debate_id}").json()["id"] == debate_id
        consensus = client.get(f"/v1/debates/{debate_id}/consensus").json()
        assert consensus["intelligentPct"] + consensus["idioticPct"] == 100

        messages = client.get(f"/v1/debates/{debate_id}/messages", params={"limit": "2"}).json()
        assert messages["limit"] == 2
        assert messages["offset"] == 0
        assert len(messages["items"]) == 2

    def test_unknown_debate_is_404(self, client):
        assert client.get("/v1/debates/missing").status_code == 404
        assert client.get("/v1/debates/missing/consensus").status_code == 404
        assert client.get("/v1/debates/missing/stream").status_code == 404

    def test_human_vote(self, client, bus, mock_query_delegate):
        mock_query_delegate.side_effect = scripted_delegates(
            {m: ("Idiotic", 70) for m in SAMPLE_MODEL_IDS[:4]}
        )
        debate_id = submit(client).json()["id"]
        received = []
        bus.subscribe(debate_id, received.append)

        response = client.post(
            f"/v1/debates/{debate_id}/human-vote", json={"vote": "idiotic"}, headers=BOB
        )

        assert response.status_code == 201
        assert response.json()["vote"] == "Idiotic"
        assert response.json()["aligned"] is True
        assert received[0]["type"] == "human_vote"

    def test_human_argument(self, client):
        debate_id = submit(client).json()["id"]

        response = client.post(
            f"/v1/debates/{debate_id}/human-argument",
            json={"content": "Libraries are cheap.", "stance": "INTELLIGENT"},
            headers=ALICE,
        )

        assert response.status_code == 201
        assert response.json()["stance"] == "intelligent"
        assert client.post(
            f"/v1/debates/{debate_id}/human-argument", json={"content": " "}, headers=ALICE
        ).status_code == 400
        assert client.post(
            "/v1/debates/missing/human-argument", json={"content": "hi"}, headers=ALICE
        ).status_code == 404

    def test_persistence_failure_is_500(self, client, seeded_store):
        with patch.object(seeded_store, "get_debate_view", side_effect=PersistenceFailure("disk full")):
            response = client.get("/v1/debates/anything")

        assert response.status_code == 500
        assert response.json() == {"error": "Internal server error", "details": "disk full"}


class TestLiveViews:
    def test_empty_assembly(self, client):
        assert client.get("/v1/live/hero").json() == {"debate": None}
        assert client.get("/v1/live/arguments").json() == {"items": []}
        assert client.get("/v1/live/consensus").json() == {"consensus": None}

    def test_latest_debate(self, client):
        submit(client, title="First")
        latest = submit(client, title="Second").json()

        hero = client.get("/v1/live/hero").json()
        assert hero["debate"]["id"] == latest["id"]
        assert len(hero["delegates"]) == 6
        assert client.get("/v1/live/consensus").json()["consensus"]["debateId"] == latest["id"]
        assert len(client.get("/v1/live/trending").json()["items"]) == 2
        assert len(client.get("/v1/live/delegates", params={"limit": "2"}).json()["delegates"]) == 2


class TestArchiveAndLeaderboard:
    def test_archive_endpoints(self, client):
        debate_id = submit(client, topic="Education").json()["id"]

        archive = client.get("/v1/archive", params={"topic": "Education", "limit": "999"}).json()
        assert archive["limit"] == 100
        assert [item["id"] for item in archive["items"]] == [debate_id]

        assert client.get(f"/v1/archive/{debate_id}").json()["id"] == debate_id
        assert client.get("/v1/archive/missing").status_code == 404
        transcript = client.get(f"/v1/archive/{debate_id}/transcript").json()["items"]
        assert transcript[-1]["content"].startswith("Final verdict:")
        votes = client.get(f"/v1/archive/{debate_id}/votes").json()
        assert len(votes["delegateVotes"]) == 4
        facets = client.get("/v1/archive/facets").json()
        assert facets["topics"] == [{"topic": "Education", "count": 1}]

    def test_me_endpoints(self, client):
        submit(client, userVote="Intelligent")

        alignment = client.get("/v1/me/alignment", headers=ALICE).json()
        assert set(alignment) == {"allTime", "weekly", "monthly"}
        assert alignment["allTime"]["submissions"] == 1
        assert len(client.get("/v1/me/submissions", headers=ALICE).json()["items"]) == 1
        assert len(client.get("/v1/me/votes", headers=ALICE).json()["items"]) == 1
        stats = client.get("/v1/me/stats", headers=ALICE).json()
        assert stats["user"]["handle"] == "alice"
        assert stats["timeline"][0]["totalVotes"] == 1

    def test_leaderboard(self, client):
        submit(client)

        board = client.get("/v1/leaderboard", params={"period": "fortnightly"}).json()
        assert board["period"] == "weekly"
        assert [row["userId"] for row in board["items"]] == ["user-1"]

        history = client.get("/v1/leaderboard/history", params={"period": "monthly"}).json()
        assert len(history["snapshots"]) == 1
        ranks = client.get("/v1/users/user-1/rank-history").json()["items"]
        assert {entry["period"] for entry in ranks} == {"weekly", "monthly", "all_time"}
