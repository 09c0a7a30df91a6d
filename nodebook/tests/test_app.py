import unittest
from datetime import datetime, timedelta, timezone
from unittest import mock

import jwt
from fastapi.testclient import TestClient
from sqlalchemy import select

from nodebook.app import create_app
from nodebook.auth import SharedSecretTokenVerifier
from nodebook.config import Settings
from nodebook.db import SqlAlchemyDbClient
from nodebook.dependencies import get_db_client, get_token_verifier
from nodebook.tables import FlashcardRow, MindMapRow

SECRET = "test-secret-key-with-enough-bytes-for-hs256"


def make_token(subject: str, nickname: str = "", secret: str = SECRET) -> str:
    claims = {
        "sub": subject,
        "exp": datetime.now(timezone.utc) + timedelta(hours=1),
    }
    if nickname:
        claims["nickname"] = nickname
    return jwt.encode(claims, secret, algorithm="HS256")


def auth(subject: str, nickname: str = "") -> dict:
    return {"Authorization": f"Bearer {make_token(subject, nickname)}"}


ALICE = auth("auth0|alice", "alice")
BOB = auth("auth0|bob", "bob")


class ApiTestCase(unittest.TestCase):
    def setUp(self):
        self.db = SqlAlchemyDbClient.in_memory()
        app = create_app()
        app.dependency_overrides[get_db_client] = lambda: self.db
        app.dependency_overrides[get_token_verifier] = (
            lambda: SharedSecretTokenVerifier(SECRET)
        )
        self.client = TestClient(app)

    def create_set(self, headers=ALICE, **overrides) -> dict:
        payload = {
            "title": "Biology",
            "is_public": False,
            "flashcards": [
                {"term": "Cell", "solution": "Basic unit of life", "concept": "basics"},
                {"term": "DNA", "solution": "Genetic material"},
                {"term": "RNA", "solution": "Messenger"},
            ],
        }
        payload.update(overrides)
        response = self.client.post("/api/sets", json=payload, headers=headers)
        self.assertEqual(response.status_code, 201, response.text)
        return response.json()


class UserApiTests(ApiTestCase):
    def test_me_creates_user_then_updates_nickname(self):
        response = self.client.get("/api/users/me", headers=ALICE)
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["nickname"], "alice")

        renamed = auth("auth0|alice", "alice2")
        response = self.client.get("/api/users/me", headers=renamed)
        self.assertEqual(response.json()["nickname"], "alice2")
        self.assertEqual(len(self.db.list_users()), 1)

    def test_me_without_nickname_claim_uses_subject(self):
        response = self.client.get("/api/users/me", headers=auth("auth0|anon"))
        self.assertEqual(response.json()["nickname"], "auth0|anon")

    def test_missing_token_is_unauthorized(self):
        response = self.client.get("/api/users/me")
        self.assertEqual(response.status_code, 401)

    def test_token_with_wrong_secret_is_rejected(self):
        token = make_token("auth0|alice", "alice", secret="another-secret-that-is-long-enough")
        response = self.client.get(
            "/api/sets/whatever", headers={"Authorization": f"Bearer {token}"}
        )
        self.assertEqual(response.status_code, 401)

    def test_legacy_cookie_token_is_accepted(self):
        token = make_token("auth0|alice", "alice")
        response = self.client.get(
            "/api/users/me", headers={"Cookie": f"auth_token={token}"}
        )
        self.assertEqual(response.status_code, 200)

    def test_user_sets_hide_private_sets_from_others(self):
        self.create_set(title="Private")
        self.create_set(title="Public", is_public=True)

        owner_view = self.client.get("/api/users/alice/sets", headers=ALICE).json()
        self.assertEqual({s["title"] for s in owner_view}, {"Private", "Public"})

        public_view = self.client.get("/api/users/alice/sets").json()
        self.assertEqual([s["title"] for s in public_view], ["Public"])
        self.assertFalse(public_view[0]["is_owner"])

    def test_unknown_user_sets_is_not_found(self):
        response = self.client.get("/api/users/nobody/sets")
        self.assertEqual(response.status_code, 404)


class SetApiTests(ApiTestCase):
    def test_create_set_with_cards(self):
        created = self.create_set()
        self.assertTrue(created["public_id"])
        self.assertTrue(created["is_owner"])
        self.assertEqual(created["owner_nickname"], "alice")
        self.assertEqual([c["term"] for c in created["flashcards"]], ["Cell", "DNA", "RNA"])
        self.assertTrue(all(c["public_id"] for c in created["flashcards"]))

    def test_create_set_requires_term_and_solution(self):
        response = self.client.post(
            "/api/sets",
            json={"title": "Broken", "flashcards": [{"term": "", "solution": "x"}]},
            headers=ALICE,
        )
        self.assertEqual(response.status_code, 400)
        self.assertEqual(self.client.get("/api/users/alice/sets", headers=ALICE).json(), [])

    def test_private_set_visibility(self):
        set_id = self.create_set()["public_id"]
        self.assertEqual(self.client.get(f"/api/sets/{set_id}").status_code, 403)
        self.assertEqual(
            self.client.get(f"/api/sets/{set_id}", headers=BOB).status_code, 403
        )
        response = self.client.get(f"/api/sets/{set_id}", headers=ALICE)
        self.assertEqual(response.status_code, 200)
        self.assertTrue(response.json()["is_owner"])

    def test_public_set_is_visible_to_anyone(self):
        set_id = self.create_set(is_public=True)["public_id"]
        response = self.client.get(f"/api/sets/{set_id}")
        self.assertEqual(response.status_code, 200)
        self.assertFalse(response.json()["is_owner"])

    def test_unknown_set_is_not_found(self):
        self.assertEqual(self.client.get("/api/sets/missing").status_code, 404)

    def test_update_set_applies_card_changes(self):
        created = self.create_set()
        cell, dna, _ = created["flashcards"]
        response = self.client.put(
            f"/api/sets/{created['public_id']}",
            json={
                "title": "Biology 101",
                "is_public": True,
                "flashcards": [
                    {"id": cell["id"], "should_delete": True},
                    {
                        "id": dna["id"],
                        "term": "DNA",
                        "solution": "Deoxyribonucleic acid",
                        "should_update": True,
                    },
                    {"term": "ATP", "solution": "Energy currency", "should_create": True},
                    {"id": 99999, "should_delete": True},
                ],
            },
            headers=ALICE,
        )
        self.assertEqual(response.status_code, 200, response.text)
        body = response.json()
        self.assertEqual(body["title"], "Biology 101")
        self.assertTrue(body["is_public"])
        solutions = {c["term"]: c["solution"] for c in body["flashcards"]}
        self.assertEqual(
            solutions,
            {"DNA": "Deoxyribonucleic acid", "RNA": "Messenger", "ATP": "Energy currency"},
        )

    def test_repeated_delete_in_one_update_is_skipped(self):
        created = self.create_set()
        cell = created["flashcards"][0]
        response = self.client.put(
            f"/api/sets/{created['public_id']}",
            json={
                "flashcards": [
                    {"id": cell["id"], "should_delete": True},
                    {"id": cell["id"], "should_delete": True},
                    {
                        "id": cell["id"],
                        "term": "Cell",
                        "solution": "Again",
                        "should_update": True,
                    },
                ]
            },
            headers=ALICE,
        )
        self.assertEqual(response.status_code, 200, response.text)
        self.assertEqual(
            [c["term"] for c in response.json()["flashcards"]], ["DNA", "RNA"]
        )

    def test_only_owner_can_update_or_delete(self):
        set_id = self.create_set(is_public=True)["public_id"]
        response = self.client.put(f"/api/sets/{set_id}", json={"title": "Mine"}, headers=BOB)
        self.assertEqual(response.status_code, 403)
        response = self.client.delete(f"/api/sets/{set_id}", headers=BOB)
        self.assertEqual(response.status_code, 403)
        response = self.client.delete(f"/api/sets/{set_id}")
        self.assertEqual(response.status_code, 401)

    def test_delete_set(self):
        set_id = self.create_set()["public_id"]
        response = self.client.delete(f"/api/sets/{set_id}", headers=ALICE)
        self.assertEqual(response.status_code, 204)
        response = self.client.get(f"/api/sets/{set_id}", headers=ALICE)
        self.assertEqual(response.status_code, 404)


class FlashcardApiTests(ApiTestCase):
    def test_flashcard_crud(self):
        set_id = self.create_set(flashcards=[])["public_id"]
        response = self.client.post(
            f"/api/sets/{set_id}/flashcards",
            json={"term": "Mitosis", "solution": "Cell division", "concept": "cycle"},
            headers=ALICE,
        )
        self.assertEqual(response.status_code, 201, response.text)
        card_id = response.json()["public_id"]

        response = self.client.put(
            f"/api/sets/{set_id}/flashcards/{card_id}",
            json={"solution": "Division of a cell nucleus"},
            headers=ALICE,
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["term"], "Mitosis")
        self.assertEqual(response.json()["solution"], "Division of a cell nucleus")

        cards = self.client.get(f"/api/sets/{set_id}/flashcards", headers=ALICE).json()
        self.assertEqual([c["public_id"] for c in cards], [card_id])

        response = self.client.delete(
            f"/api/sets/{set_id}/flashcards/{card_id}", headers=ALICE
        )
        self.assertEqual(response.status_code, 204)
        response = self.client.delete(
            f"/api/sets/{set_id}/flashcards/{card_id}", headers=ALICE
        )
        self.assertEqual(response.status_code, 404)

    def test_create_flashcard_rejects_unknown_fields(self):
        set_id = self.create_set(flashcards=[])["public_id"]
        response = self.client.post(
            f"/api/sets/{set_id}/flashcards",
            json={"term": "a", "solution": "b", "bogus": 1},
            headers=ALICE,
        )
        self.assertEqual(response.status_code, 422)

    def test_listing_assigns_ids_to_legacy_flashcards(self):
        created = self.create_set(is_public=True, flashcards=[])
        with self.db.Session() as session:
            session.add_all(
                [
                    FlashcardRow(term="Old", solution="Card", set_id=created["id"]),
                    FlashcardRow(
                        term="Older", solution="Card", set_id=created["id"], public_id=""
                    ),
                ]
            )
            session.commit()

        response = self.client.get(f"/api/sets/{created['public_id']}/flashcards")
        self.assertEqual(response.status_code, 200)
        listed = [c["public_id"] for c in response.json()]
        self.assertEqual(len(listed), 2)
        self.assertTrue(all(listed))

        with self.db.Session() as session:
            stored = session.execute(
                select(FlashcardRow.public_id).order_by(FlashcardRow.id)
            ).scalars().all()
        self.assertEqual(stored, listed)

    def test_non_owner_cannot_add_flashcards(self):
        set_id = self.create_set(is_public=True)["public_id"]
        response = self.client.post(
            f"/api/sets/{set_id}/flashcards",
            json={"term": "a", "solution": "b"},
            headers=BOB,
        )
        self.assertEqual(response.status_code, 403)

    def test_get_flashcard_follows_set_visibility(self):
        card_id = self.create_set()["flashcards"][0]["public_id"]
        self.assertEqual(self.client.get(f"/api/flashcards/{card_id}").status_code, 403)
        response = self.client.get(f"/api/flashcards/{card_id}", headers=ALICE)
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["term"], "Cell")

    def test_private_flashcards_are_hidden(self):
        set_id = self.create_set()["public_id"]
        response = self.client.get(f"/api/sets/{set_id}/flashcards", headers=BOB)
        self.assertEqual(response.status_code, 403)


class MindMapApiTests(ApiTestCase):
    def setUp(self):
        super().setUp()
        created = self.create_set()
        self.set_id = created["public_id"]
        self.card_ids = [c["id"] for c in created["flashcards"]]

    def create_mind_map(self, **overrides) -> dict:
        a, b, c = self.card_ids
        payload = {
            "title": "Overview",
            "is_public": False,
            "connections": [
                {"source_id": a, "target_id": b, "relationship": "contains"},
                {"source_id": b, "target_id": c, "relationship": "transcribed to"},
            ],
            "node_layouts": [
                {"flashcard_id": a, "x_position": 0, "y_position": 0, "data": "root"},
                {"flashcard_id": b, "x_position": 100.5, "y_position": 40},
            ],
        }
        payload.update(overrides)
        response = self.client.post(
            f"/api/sets/{self.set_id}/mindmaps", json=payload, headers=ALICE
        )
        self.assertEqual(response.status_code, 201, response.text)
        return response.json()

    def test_create_mind_map_with_children(self):
        mind_map = self.create_mind_map()
        self.assertTrue(mind_map["public_id"])
        self.assertEqual(len(mind_map["connections"]), 2)
        self.assertEqual(mind_map["connections"][0]["relationship"], "contains")
        self.assertEqual(len(mind_map["node_layouts"]), 2)
        self.assertEqual(mind_map["node_layouts"][1]["x_position"], 100.5)

    def test_reference_outside_set_rolls_back_creation(self):
        other = self.create_set(title="Chemistry", flashcards=[{"term": "H", "solution": "Hydrogen"}])
        foreign_card = other["flashcards"][0]["id"]
        response = self.client.post(
            f"/api/sets/{self.set_id}/mindmaps",
            json={
                "title": "Broken",
                "connections": [{"source_id": self.card_ids[0], "target_id": foreign_card}],
            },
            headers=ALICE,
        )
        self.assertEqual(response.status_code, 400)
        listed = self.client.get(f"/api/sets/{self.set_id}/mindmaps", headers=ALICE).json()
        self.assertEqual(listed, [])

    def test_invalid_layout_reference_is_rejected(self):
        response = self.client.post(
            f"/api/sets/{self.set_id}/mindmaps",
            json={
                "title": "Broken",
                "node_layouts": [{"flashcard_id": 424242, "x_position": 1, "y_position": 2}],
            },
            headers=ALICE,
        )
        self.assertEqual(response.status_code, 400)

    def test_replace_connections_and_layouts(self):
        mind_map = self.create_mind_map()
        base = f"/api/sets/{self.set_id}/mindmaps/{mind_map['public_id']}"
        a, _, c = self.card_ids

        response = self.client.put(
            f"{base}/connections",
            json=[{"source_id": c, "target_id": a, "relationship": "loops back"}],
            headers=ALICE,
        )
        self.assertEqual(response.status_code, 204)
        response = self.client.put(f"{base}/layouts", json=[], headers=ALICE)
        self.assertEqual(response.status_code, 204)

        fetched = self.client.get(base, headers=ALICE).json()
        self.assertEqual(
            [(x["source_id"], x["target_id"]) for x in fetched["connections"]], [(c, a)]
        )
        self.assertEqual(fetched["node_layouts"], [])

    def test_failed_replace_keeps_previous_connections(self):
        mind_map = self.create_mind_map()
        base = f"/api/sets/{self.set_id}/mindmaps/{mind_map['public_id']}"
        a = self.card_ids[0]
        response = self.client.put(
            f"{base}/connections",
            json=[{"source_id": a, "target_id": 0}],
            headers=ALICE,
        )
        self.assertEqual(response.status_code, 400)
        fetched = self.client.get(base, headers=ALICE).json()
        self.assertEqual(len(fetched["connections"]), 2)

    def test_update_mind_map_header_only(self):
        mind_map = self.create_mind_map()
        base = f"/api/sets/{self.set_id}/mindmaps/{mind_map['public_id']}"
        response = self.client.put(
            base, json={"title": "Renamed", "is_public": True}, headers=ALICE
        )
        self.assertEqual(response.status_code, 200, response.text)
        body = response.json()
        self.assertEqual(body["title"], "Renamed")
        self.assertTrue(body["is_public"])
        self.assertEqual(len(body["connections"]), 2)
        self.assertEqual(self.client.get(base).status_code, 200)

    def test_private_mind_map_access(self):
        mind_map = self.create_mind_map()
        base = f"/api/sets/{self.set_id}/mindmaps/{mind_map['public_id']}"
        self.assertEqual(self.client.get(base).status_code, 401)
        self.assertEqual(self.client.get(base, headers=BOB).status_code, 403)
        self.assertEqual(self.client.get(base, headers=ALICE).status_code, 200)

    def test_set_listing_hides_private_mind_maps(self):
        self.create_mind_map(title="Hidden")
        self.create_mind_map(title="Shown", is_public=True)
        listed = self.client.get(f"/api/sets/{self.set_id}/mindmaps", headers=BOB).json()
        self.assertEqual([m["title"] for m in listed], ["Shown"])
        listed = self.client.get("/api/users/alice/mindmaps", headers=ALICE).json()
        self.assertEqual(len(listed), 2)

    def test_check_title(self):
        self.create_mind_map()
        url = f"/api/sets/{self.set_id}/mindmaps/check-title"
        response = self.client.post(url, json={"title": "Overview"}, headers=ALICE)
        self.assertEqual(response.status_code, 409)
        response = self.client.post(url, json={"title": "Fresh"}, headers=ALICE)
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"available": True})

    def test_deleting_flashcard_drops_its_connections(self):
        mind_map = self.create_mind_map()
        card_public_id = self.client.get(
            f"/api/sets/{self.set_id}/flashcards", headers=ALICE
        ).json()[0]["public_id"]
        response = self.client.delete(
            f"/api/sets/{self.set_id}/flashcards/{card_public_id}", headers=ALICE
        )
        self.assertEqual(response.status_code, 204)
        fetched = self.client.get(
            f"/api/sets/{self.set_id}/mindmaps/{mind_map['public_id']}", headers=ALICE
        ).json()
        self.assertEqual(len(fetched["connections"]), 1)
        self.assertEqual(len(fetched["node_layouts"]), 1)

    def test_user_listing_assigns_ids_to_legacy_mind_maps(self):
        created = self.create_set(title="Genetics", is_public=True, flashcards=[])
        alice = self.db.get_user_by_nickname("alice")
        with self.db.Session() as session:
            session.add(
                MindMapRow(
                    title="Legacy map",
                    set_id=created["id"],
                    user_id=alice.id,
                    is_public=True,
                )
            )
            session.commit()

        response = self.client.get("/api/users/alice/mindmaps")
        self.assertEqual(response.status_code, 200)
        listed = response.json()
        self.assertEqual([m["title"] for m in listed], ["Legacy map"])
        public_id = listed[0]["public_id"]
        self.assertTrue(public_id)

        response = self.client.get(f"/api/sets/{created['public_id']}/mindmaps/{public_id}")
        self.assertEqual(response.status_code, 200)

    def test_delete_mind_map(self):
        mind_map = self.create_mind_map()
        base = f"/api/sets/{self.set_id}/mindmaps/{mind_map['public_id']}"
        self.assertEqual(self.client.delete(base, headers=BOB).status_code, 403)
        self.assertEqual(self.client.delete(base, headers=ALICE).status_code, 204)
        self.assertEqual(self.client.get(base, headers=ALICE).status_code, 404)


class BlocksApiTests(ApiTestCase):
    def test_leaderboard_orders_by_time(self):
        set_id = self.create_set(is_public=True)["public_id"]
        for headers, seconds in ((ALICE, 42), (BOB, 17), (ALICE, 30)):
            response = self.client.post(
                f"/api/sets/{set_id}/blocks/scores",
                json={"correct_attempts": 3, "total_attempts": 4, "time": seconds},
                headers=headers,
            )
            self.assertEqual(response.status_code, 201, response.text)

        response = self.client.get(f"/api/sets/{set_id}/blocks/leaderboard", headers=BOB)
        self.assertEqual(response.status_code, 200)
        board = response.json()
        self.assertEqual([s["time_seconds"] for s in board], [17, 30, 42])
        self.assertEqual(board[0]["nickname"], "bob")

    def test_private_set_leaderboard_is_forbidden(self):
        set_id = self.create_set()["public_id"]
        response = self.client.get(f"/api/sets/{set_id}/blocks/leaderboard", headers=BOB)
        self.assertEqual(response.status_code, 403)
        response = self.client.post(
            f"/api/sets/{set_id}/blocks/scores",
            json={"correct_attempts": 1, "total_attempts": 1, "time": 5},
            headers=BOB,
        )
        self.assertEqual(response.status_code, 403)
        self.assertIsNone(self.db.get_user_by_nickname("bob"))

    def test_score_by_unseen_user_creates_the_user(self):
        set_id = self.create_set(is_public=True)["public_id"]
        response = self.client.post(
            f"/api/sets/{set_id}/blocks/scores",
            json={"correct_attempts": 2, "total_attempts": 2, "time": 9},
            headers=BOB,
        )
        self.assertEqual(response.status_code, 201, response.text)
        bob = self.db.get_user_by_auth0_id("auth0|bob")
        self.assertEqual(bob.nickname, "bob")
        self.assertEqual(response.json()["user_id"], bob.id)

    def test_score_validation(self):
        set_id = self.create_set(is_public=True)["public_id"]
        url = f"/api/sets/{set_id}/blocks/scores"
        response = self.client.post(
            url, json={"correct_attempts": 5, "total_attempts": 4, "time": 5}, headers=BOB
        )
        self.assertEqual(response.status_code, 400)
        response = self.client.post(
            url,
            json={"correct_attempts": 1, "total_attempts": 4, "time": 5, "extra": True},
            headers=BOB,
        )
        self.assertEqual(response.status_code, 422)


class HealthTests(ApiTestCase):
    def test_health(self):
        response = self.client.get("/health")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"status": "ok"})


class CreateAppTests(unittest.TestCase):
    def test_missing_auth_configuration_is_logged_once_at_startup(self):
        settings = Settings(auth0_domain=None, jwt_secret_key=None)
        with mock.patch("nodebook.app.get_settings", return_value=settings):
            with self.assertLogs("nodebook.app", level="WARNING") as logs:
                app = create_app()
        self.assertEqual(len(logs.records), 1)

        client = TestClient(app)
        with self.assertNoLogs("nodebook", level="WARNING"):
            with mock.patch(
                "nodebook.dependencies.get_settings", return_value=settings
            ), mock.patch("nodebook.dependencies._token_verifier", None):
                response = client.get("/api/users/me", headers=ALICE)
        self.assertEqual(response.status_code, 503)

    def test_configured_secret_is_silent(self):
        settings = Settings(auth0_domain=None, jwt_secret_key=SECRET)
        with mock.patch("nodebook.app.get_settings", return_value=settings):
            with self.assertNoLogs("nodebook.app", level="WARNING"):
                create_app()


if __name__ == "__main__":
    unittest.main()
