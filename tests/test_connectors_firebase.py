import os
import sys
import types
import unittest
from unittest import mock


RESOURCE = {
    "databaseURL": "https://demo.firebaseio.com",
    "projectID": "demo",
    "privateKey": '{"type": "service_account", "project_id": "demo"}',
}


class _FakeDocument:
    def __init__(self, path, calls):
        self.path = path
        self.calls = calls

    def set(self, value, merge=False):
        self.calls.append(("set", self.path, value, merge))

    def collections(self):
        self.calls.append(("collections", self.path))
        return [types.SimpleNamespace(id="orders"), types.SimpleNamespace(id="notes")]


class _FakeQuery:
    def __init__(self, docs, calls, name=""):
        self.docs = docs
        self.calls = calls
        self.name = name

    def document(self, doc_id):
        return _FakeDocument(f"{self.name}/{doc_id}", self.calls)

    def where(self, filter=None):
        self.calls.append(("where", filter))
        return self

    def limit(self, n):
        self.calls.append(("limit", n))
        return self

    def order_by(self, field, direction=None):
        self.calls.append(("order_by", field, direction))
        return self

    def start_at(self, values):
        self.calls.append(("start_at", values))
        return self

    def end_at(self, values):
        self.calls.append(("end_at", values))
        return self

    def stream(self):
        for doc in self.docs:
            yield types.SimpleNamespace(to_dict=lambda d=doc: d)


class _FakeFirebase:
    """Minimal firebase_admin package recording app lifecycles."""

    def __init__(self, users=(), docs=()):
        self.opened = []
        self.deleted = []
        self.closed_clients = 0
        self.query_calls = []

        class FirebaseError(Exception):
            pass

        class GoogleAPIError(Exception):
            pass

        root = types.ModuleType("firebase_admin")
        root.initialize_app = self._initialize_app
        root.delete_app = self.deleted.append

        credentials = types.ModuleType("firebase_admin.credentials")
        credentials.Certificate = lambda info: ("cert", info["project_id"])

        exceptions = types.ModuleType("firebase_admin.exceptions")
        exceptions.FirebaseError = FirebaseError

        auth = types.ModuleType("firebase_admin.auth")
        all_users = list(users)

        def list_users(page_token=None, max_results=1000, app=None):
            page = all_users[:max_results]
            next_token = "next" if len(all_users) > max_results else ""
            return types.SimpleNamespace(users=page, next_page_token=next_token)

        def delete_user(uid, app=None):
            if uid not in {u.uid for u in all_users}:
                raise FirebaseError(f"no user {uid}")

        auth.list_users = list_users
        auth.delete_user = delete_user
        auth.get_user = lambda uid, app=None: next(u for u in all_users if u.uid == uid)
        auth.get_user_by_email = lambda email, app=None: next(u for u in all_users if u.email == email)
        auth.get_user_by_phone_number = lambda phone, app=None: next(u for u in all_users if u.phone_number == phone)
        self.auth_calls = []

        def create_user(app=None, **kwargs):
            self.auth_calls.append(("create", kwargs))
            return types.SimpleNamespace(uid=kwargs.get("uid", "generated"), email=kwargs.get("email"), disabled=kwargs["disabled"])

        def update_user(uid, app=None, **kwargs):
            self.auth_calls.append(("update", uid, kwargs))
            return types.SimpleNamespace(uid=uid, email=kwargs.get("email"), display_name=kwargs.get("display_name"))

        auth.create_user = create_user
        auth.update_user = update_user

        firestore = types.ModuleType("firebase_admin.firestore")
        firestore.FieldFilter = lambda field, op, value: (field, op, value)
        firestore.Query = types.SimpleNamespace(ASCENDING="ASC", DESCENDING="DESC")
        fake = self

        class _Client:
            def collection(self, name):
                return _FakeQuery(list(docs), fake.query_calls, name)

            def document(self, path):
                return _FakeDocument(path, fake.query_calls)

            def collections(self):
                return [types.SimpleNamespace(id="users"), types.SimpleNamespace(id="items")]

            def close(self):
                fake.closed_clients += 1

        firestore.client = lambda app=None: _Client()

        api_exceptions = types.ModuleType("google.api_core.exceptions")
        api_exceptions.GoogleAPIError = GoogleAPIError

        self.FirebaseError = FirebaseError
        self.modules = {
            "firebase_admin": root,
            "firebase_admin.credentials": credentials,
            "firebase_admin.exceptions": exceptions,
            "firebase_admin.auth": auth,
            "firebase_admin.firestore": firestore,
            "google.api_core.exceptions": api_exceptions,
        }

    def _initialize_app(self, cred, options=None, name=None):
        app = types.SimpleNamespace(name=name, options=options, cred=cred)
        self.opened.append(app)
        return app


def _user(uid, phone=""):
    return types.SimpleNamespace(
        uid=uid, email=f"{uid}@example.com", phone_number=phone, display_name=uid.upper(), disabled=False
    )


class TestFirebaseConnector(unittest.TestCase):
    def setUp(self):
        repo_root = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
        src_path = os.path.join(repo_root, "src")
        if src_path not in sys.path:
            sys.path.insert(0, src_path)

    def _run(self, fake, action):
        from actionkit.connectors import FirebaseConnector

        with mock.patch.dict(sys.modules, fake.modules):
            return FirebaseConnector().run(RESOURCE, action)

    def test_auth_list_pages_users(self):
        fake = _FakeFirebase(users=[_user("u1"), _user("u2"), _user("u3")])
        result = self._run(fake, {"service": "auth", "operation": "list", "options": {"number": 2, "token": ""}})

        self.assertTrue(result.success)
        users = result.rows[0]["users"]
        self.assertEqual([u["rawId"] for u in users], ["u1", "u2"])
        self.assertEqual(users[0]["email"], "u1@example.com")
        self.assertEqual(result.rows[1], {"nextPageToken": "next"})

    def test_app_is_deleted_after_each_call(self):
        fake = _FakeFirebase(users=[_user("u1")])
        self._run(fake, {"service": "auth", "operation": "uid", "options": {"filter": "u1"}})

        self.assertEqual(len(fake.opened), 1)
        self.assertEqual(fake.deleted, fake.opened)
        self.assertEqual(fake.opened[0].options, {"databaseURL": "https://demo.firebaseio.com", "projectId": "demo"})

    def test_delete_returns_empty_result(self):
        fake = _FakeFirebase(users=[_user("u1")])
        result = self._run(fake, {"service": "auth", "operation": "delete", "options": {"filter": "u1"}})
        self.assertEqual(result.rows, [])

    def test_sdk_failure_is_operation_failed_and_app_released(self):
        from actionkit.core.errors import OperationFailedError

        fake = _FakeFirebase(users=[])
        with self.assertRaises(OperationFailedError):
            self._run(fake, {"service": "auth", "operation": "delete", "options": {"filter": "ghost"}})
        self.assertEqual(len(fake.deleted), 1)

    def test_firestore_query_skips_malformed_where(self):
        fake = _FakeFirebase(docs=[{"n": 1}, {"n": 2}])
        result = self._run(
            fake,
            {
                "service": "firestore",
                "operation": "query_fs",
                "options": {
                    "collection": "items",
                    "where": [["n", ">", 0], ["broken"], {"field": "", "condition": "==", "value": 1}],
                    "limit": 5,
                    "orderBy": "n",
                    "orderDirection": "desc",
                    "startAt": {"trigger": True, "value": 1},
                    "endAt": {"trigger": False, "value": 9},
                },
            },
        )

        self.assertEqual(result.rows, [{"n": 1}, {"n": 2}])
        self.assertEqual(
            fake.query_calls,
            [
                ("where", ("n", ">", 0)),
                ("limit", 5),
                ("order_by", "n", "DESC"),
                ("start_at", [1]),
            ],
        )
        self.assertEqual(fake.closed_clients, 1)

    def test_auth_lookups_return_user(self):
        fake = _FakeFirebase(users=[_user("u1", "+15550001"), _user("u2", "+15550002")])

        by_uid = self._run(fake, {"service": "auth", "operation": "uid", "options": {"filter": "u2"}})
        by_email = self._run(fake, {"service": "auth", "operation": "email", "options": {"filter": "u1@example.com"}})
        by_phone = self._run(fake, {"service": "auth", "operation": "phone", "options": {"filter": "+15550002"}})

        self.assertEqual(by_uid.rows[0]["user"]["rawId"], "u2")
        self.assertEqual(by_uid.rows[0]["user"]["displayName"], "U2")
        self.assertEqual(by_email.rows[0]["user"]["rawId"], "u1")
        self.assertEqual(by_phone.rows[0]["user"]["phoneNumber"], "+15550002")
        self.assertEqual(len(fake.deleted), 3)

    def test_auth_create_and_update(self):
        fake = _FakeFirebase()
        created = self._run(
            fake,
            {
                "service": "auth",
                "operation": "create",
                "options": {"object": {"uid": "u9", "email": "new@example.com", "password": "pw", "displayName": "New"}},
            },
        )
        updated = self._run(
            fake,
            {
                "service": "auth",
                "operation": "update",
                "options": {"uid": "u9", "object": {"uid": "ignored", "displayName": "Renamed", "disabled": True}},
            },
        )

        self.assertEqual(created.rows[0]["user"]["rawId"], "u9")
        self.assertEqual(created.rows[0]["user"]["email"], "new@example.com")
        self.assertEqual(updated.rows[0]["user"]["rawId"], "u9")
        self.assertEqual(updated.rows[0]["user"]["displayName"], "Renamed")
        self.assertEqual(
            fake.auth_calls,
            [
                (
                    "create",
                    {
                        "email_verified": False,
                        "disabled": False,
                        "email": "new@example.com",
                        "password": "pw",
                        "display_name": "New",
                        "uid": "u9",
                    },
                ),
                ("update", "u9", {"email_verified": False, "disabled": True, "display_name": "Renamed"}),
            ],
        )

    def test_update_doc_merges_and_needs_id(self):
        from actionkit.core.errors import InvalidActionError

        fake = _FakeFirebase()
        result = self._run(
            fake,
            {"service": "firestore", "operation": "update_doc", "options": {"collection": "items", "id": "d1", "value": {"n": 3}}},
        )
        self.assertTrue(result.success)
        self.assertEqual(fake.query_calls, [("set", "items/d1", {"n": 3}, True)])

        with self.assertRaises(InvalidActionError):
            self._run(fake, {"service": "firestore", "operation": "update_doc", "options": {"collection": "items", "value": {}}})
        self.assertEqual(fake.closed_clients, 2)

    def test_get_colls_root_and_parent(self):
        fake = _FakeFirebase()
        root = self._run(fake, {"service": "firestore", "operation": "get_colls", "options": {}})
        nested = self._run(fake, {"service": "firestore", "operation": "get_colls", "options": {"parent": "/users/u1"}})

        self.assertEqual(root.rows, [{"collections": ["users", "items"]}])
        self.assertEqual(nested.rows, [{"collections": ["orders", "notes"]}])
        self.assertEqual(fake.query_calls, [("collections", "users/u1")])

    def test_unknown_where_operator_is_invalid_action(self):
        from actionkit.core.errors import InvalidActionError

        fake = _FakeFirebase(docs=[{"n": 1}])
        with self.assertRaises(InvalidActionError) as ctx:
            self._run(
                fake,
                {"service": "firestore", "operation": "query_fs", "options": {"collection": "items", "where": [["n", "bad", 1]]}},
            )
        self.assertIn("'bad'", ctx.exception.message)
        self.assertEqual(fake.query_calls, [])
        self.assertEqual(len(fake.deleted), 1)

    def test_where_operator_spelling_is_translated(self):
        fake = _FakeFirebase(docs=[])
        self._run(
            fake,
            {
                "service": "firestore",
                "operation": "query_fs",
                "options": {"collection": "items", "where": [["tags", "array-contains", "x"], ["n", "not-in", [1]]]},
            },
        )
        self.assertEqual(
            fake.query_calls,
            [("where", ("tags", "array_contains", "x")), ("where", ("n", "not-in", [1]))],
        )

    def test_action_validation(self):
        from actionkit.connectors import FirebaseConnector
        from actionkit.core.errors import InvalidActionError, InvalidResourceError

        connector = FirebaseConnector()
        with self.assertRaises(InvalidActionError):
            connector.validate_action_options({"service": "auth", "operation": "query_fs", "options": {}})
        with self.assertRaises(InvalidActionError):
            connector.validate_action_options({"service": "firestore", "operation": "get_doc", "options": {"collection": "c"}})
        with self.assertRaises(InvalidResourceError):
            connector.validate_resource_options(dict(RESOURCE, privateKey="not json"))
        self.assertTrue(
            connector.validate_action_options({"service": "database", "operation": "query", "options": {"ref": "/a"}}).valid
        )

    def test_where_clauses(self):
        from actionkit.connectors.firebase import where_clauses

        self.assertEqual(
            where_clauses([["a", "==", 1], {"field": "b", "condition": "<", "value": 2}, "x", ["c", None, 3]]),
            [("a", "==", 1), ("b", "<", 2)],
        )


if __name__ == "__main__":
    unittest.main()
