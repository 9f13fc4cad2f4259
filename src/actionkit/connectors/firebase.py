"""Firebase connector: Auth user management, Realtime Database and Firestore.

Each call initialises a uniquely named ``firebase_admin`` app from the
service-account blob and deletes it before returning.
"""

from __future__ import annotations

import contextlib
import json
import uuid
from typing import Any, Dict, Iterator, List, Literal, Optional, Sequence

from pydantic import Field, model_validator

from ..core.errors import ConnectFailedError, InvalidActionError, InvalidResourceError, OperationFailedError
from ..core.options import NonEmptyStr, OptionsModel, decode_action
from ..core.results import ConnectionResult, MetaInfoResult, Row, RuntimeResult
from .base import Connector, require_module
from .registry import register_connector

DEFAULT_PAGE_SIZE = 1000

OPERATIONS: Dict[str, Sequence[str]] = {
    "auth": ("uid", "email", "phone", "create", "update", "delete", "list"),
    "database": ("query", "set", "update", "append"),
    "firestore": ("query_fs", "insert_doc", "update_doc", "get_doc", "delete_doc", "get_colls", "query_coll"),
}

# where operator -> google-cloud-firestore operator string
WHERE_OPERATORS: Dict[str, str] = {
    "<": "<",
    "<=": "<=",
    "==": "==",
    "!=": "!=",
    ">=": ">=",
    ">": ">",
    "in": "in",
    "not-in": "not-in",
    "array-contains": "array_contains",
    "array-contains-any": "array_contains_any",
    "array_contains": "array_contains",
    "array_contains_any": "array_contains_any",
}


class FirebaseResource(OptionsModel):
    database_url: NonEmptyStr = Field(alias="databaseURL")
    project_id: NonEmptyStr = Field(alias="projectID")
    private_key: Any

    @model_validator(mode="after")
    def _private_key_is_account(self):
        service_account(self.private_key)
        return self


class FirebaseAction(OptionsModel):
    service: Literal["firestore", "database", "auth"]
    operation: NonEmptyStr
    options: Dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _operation_for_service(self):
        if self.operation not in OPERATIONS[self.service]:
            raise ValueError(f"unsupported {self.service} operation {self.operation!r}")
        return self


class UserObject(OptionsModel):
    uid: str = ""
    email: str = ""
    email_verified: bool = False
    phone_number: str = ""
    password: str = ""
    display_name: str = ""
    photo_url: str = Field(default="", alias="photoURL")
    disabled: bool = False

    def as_kwargs(self, *, include_uid: bool = True) -> Dict[str, Any]:
        out: Dict[str, Any] = {"email_verified": self.email_verified, "disabled": self.disabled}
        for name in ("email", "phone_number", "password", "display_name", "photo_url"):
            value = getattr(self, name)
            if value:
                out[name] = value
        if include_uid and self.uid:
            out["uid"] = self.uid
        return out


class AuthFilter(OptionsModel):
    filter: NonEmptyStr


class AuthCreate(OptionsModel):
    object: UserObject


class AuthUpdate(OptionsModel):
    uid: NonEmptyStr
    object: UserObject


class AuthList(OptionsModel):
    number: int = 0
    token: str = ""


class DBOptions(OptionsModel):
    ref: str = ""
    object: Dict[str, Any] = Field(default_factory=dict)


class Cursor(OptionsModel):
    trigger: bool = False
    value: Any = None


class FSQuery(OptionsModel):
    collection: NonEmptyStr
    where: List[Any] = Field(default_factory=list)
    limit: int = 0
    order_by: str = ""
    order_direction: Literal["asc", "desc", ""] = "asc"
    start_at: Cursor = Field(default_factory=Cursor)
    end_at: Cursor = Field(default_factory=Cursor)


class FSDocValue(OptionsModel):
    collection: NonEmptyStr
    id: str = ""
    value: Dict[str, Any]


class FSDocID(OptionsModel):
    collection: NonEmptyStr
    id: NonEmptyStr


class FSGetColls(OptionsModel):
    parent: str = ""


def service_account(private_key: Any) -> Dict[str, Any]:
    """Decode the service-account blob, accepting a JSON string or a mapping."""
    if isinstance(private_key, dict):
        return private_key
    if isinstance(private_key, str) and private_key.strip():
        try:
            parsed = json.loads(private_key)
        except ValueError as exc:
            raise ValueError("privateKey is not a JSON service account") from exc
        if isinstance(parsed, dict):
            return parsed
    raise ValueError("privateKey must be a JSON service account object")


def where_clauses(items: Sequence[Any]) -> List[tuple]:
    """Normalise ``where`` entries into ``(field, op, value)`` triples, skipping malformed ones."""
    out: List[tuple] = []
    for item in items or []:
        if isinstance(item, dict):
            field, op, value = item.get("field"), item.get("condition"), item.get("value")
        elif isinstance(item, (list, tuple)) and len(item) == 3:
            field, op, value = item
        else:
            continue
        if not field or not op:
            continue
        out.append((str(field), str(op), value))
    return out


def user_row(user: Any) -> Optional[Dict[str, Any]]:
    if user is None:
        return None
    meta = getattr(user, "user_metadata", None)
    return {
        "rawId": getattr(user, "uid", None),
        "displayName": getattr(user, "display_name", None),
        "email": getattr(user, "email", None),
        "phoneNumber": getattr(user, "phone_number", None),
        "photoUrl": getattr(user, "photo_url", None),
        "providerId": getattr(user, "provider_id", None),
        "customClaims": getattr(user, "custom_claims", None),
        "disabled": bool(getattr(user, "disabled", False)),
        "emailVerified": bool(getattr(user, "email_verified", False)),
        "tenantId": getattr(user, "tenant_id", None),
        "tokensValidAfterMillis": getattr(user, "tokens_valid_after_timestamp", None),
        "userMetadata": None
        if meta is None
        else {
            "creationTimestamp": getattr(meta, "creation_timestamp", None),
            "lastLogInTimestamp": getattr(meta, "last_sign_in_timestamp", None),
            "lastRefreshTimestamp": getattr(meta, "last_refresh_timestamp", None),
        },
    }


@register_connector("firebase")
class FirebaseConnector(Connector):
    resource_model = FirebaseResource
    action_model = FirebaseAction

    @contextlib.contextmanager
    def _app(self, res: FirebaseResource) -> Iterator[Any]:
        firebase_admin = require_module("firebase_admin", "firebase")
        credentials = require_module("firebase_admin.credentials", "firebase")
        try:
            cred = credentials.Certificate(service_account(res.private_key))
        except ValueError as exc:
            raise InvalidResourceError(f"firebase: {exc}") from exc
        name = f"actionkit-{uuid.uuid4().hex}"
        try:
            app = firebase_admin.initialize_app(
                cred,
                {"databaseURL": res.database_url, "projectId": res.project_id},
                name=name,
            )
        except ValueError as exc:
            raise ConnectFailedError(f"firebase: {exc}") from exc
        self.log.handle_opened("firebase", project=res.project_id)
        try:
            yield app
        finally:
            firebase_admin.delete_app(app)
            self.log.handle_released("firebase", project=res.project_id)

    @contextlib.contextmanager
    def _firestore(self, app: Any) -> Iterator[Any]:
        firestore = require_module("firebase_admin.firestore", "firebase")
        try:
            client = firestore.client(app=app)
        except ValueError as exc:
            raise ConnectFailedError(f"firebase: {exc}") from exc
        try:
            yield client
        finally:
            client.close()

    def _guard(self, fn, *args: Any, **kwargs: Any) -> Any:
        fb_exc = require_module("firebase_admin.exceptions", "firebase")
        try:
            return fn(*args, **kwargs)
        except ValueError as exc:
            raise InvalidActionError(f"firebase: {exc}") from exc
        except fb_exc.FirebaseError as exc:
            raise OperationFailedError(f"firebase: {exc}") from exc

    def _fs_guard(self, fn, *args: Any, **kwargs: Any) -> Any:
        api_exc = require_module("google.api_core.exceptions", "firebase")
        try:
            return self._guard(fn, *args, **kwargs)
        except api_exc.GoogleAPIError as exc:
            raise OperationFailedError(f"firebase: {exc}") from exc

    def _collection_ids(self, client: Any, parent: str = "") -> List[str]:
        if parent:
            colls = client.document(parent.lstrip("/")).collections()
        else:
            colls = client.collections()
        return [c.id for c in colls]

    def test_connection(self, options) -> ConnectionResult:
        res = self.decode_resource(options)
        with self._app(res) as app, self._firestore(app) as client:
            self._fs_guard(lambda: next(iter(client.collections()), None))
        return ConnectionResult(success=True)

    def get_meta_info(self, options) -> MetaInfoResult:
        res = self.decode_resource(options)
        with self._app(res) as app, self._firestore(app) as client:
            names = self._fs_guard(self._collection_ids, client)
        return MetaInfoResult(success=True, schema={"collections": names})

    def validate_action_options(self, options):
        action: FirebaseAction = self.decode_action(options)
        model = self._options_model(action)
        if model is not None:
            decode_action(model, action.options)
        return super().validate_action_options(options)

    @staticmethod
    def _options_model(action: FirebaseAction):
        if action.service == "auth":
            return {
                "create": AuthCreate,
                "update": AuthUpdate,
                "list": AuthList,
            }.get(action.operation, AuthFilter)
        if action.service == "database":
            return DBOptions
        return {
            "query_fs": FSQuery,
            "query_coll": FSQuery,
            "insert_doc": FSDocValue,
            "update_doc": FSDocValue,
            "get_doc": FSDocID,
            "delete_doc": FSDocID,
            "get_colls": FSGetColls,
        }[action.operation]

    def run(self, resource_options, action_options) -> RuntimeResult:
        res: FirebaseResource = self.decode_resource(resource_options)
        action: FirebaseAction = self.decode_action(action_options)
        opts = decode_action(self._options_model(action), action.options)
        with self._app(res) as app:
            if action.service == "auth":
                return self._auth(app, action.operation, opts)
            if action.service == "database":
                return self._database(app, action.operation, opts)
            with self._firestore(app) as client:
                return self._firestore_op(client, action.operation, opts)

    def _auth(self, app: Any, op: str, opts: Any) -> RuntimeResult:
        auth = require_module("firebase_admin.auth", "firebase")
        if op == "list":
            page = self._guard(
                auth.list_users,
                page_token=opts.token or None,
                max_results=opts.number if opts.number > 0 else DEFAULT_PAGE_SIZE,
                app=app,
            )
            users = [user_row(u) for u in page.users]
            return RuntimeResult(success=True, rows=[{"users": users}, {"nextPageToken": page.next_page_token or ""}])
        if op == "delete":
            self._guard(auth.delete_user, opts.filter, app=app)
            return RuntimeResult(success=True)
        if op == "create":
            user = self._guard(auth.create_user, app=app, **opts.object.as_kwargs())
        elif op == "update":
            user = self._guard(auth.update_user, opts.uid, app=app, **opts.object.as_kwargs(include_uid=False))
        else:
            lookup = {"uid": auth.get_user, "email": auth.get_user_by_email, "phone": auth.get_user_by_phone_number}[op]
            user = self._guard(lookup, opts.filter, app=app)
        return RuntimeResult(success=True, rows=[{"user": user_row(user)}])

    def _database(self, app: Any, op: str, opts: DBOptions) -> RuntimeResult:
        db = require_module("firebase_admin.db", "firebase")
        ref = db.reference(opts.ref or "/", app=app)
        if op == "query":
            return RuntimeResult(success=True, rows=[{"result": self._guard(ref.get)}])
        if op == "set":
            self._guard(ref.set, opts.object)
        elif op == "update":
            self._guard(ref.update, opts.object)
        else:
            self._guard(ref.push, opts.object)
        return RuntimeResult(success=True)

    def _build_query(self, query: Any, opts: FSQuery) -> Any:
        firestore = require_module("firebase_admin.firestore", "firebase")
        for field, op, value in where_clauses(opts.where):
            operator = WHERE_OPERATORS.get(op)
            if operator is None:
                raise InvalidActionError(f"firestore: unsupported where operator {op!r}")
            try:
                query = query.where(filter=firestore.FieldFilter(field, operator, value))
            except ValueError as exc:
                raise InvalidActionError(f"firestore: invalid where clause on {field!r}: {exc}") from exc
        if opts.limit > 0:
            query = query.limit(opts.limit)
        if opts.order_by:
            direction = firestore.Query.DESCENDING if opts.order_direction == "desc" else firestore.Query.ASCENDING
            query = query.order_by(opts.order_by, direction=direction)
        if opts.start_at.trigger:
            query = query.start_at([opts.start_at.value])
        if opts.end_at.trigger:
            query = query.end_at([opts.end_at.value])
        return query

    def _firestore_op(self, client: Any, op: str, opts: Any) -> RuntimeResult:
        if op in ("query_fs", "query_coll"):
            base = client.collection(opts.collection) if op == "query_fs" else client.collection_group(opts.collection)
            query = self._build_query(base, opts)
            rows: List[Row] = self._fs_guard(lambda: [doc.to_dict() or {} for doc in query.stream()])
            return RuntimeResult(success=True, rows=rows)
        if op == "get_colls":
            return RuntimeResult(success=True, rows=[{"collections": self._fs_guard(self._collection_ids, client, opts.parent)}])
        coll = client.collection(opts.collection)
        if op == "insert_doc":
            if opts.id:
                self._fs_guard(coll.document(opts.id).set, opts.value)
            else:
                self._fs_guard(coll.add, opts.value)
            return RuntimeResult(success=True)
        if op == "update_doc":
            if not opts.id:
                raise InvalidActionError("document id required")
            self._fs_guard(coll.document(opts.id).set, opts.value, merge=True)
            return RuntimeResult(success=True)
        if op == "get_doc":
            snap = self._fs_guard(coll.document(opts.id).get)
            if not snap.exists:
                raise OperationFailedError(f"firebase: document {opts.collection}/{opts.id} not found")
            return RuntimeResult(success=True, rows=[snap.to_dict() or {}])
        self._fs_guard(coll.document(opts.id).delete)
        return RuntimeResult(success=True)


__all__ = ["FirebaseConnector", "OPERATIONS", "where_clauses", "user_row", "service_account"]
