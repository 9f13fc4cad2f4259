from __future__ import annotations

import contextlib
import json
from typing import Any, Dict, Iterator, List, Literal, Optional
from urllib.parse import quote_plus

from pydantic import Field, ValidationError, model_validator

from ..core.errors import ConnectFailedError, InvalidActionError, InvalidResourceError, OperationFailedError
from ..core.options import NonEmptyStr, OptionsModel
from ..core.results import ConnectionResult, MetaInfoResult, RuntimeResult
from .base import Connector, require_module
from .registry import register_connector
from .sql.tls import pem_file

CONNECTION_SCHEMES = {"standard": "mongodb", "mongodb+srv": "mongodb+srv"}
DEFAULT_DATABASE = "test"

ACTION_TYPES = (
    "aggregate",
    "bulkWrite",
    "count",
    "deleteMany",
    "deleteOne",
    "distinct",
    "find",
    "findOne",
    "findOneAndUpdate",
    "insertOne",
    "insertMany",
    "listCollections",
    "updateMany",
    "updateOne",
    "command",
)


class MongoSSL(OptionsModel):
    open: bool = False
    client: str = ""
    ca: str = ""


class GUIConfig(OptionsModel):
    host: NonEmptyStr
    connection_format: Literal["standard", "mongodb+srv"] = "standard"
    port: str = ""
    database_name: str = ""
    database_username: str = ""
    database_password: str = ""

    @model_validator(mode="after")
    def _port_for_standard(self):
        if self.connection_format == "standard" and not self.port:
            raise ValueError("port is required for the standard connection format")
        return self


class URIConfig(OptionsModel):
    uri: NonEmptyStr


class MongoResource(OptionsModel):
    config_type: Literal["gui", "uri"]
    config_content: Dict[str, Any]
    ssl: MongoSSL = Field(default_factory=MongoSSL)

    @model_validator(mode="after")
    def _content_matches_type(self):
        model = GUIConfig if self.config_type == "gui" else URIConfig
        try:
            model.model_validate(self.config_content)
        except ValidationError as exc:
            raise ValueError(f"configContent: {exc.errors()[0]['msg']}") from exc
        return self


class MongoAction(OptionsModel):
    action_type: Literal[
        "aggregate",
        "bulkWrite",
        "count",
        "deleteMany",
        "deleteOne",
        "distinct",
        "find",
        "findOne",
        "findOneAndUpdate",
        "insertOne",
        "insertMany",
        "listCollections",
        "updateMany",
        "updateOne",
        "command",
    ]
    collection: str = ""
    type_content: Dict[str, Any]

    @model_validator(mode="after")
    def _collection_for_collection_ops(self):
        if self.action_type not in ("listCollections", "command") and not self.collection:
            raise ValueError(f"collection is required for {self.action_type}")
        return self


def build_uri(res: MongoResource) -> str:
    if res.config_type == "uri":
        return URIConfig.model_validate(res.config_content).uri
    gui = GUIConfig.model_validate(res.config_content)
    scheme = CONNECTION_SCHEMES[gui.connection_format]
    if gui.database_username and gui.database_password:
        uri = f"{scheme}://{quote_plus(gui.database_username)}:{quote_plus(gui.database_password)}@{gui.host}"
    else:
        uri = f"{scheme}://{gui.host}"
    if gui.connection_format == "standard":
        uri += ":" + gui.port
    if gui.database_name:
        uri += "/" + gui.database_name
        if gui.database_name != "admin":
            uri += "?authSource=admin"
    return uri


def split_client_pem(text: str) -> str:
    """Normalise a concatenated client certificate/key pair into one PEM blob."""
    marker = "-----\n-----"
    idx = text.find(marker)
    if idx <= 0:
        raise InvalidResourceError("format MongoDB TLS Client Key Pair failed")
    first, second = text[: idx + 6], text[idx + 6 :]
    cert, key = (first, second) if "CERTIFICATE" in first else (second, first)
    return cert.rstrip("\n") + "\n" + key


def parse_ejson(text: Any, default: Any) -> Any:
    """Decode MongoDB extended JSON; blank strings and empty literals give ``default``."""
    if text is None or (isinstance(text, str) and text.strip() in ("", "{}", "[]")):
        return default
    if not isinstance(text, str):
        return text
    json_util = require_module("bson.json_util", "mongodb")
    try:
        return json_util.loads(text)
    except (ValueError, TypeError) as exc:
        raise InvalidActionError(f"mongodb: invalid extended JSON: {exc}") from exc


def parse_options(text: Any) -> Dict[str, Any]:
    if isinstance(text, dict):
        return text
    if not text:
        return {}
    try:
        parsed = json.loads(text)
    except ValueError as exc:
        raise InvalidActionError(f"mongodb: invalid options: {exc}") from exc
    if not isinstance(parsed, dict):
        raise InvalidActionError("mongodb: options must be a JSON object")
    return parsed


def to_plain(value: Any) -> Any:
    """Render BSON values (ObjectId, dates, Decimal128) as relaxed extended JSON."""
    json_util = require_module("bson.json_util", "mongodb")
    return json.loads(json_util.dumps(value, json_options=json_util.RELAXED_JSON_OPTIONS))


def _parse_int(value: Any, name: str) -> Optional[int]:
    if value in (None, ""):
        return None
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise InvalidActionError(f"mongodb: {name} must be an integer") from exc


def _pick(opts: Dict[str, Any], mapping: Dict[str, str]) -> Dict[str, Any]:
    return {kw: opts[key] for key, kw in mapping.items() if key in opts}


def write_result(result: Any) -> Dict[str, Any]:
    """Flatten a pymongo write result into a mapping."""
    out: Dict[str, Any] = {}
    for attr, key in (
        ("inserted_id", "InsertedID"),
        ("inserted_ids", "InsertedIDs"),
        ("inserted_count", "InsertedCount"),
        ("matched_count", "MatchedCount"),
        ("modified_count", "ModifiedCount"),
        ("deleted_count", "DeletedCount"),
        ("upserted_count", "UpsertedCount"),
        ("upserted_id", "UpsertedID"),
        ("upserted_ids", "UpsertedIDs"),
    ):
        if hasattr(result, attr):
            out[key] = getattr(result, attr)
    return out


@register_connector("mongodb")
class MongoDBConnector(Connector):
    resource_model = MongoResource
    action_model = MongoAction

    @contextlib.contextmanager
    def _client(self, res: MongoResource) -> Iterator[Any]:
        pymongo = require_module("pymongo", "mongodb")
        uri = build_uri(res)
        kwargs: Dict[str, Any] = {"serverSelectionTimeoutMS": self.config.sql.connect_timeout_s * 1000}
        with contextlib.ExitStack() as stack:
            if res.ssl.open and res.ssl.ca:
                kwargs["tls"] = True
                kwargs["tlsCAFile"] = pem_file(stack, res.ssl.ca)
                kwargs["authMechanism"] = "MONGODB-X509"
                if res.ssl.client:
                    kwargs["tlsCertificateKeyFile"] = pem_file(stack, split_client_pem(res.ssl.client))
            try:
                client = pymongo.MongoClient(uri, **kwargs)
            except pymongo.errors.PyMongoError as exc:
                raise ConnectFailedError(f"mongodb: {exc}") from exc
            self.log.handle_opened("mongodb", config_type=res.config_type)
            try:
                yield client
            finally:
                client.close()
                self.log.handle_released("mongodb", config_type=res.config_type)

    def _guard(self, fn, *args: Any, **kwargs: Any) -> Any:
        errors = require_module("pymongo.errors", "mongodb")
        try:
            return fn(*args, **kwargs)
        except errors.ConnectionFailure as exc:
            raise ConnectFailedError(f"mongodb: {exc}") from exc
        except errors.PyMongoError as exc:
            raise OperationFailedError(f"mongodb: {exc}") from exc

    def test_connection(self, options) -> ConnectionResult:
        res = self.decode_resource(options)
        with self._client(res) as client:
            self._guard(client.admin.command, "ping")
        return ConnectionResult(success=True)

    def get_meta_info(self, options) -> MetaInfoResult:
        res = self.decode_resource(options)
        with self._client(res) as client:
            db = client.get_default_database(default=DEFAULT_DATABASE)
            names = self._guard(db.list_collection_names)
        return MetaInfoResult(success=True, schema={"collections": sorted(names)})

    def run(self, resource_options, action_options) -> RuntimeResult:
        res: MongoResource = self.decode_resource(resource_options)
        action: MongoAction = self.decode_action(action_options)
        handler = getattr(self, "_op_" + action.action_type.lower())
        with self._client(res) as client:
            db = client.get_default_database(default=DEFAULT_DATABASE)
            result = self._guard(handler, db, action.collection, action.type_content)
        return RuntimeResult(success=True, rows=[{"result": to_plain(result)}])

    def _op_aggregate(self, db: Any, coll: str, content: Dict[str, Any]) -> Any:
        pipeline = parse_ejson(content.get("aggregation"), [])
        opts = _pick(parse_options(content.get("options")), {"collation": "collation", "hint": "hint", "batchSize": "batchSize"})
        return list(db[coll].aggregate(pipeline, **opts))

    def _op_bulkwrite(self, db: Any, coll: str, content: Dict[str, Any]) -> Any:
        pymongo = require_module("pymongo", "mongodb")
        requests: List[Any] = []
        for op in parse_ejson(content.get("operations"), []):
            if not isinstance(op, dict) or not op:
                continue
            name, body = next(iter(op.items()))
            body = body or {}
            if name == "insertOne":
                requests.append(pymongo.InsertOne(body.get("document", {})))
            elif name == "updateOne":
                requests.append(pymongo.UpdateOne(body.get("filter", {}), body.get("update", {})))
            elif name == "updateMany":
                requests.append(pymongo.UpdateMany(body.get("filter", {}), body.get("update", {})))
            elif name == "deleteOne":
                requests.append(pymongo.DeleteOne(body.get("filter", {})))
            elif name == "deleteMany":
                requests.append(pymongo.DeleteMany(body.get("filter", {})))
            elif name == "replaceOne":
                requests.append(pymongo.ReplaceOne(body.get("filter", {}), body.get("replacement", {})))
        if not requests:
            raise InvalidActionError("mongodb: bulkWrite needs at least one operation")
        return write_result(db[coll].bulk_write(requests))

    def _op_count(self, db: Any, coll: str, content: Dict[str, Any]) -> Any:
        return db[coll].count_documents(parse_ejson(content.get("query"), {}))

    def _op_deletemany(self, db: Any, coll: str, content: Dict[str, Any]) -> Any:
        return write_result(db[coll].delete_many(parse_ejson(content.get("filter"), {})))

    def _op_deleteone(self, db: Any, coll: str, content: Dict[str, Any]) -> Any:
        return write_result(db[coll].delete_one(parse_ejson(content.get("filter"), {})))

    def _op_distinct(self, db: Any, coll: str, content: Dict[str, Any]) -> Any:
        field = content.get("field") or ""
        if not field:
            raise InvalidActionError("mongodb: distinct requires a field")
        opts = _pick(parse_options(content.get("options")), {"collation": "collation"})
        return db[coll].distinct(field, parse_ejson(content.get("query"), {}), **opts)

    def _op_find(self, db: Any, coll: str, content: Dict[str, Any]) -> Any:
        kwargs: Dict[str, Any] = {}
        projection = parse_ejson(content.get("projection"), None)
        if projection:
            kwargs["projection"] = projection
        sort = parse_ejson(content.get("sortBy"), None)
        if sort:
            kwargs["sort"] = list(sort.items())
        limit = _parse_int(content.get("limit"), "limit")
        if limit is not None:
            kwargs["limit"] = limit
        skip = _parse_int(content.get("skip"), "skip")
        if skip is not None:
            kwargs["skip"] = skip
        return list(db[coll].find(parse_ejson(content.get("query"), {}), **kwargs))

    def _op_findone(self, db: Any, coll: str, content: Dict[str, Any]) -> Any:
        kwargs: Dict[str, Any] = {}
        projection = parse_ejson(content.get("projection"), None)
        if projection:
            kwargs["projection"] = projection
        skip = _parse_int(content.get("skip"), "skip")
        if skip is not None:
            kwargs["skip"] = skip
        doc = db[coll].find_one(parse_ejson(content.get("query"), {}), **kwargs)
        if doc is None:
            raise OperationFailedError("mongodb: no documents in result")
        return doc

    def _op_findoneandupdate(self, db: Any, coll: str, content: Dict[str, Any]) -> Any:
        pymongo = require_module("pymongo", "mongodb")
        opts = parse_options(content.get("options"))
        kwargs = _pick(
            opts,
            {
                "collation": "collation",
                "hint": "hint",
                "arrayFilters": "array_filters",
                "upsert": "upsert",
                "projection": "projection",
                "sort": "sort",
            },
        )
        if isinstance(kwargs.get("sort"), dict):
            kwargs["sort"] = list(kwargs["sort"].items())
        if opts.get("returnDocument") == "after":
            kwargs["return_document"] = pymongo.ReturnDocument.AFTER
        elif opts.get("returnDocument") == "before":
            kwargs["return_document"] = pymongo.ReturnDocument.BEFORE
        doc = db[coll].find_one_and_update(
            parse_ejson(content.get("filter"), {}),
            parse_ejson(content.get("update"), {}),
            **kwargs,
        )
        if doc is None:
            raise OperationFailedError("mongodb: no documents in result")
        return doc

    def _op_insertone(self, db: Any, coll: str, content: Dict[str, Any]) -> Any:
        return write_result(db[coll].insert_one(parse_ejson(content.get("document"), {})))

    def _op_insertmany(self, db: Any, coll: str, content: Dict[str, Any]) -> Any:
        docs = parse_ejson(content.get("document"), [])
        if not isinstance(docs, list) or not docs:
            raise InvalidActionError("mongodb: insertMany needs a non-empty document list")
        return write_result(db[coll].insert_many(docs))

    def _op_listcollections(self, db: Any, coll: str, content: Dict[str, Any]) -> Any:
        return list(db.list_collections(filter=parse_ejson(content.get("query"), {})))

    def _op_updatemany(self, db: Any, coll: str, content: Dict[str, Any]) -> Any:
        kwargs = _update_kwargs(parse_options(content.get("options")))
        return write_result(
            db[coll].update_many(parse_ejson(content.get("filter"), {}), parse_ejson(content.get("update"), {}), **kwargs)
        )

    def _op_updateone(self, db: Any, coll: str, content: Dict[str, Any]) -> Any:
        kwargs = _update_kwargs(parse_options(content.get("options")))
        return write_result(
            db[coll].update_one(parse_ejson(content.get("filter"), {}), parse_ejson(content.get("update"), {}), **kwargs)
        )

    def _op_command(self, db: Any, coll: str, content: Dict[str, Any]) -> Any:
        doc = parse_ejson(content.get("document"), None)
        if not doc:
            raise InvalidActionError("mongodb: command document is empty")
        return db.command(doc)


def _update_kwargs(opts: Dict[str, Any]) -> Dict[str, Any]:
    return _pick(
        opts,
        {"collation": "collation", "hint": "hint", "arrayFilters": "array_filters", "upsert": "upsert"},
    )


__all__ = ["MongoDBConnector", "ACTION_TYPES", "build_uri", "parse_ejson", "write_result"]
