from __future__ import annotations

import base64
import binascii
import contextlib
import datetime as dt
from typing import Any, Dict, Iterator, List, Literal, Optional
from urllib.parse import unquote_to_bytes, urlparse

from pydantic import Field, field_validator, model_validator

from ..core.errors import (
    ConnectFailedError,
    InvalidActionError,
    InvalidResourceError,
    OperationFailedError,
    OversizeObjectError,
)
from ..core.options import NonEmptyStr, OptionsModel, decode_action
from ..core.results import ConnectionResult, MetaInfoResult, RuntimeResult
from .base import Connector, require_module
from .registry import register_connector

MIB = 1024 * 1024
DEFAULT_MAX_KEYS = 100
EXPIRY_FORMAT = "%Y.%m.%d %H:%M:%S.000 UTC"

ACLS = (
    "private",
    "public-read",
    "public-read-write",
    "authenticated-read",
    "aws-exec-read",
    "bucket-owner-read",
    "bucket-owner-full-control",
)

Acl = Literal[
    "private",
    "public-read",
    "public-read-write",
    "authenticated-read",
    "aws-exec-read",
    "bucket-owner-read",
    "bucket-owner-full-control",
]


class S3Resource(OptionsModel):
    bucket_name: str = ""
    region: NonEmptyStr
    acl: Optional[Acl] = None
    endpoint: bool = False
    base_url: str = Field(default="", alias="baseURL")
    access_key_id: NonEmptyStr = Field(alias="accessKeyID")
    secret_access_key: NonEmptyStr

    @field_validator("acl", mode="before")
    @classmethod
    def _blank_acl(cls, v: Any) -> Any:
        return v or None

    @model_validator(mode="after")
    def _base_url_for_endpoint(self):
        if self.endpoint:
            if not self.base_url:
                raise ValueError("baseURL is required when endpoint is set")
            parsed = urlparse(self.base_url)
            if parsed.scheme not in ("http", "https") or not parsed.netloc:
                raise ValueError("baseURL must be an http or https URL")
        return self


class S3Action(OptionsModel):
    commands: Literal["list", "read", "download", "delete", "batchDelete", "upload", "batchUpload"]
    command_args: Dict[str, Any]


class ListArgs(OptionsModel):
    bucket_name: str = ""
    prefix: str = ""
    delimiter: str = ""
    signed_url: bool = Field(default=False, alias="signedURL")
    expiry: int = 0
    max_keys: int = 0

    @model_validator(mode="after")
    def _expiry_for_signed_url(self):
        if self.signed_url and self.expiry <= 0:
            raise ValueError("expiry is required when signedURL is set")
        return self


class ObjectArgs(OptionsModel):
    bucket_name: str = ""
    object_key: NonEmptyStr


class BatchDeleteArgs(OptionsModel):
    bucket_name: str = ""
    object_key_list: List[NonEmptyStr] = Field(min_length=1)


class UploadArgs(OptionsModel):
    bucket_name: str = ""
    content_type: str = ""
    object_key: NonEmptyStr
    object_data: str = ""


class BatchUploadArgs(OptionsModel):
    bucket_name: str = ""
    content_type: str = ""
    object_key_list: List[NonEmptyStr] = Field(min_length=1)
    object_data_list: List[str] = Field(default_factory=list)


COMMAND_ARGS = {
    "list": ListArgs,
    "read": ObjectArgs,
    "download": ObjectArgs,
    "delete": ObjectArgs,
    "batchDelete": BatchDeleteArgs,
    "upload": UploadArgs,
    "batchUpload": BatchUploadArgs,
}


def decode_upload_payload(data: str) -> bytes:
    """Base64-decode an upload payload, then URL-unescape it (``+`` is a space)."""
    try:
        raw = base64.b64decode(data, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise InvalidActionError("object data is not valid base64") from exc
    return unquote_to_bytes(raw.replace(b"+", b" "))


@register_connector("s3")
class S3Connector(Connector):
    resource_model = S3Resource
    action_model = S3Action

    @property
    def size_limit(self) -> int:
        return int(self.config.s3.object_size_limit_mib * MIB)

    @contextlib.contextmanager
    def _s3(self, res: S3Resource) -> Iterator[Any]:
        boto3 = require_module("boto3", "aws")
        kwargs: Dict[str, Any] = {
            "region_name": res.region,
            "aws_access_key_id": res.access_key_id,
            "aws_secret_access_key": res.secret_access_key,
        }
        if res.endpoint:
            kwargs["endpoint_url"] = res.base_url
        botocore_exc = require_module("botocore.exceptions", "aws")
        try:
            client = boto3.client("s3", **kwargs)
        except (ValueError, botocore_exc.BotoCoreError) as exc:
            raise InvalidResourceError(f"s3 client: {exc}") from exc
        self.log.handle_opened("s3", region=res.region)
        try:
            yield client
        finally:
            client.close()
            self.log.handle_released("s3", region=res.region)

    def _call(self, what: str, fn, **kwargs: Any) -> Any:
        botocore_exc = require_module("botocore.exceptions", "aws")
        try:
            return fn(**kwargs)
        except botocore_exc.EndpointConnectionError as exc:
            raise ConnectFailedError(f"s3 {what}: {exc}") from exc
        except (botocore_exc.BotoCoreError, botocore_exc.ClientError) as exc:
            raise OperationFailedError(f"s3 {what}: {exc}") from exc

    def test_connection(self, options) -> ConnectionResult:
        res = self.decode_resource(options)
        with self._s3(res) as client:
            self._call("list buckets", client.list_buckets)
        return ConnectionResult(success=True)

    def get_meta_info(self, options) -> MetaInfoResult:
        res = self.decode_resource(options)
        with self._s3(res) as client:
            resp = self._call("list buckets", client.list_buckets)
        buckets = [b.get("Name") for b in resp.get("Buckets", []) or []]
        return MetaInfoResult(success=True, schema={"buckets": buckets})

    def validate_action_options(self, options):
        action: S3Action = self.decode_action(options)
        decode_action(COMMAND_ARGS[action.commands], action.command_args)
        return super().validate_action_options(options)

    def run(self, resource_options, action_options) -> RuntimeResult:
        res: S3Resource = self.decode_resource(resource_options)
        action: S3Action = self.decode_action(action_options)
        args = decode_action(COMMAND_ARGS[action.commands], action.command_args)
        bucket = args.bucket_name or res.bucket_name
        if not bucket:
            raise InvalidActionError("no bucket name")
        handler = getattr(self, "_cmd_" + action.commands.lower())
        with self._s3(res) as client:
            return handler(client, bucket, args, res)

    def _cmd_list(self, client: Any, bucket: str, args: ListArgs, res: S3Resource) -> RuntimeResult:
        params: Dict[str, Any] = {"Bucket": bucket, "MaxKeys": args.max_keys or DEFAULT_MAX_KEYS}
        if args.prefix:
            params["Prefix"] = args.prefix
        if args.delimiter:
            params["Delimiter"] = args.delimiter
        resp = self._call("list objects", client.list_objects_v2, **params)
        rows = []
        expires_at = dt.datetime.now(dt.timezone.utc) + dt.timedelta(minutes=args.expiry)
        for obj in resp.get("Contents", []) or []:
            row: Dict[str, Any] = {"objectKey": obj["Key"]}
            if args.signed_url:
                row["signedURL"] = self._call(
                    "presign",
                    client.generate_presigned_url,
                    ClientMethod="get_object",
                    Params={"Bucket": bucket, "Key": obj["Key"]},
                    ExpiresIn=args.expiry * 60,
                )
                row["urlExpiryDate"] = expires_at.strftime(EXPIRY_FORMAT)
            rows.append(row)
        return RuntimeResult(success=True, rows=rows)

    def _get_object(self, client: Any, bucket: str, key: str) -> Dict[str, Any]:
        head = self._call("head object", client.head_object, Bucket=bucket, Key=key)
        if int(head.get("ContentLength") or 0) > self.size_limit:
            raise OversizeObjectError("oversize object")
        resp = self._call("get object", client.get_object, Bucket=bucket, Key=key)
        body = resp["Body"]
        try:
            data = body.read()
        finally:
            body.close()
        if len(data) > self.size_limit:
            raise OversizeObjectError("oversize object")
        return {"data": data, "content_type": resp.get("ContentType", "")}

    def _cmd_read(self, client: Any, bucket: str, args: ObjectArgs, res: S3Resource) -> RuntimeResult:
        obj = self._get_object(client, bucket, args.object_key)
        return RuntimeResult(success=True, rows=[{"objectData": base64.b64encode(obj["data"]).decode("ascii")}])

    def _cmd_download(self, client: Any, bucket: str, args: ObjectArgs, res: S3Resource) -> RuntimeResult:
        obj = self._get_object(client, bucket, args.object_key)
        return RuntimeResult(
            success=True,
            rows=[{"objectData": base64.b64encode(obj["data"]).decode("ascii")}],
            extra={"Download": True, "ContentType": obj["content_type"], "ObjectKey": args.object_key},
        )

    def _cmd_delete(self, client: Any, bucket: str, args: ObjectArgs, res: S3Resource) -> RuntimeResult:
        resp = self._call("delete object", client.delete_object, Bucket=bucket, Key=args.object_key)
        return RuntimeResult(
            success=True,
            rows=[{"objectKey": args.object_key, "deleteMarker": bool(resp.get("DeleteMarker", False))}],
        )

    def _cmd_batchdelete(self, client: Any, bucket: str, args: BatchDeleteArgs, res: S3Resource) -> RuntimeResult:
        failed: List[str] = []
        for key in args.object_key_list:
            try:
                self._call("delete object", client.delete_object, Bucket=bucket, Key=key)
            except OperationFailedError as exc:
                self.log.warning("s3 batch delete failed for key", key=key, error=str(exc))
                failed.append(key)
        count = len(args.object_key_list)
        return RuntimeResult(success=True, rows=[{"count": count, "success": count - len(failed), "failure": failed}])

    def _put(self, client: Any, bucket: str, key: str, data: bytes, content_type: str, res: S3Resource) -> None:
        params: Dict[str, Any] = {"Bucket": bucket, "Key": key, "Body": data}
        if content_type:
            params["ContentType"] = content_type
        if res.acl:
            params["ACL"] = res.acl
        self._call("put object", client.put_object, **params)

    def _cmd_upload(self, client: Any, bucket: str, args: UploadArgs, res: S3Resource) -> RuntimeResult:
        data = decode_upload_payload(args.object_data)
        if len(data) > self.size_limit:
            raise OversizeObjectError("oversize object")
        self._put(client, bucket, args.object_key, data, args.content_type, res)
        return RuntimeResult(success=True, rows=[{"message": f"upload {args.object_key} successfully"}])

    def _cmd_batchupload(self, client: Any, bucket: str, args: BatchUploadArgs, res: S3Resource) -> RuntimeResult:
        if len(args.object_key_list) != len(args.object_data_list):
            raise InvalidActionError("mismatch between object keys and object data")
        failed: List[str] = []
        for key, payload in zip(args.object_key_list, args.object_data_list):
            try:
                data = decode_upload_payload(payload)
                if len(data) > self.size_limit:
                    raise OversizeObjectError("oversize object")
                self._put(client, bucket, key, data, args.content_type, res)
            except (InvalidActionError, OversizeObjectError, OperationFailedError) as exc:
                self.log.warning("s3 batch upload failed for key", key=key, error=str(exc))
                failed.append(key)
        count = len(args.object_key_list)
        return RuntimeResult(success=True, rows=[{"count": count, "success": count - len(failed), "failure": failed}])


__all__ = ["S3Connector", "S3Resource", "decode_upload_payload", "ACLS"]
