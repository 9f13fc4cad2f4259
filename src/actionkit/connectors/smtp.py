from __future__ import annotations

import base64
import binascii
import contextlib
import smtplib
import ssl
from email.message import EmailMessage
from typing import Iterator, List, Literal, Optional
from urllib.parse import unquote_to_bytes

from pydantic import Field, model_validator

from ..core.errors import ConnectFailedError, InvalidActionError, OperationFailedError
from ..core.options import NonEmptyStr, OptionsModel
from ..core.results import ConnectionResult, RuntimeResult
from .base import Connector
from .registry import register_connector
from .s3 import MIB

IMPLICIT_TLS_PORT = 465
DEFAULT_TIMEOUT_S = 30


class SMTPResource(OptionsModel):
    host: NonEmptyStr
    port: int = Field(gt=0)
    username: NonEmptyStr
    password: NonEmptyStr


class Attachment(OptionsModel):
    data: str = ""
    name: str = "attachment"
    content_type: str = "application/octet-stream"


class SMTPAction(OptionsModel):
    from_: NonEmptyStr = Field(alias="from")
    to: List[NonEmptyStr] = Field(min_length=1)
    bcc: List[str] = Field(default_factory=list)
    cc: List[str] = Field(default_factory=list)
    set_reply_to: bool = False
    reply_to: str = ""
    subject: str = ""
    content_type: Literal["text/plain", "text/html"] = "text/plain"
    body: str = ""
    attachment: Optional[List[Attachment]] = None

    @model_validator(mode="after")
    def _reply_to_when_set(self):
        if self.set_reply_to and not self.reply_to:
            raise ValueError("replyTo is required when setReplyTo is set")
        return self


def decode_attachment(data: str) -> bytes:
    try:
        raw = base64.b64decode(data, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise InvalidActionError("attachment data is not valid base64") from exc
    return unquote_to_bytes(raw.replace(b"+", b" "))


@register_connector("smtp")
class SMTPConnector(Connector):
    resource_model = SMTPResource
    action_model = SMTPAction

    @contextlib.contextmanager
    def _session(self, res: SMTPResource) -> Iterator[smtplib.SMTP]:
        timeout = self.config.http.timeout_s or DEFAULT_TIMEOUT_S
        try:
            if res.port == IMPLICIT_TLS_PORT:
                server: smtplib.SMTP = smtplib.SMTP_SSL(res.host, res.port, timeout=timeout, context=ssl.create_default_context())
            else:
                server = smtplib.SMTP(res.host, res.port, timeout=timeout)
                server.ehlo()
                if server.has_extn("starttls"):
                    server.starttls(context=ssl.create_default_context())
                    server.ehlo()
            server.login(res.username, res.password)
        except (OSError, smtplib.SMTPException) as exc:
            raise ConnectFailedError(f"smtp: {exc}") from exc
        self.log.handle_opened("smtp", host=res.host)
        try:
            yield server
        finally:
            with contextlib.suppress(smtplib.SMTPException, OSError):
                server.quit()
            server.close()
            self.log.handle_released("smtp", host=res.host)

    def test_connection(self, options) -> ConnectionResult:
        res = self.decode_resource(options)
        with self._session(res):
            pass
        return ConnectionResult(success=True)

    def build_message(self, action: SMTPAction) -> EmailMessage:
        msg = EmailMessage()
        msg["From"] = action.from_
        msg["To"] = ", ".join(action.to)
        if action.cc:
            msg["Cc"] = ", ".join(action.cc)
        if action.set_reply_to:
            msg["Reply-To"] = action.reply_to
        msg["Subject"] = action.subject
        subtype = action.content_type.split("/", 1)[1]
        msg.set_content(action.body, subtype=subtype)
        limit = int(self.config.s3.object_size_limit_mib * MIB)
        for item in action.attachment or []:
            data = decode_attachment(item.data)
            if len(data) > limit:
                self.log.warning("smtp attachment over size limit skipped", name=item.name, size=len(data))
                continue
            maintype, _, sub = (item.content_type or "application/octet-stream").partition("/")
            msg.add_attachment(data, maintype=maintype, subtype=sub or "octet-stream", filename=item.name)
        return msg

    def run(self, resource_options, action_options) -> RuntimeResult:
        res: SMTPResource = self.decode_resource(resource_options)
        action: SMTPAction = self.decode_action(action_options)
        msg = self.build_message(action)
        recipients: List[str] = list(action.to) + list(action.cc) + list(action.bcc)
        with self._session(res) as server:
            try:
                server.send_message(msg, from_addr=action.from_, to_addrs=recipients)
            except smtplib.SMTPException as exc:
                raise OperationFailedError(f"smtp: send failed: {exc}") from exc
        return RuntimeResult(success=True, rows=[{"message": "email sent successfully"}])


__all__ = ["SMTPConnector", "decode_attachment"]
