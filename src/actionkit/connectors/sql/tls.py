from __future__ import annotations

import contextlib
import os
import ssl
import tempfile
from typing import Optional

from ...core.errors import ConnectFailedError


def pem_file(stack: contextlib.ExitStack, content: str, suffix: str = ".pem") -> str:
    """Write PEM text to a private temp file removed when ``stack`` closes."""
    fd, path = tempfile.mkstemp(suffix=suffix)
    stack.callback(_unlink, path)
    with os.fdopen(fd, "w", encoding="utf-8") as f:
        f.write(content)
    return path


def _unlink(path: str) -> None:
    with contextlib.suppress(FileNotFoundError):
        os.unlink(path)


def build_ssl_context(
    *,
    ca_cert: Optional[str] = None,
    client_cert: Optional[str] = None,
    client_key: Optional[str] = None,
    verify: bool = True,
    check_hostname: bool = True,
) -> ssl.SSLContext:
    """Build a client TLS context from in-memory PEM material."""
    ctx = ssl.create_default_context(ssl.Purpose.SERVER_AUTH)
    if not verify:
        ctx.check_hostname = False
        ctx.verify_mode = ssl.CERT_NONE
    else:
        ctx.check_hostname = check_hostname
        if ca_cert:
            try:
                ctx.load_verify_locations(cadata=ca_cert)
            except ssl.SSLError as exc:
                raise ConnectFailedError(f"error parsing CA cert: {exc}") from exc
    if client_cert and client_key:
        with contextlib.ExitStack() as stack:
            cert_path = pem_file(stack, client_cert)
            key_path = pem_file(stack, client_key)
            try:
                ctx.load_cert_chain(cert_path, key_path)
            except ssl.SSLError as exc:
                raise ConnectFailedError(f"error loading client certificate: {exc}") from exc
    return ctx


__all__ = ["build_ssl_context", "pem_file"]
