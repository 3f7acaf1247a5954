from __future__ import annotations

from getmyid.ipc.async_client import AsyncClient
from getmyid.ipc.protocol import decode_response, encode_request
from getmyid.ipc.unix_client import Client

__all__ = ["AsyncClient", "Client", "decode_response", "encode_request"]
