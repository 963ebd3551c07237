from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Optional
from urllib.parse import quote

from ..http_client import HttpClient

CredentialProvider = Callable[[], Optional[str]]


@dataclass
class BaseClient:
    http: HttpClient
    credential: CredentialProvider | None = None

    def _auth_headers(self) -> dict[str, str]:
        headers: dict[str, str] = {}
        token = self.credential() if self.credential else None
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return headers

    def _request(self, method: str, path: str, **kwargs):
        headers = kwargs.pop("headers", {})
        merged = {**self._auth_headers(), **headers}
        return self.http.request(method, path, headers=merged, **kwargs)


def encode_segment(value: str) -> str:
    return quote(str(value), safe="")
