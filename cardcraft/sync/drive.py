"""Google Drive v3 remote store over httpx."""

from __future__ import annotations

import json
import logging
import os
import time
import uuid
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, Tuple, Union

import httpx

from ..errors import AuthenticationError, RemoteNotFoundError, RemoteStoreError, TransportError
from .remote import DECK_MIME_TYPE, RemoteFile

logger = logging.getLogger("cardcraft.sync.drive")

DRIVE_API = "https://www.googleapis.com/drive/v3"
DRIVE_UPLOAD_API = "https://www.googleapis.com/upload/drive/v3"
TOKEN_ENDPOINT = "https://oauth2.googleapis.com/token"
FOLDER_MIME_TYPE = "application/vnd.google-apps.folder"
DEFAULT_FOLDER_NAME = "CardCraftStudio Data"
_EXPIRY_MARGIN_SECONDS = 60


class TokenProvider(Protocol):
    """Source of OAuth access tokens for the Drive API."""

    @property
    def available(self) -> bool:
        ...

    async def get_token(self, client: httpx.AsyncClient) -> str:
        ...

    def invalidate(self) -> None:
        ...


class StaticTokenProvider:
    """A fixed access token, e.g. from ``CARDCRAFT_DRIVE_TOKEN``."""

    def __init__(self, token: Optional[str]):
        self._token = token or None

    @property
    def available(self) -> bool:
        return self._token is not None

    async def get_token(self, client: httpx.AsyncClient) -> str:
        if not self._token:
            raise AuthenticationError("No Drive access token configured")
        return self._token

    def invalidate(self) -> None:
        self._token = None


class CredentialsFileTokenProvider:
    """Token cache backed by a JSON credentials file.

    The file holds ``access_token`` and ``expires_at`` (epoch seconds), and
    optionally ``client_id``, ``client_secret`` and ``refresh_token`` used to
    refresh at Google's token endpoint. Refreshed tokens are written back.
    """

    def __init__(self, path: Path, token_endpoint: str = TOKEN_ENDPOINT):
        self.path = path
        self.token_endpoint = token_endpoint

    def _read(self) -> Dict[str, Any]:
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return {}
        except (OSError, json.JSONDecodeError) as e:
            logger.error("Failed to read Drive credentials %s: %s", self.path, e)
            return {}
        return data if isinstance(data, dict) else {}

    def _write(self, data: Dict[str, Any]) -> None:
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(json.dumps(data, indent=2), encoding="utf-8")
            os.replace(tmp_path, self.path)
        except OSError as e:
            logger.warning("Failed to persist refreshed Drive token: %s", e)

    @staticmethod
    def _can_refresh(data: Dict[str, Any]) -> bool:
        return all(data.get(key) for key in ("client_id", "client_secret", "refresh_token"))

    @property
    def available(self) -> bool:
        data = self._read()
        return bool(data.get("access_token")) or self._can_refresh(data)

    async def get_token(self, client: httpx.AsyncClient) -> str:
        data = self._read()
        token = data.get("access_token")
        expires_at = float(data.get("expires_at") or 0)
        if token and (not expires_at or expires_at - _EXPIRY_MARGIN_SECONDS > time.time()):
            return str(token)
        if not self._can_refresh(data):
            raise AuthenticationError(f"No usable Drive credentials in {self.path}")
        return await self._refresh(client, data)

    async def _refresh(self, client: httpx.AsyncClient, data: Dict[str, Any]) -> str:
        try:
            response = await client.post(
                self.token_endpoint,
                data={
                    "grant_type": "refresh_token",
                    "client_id": data["client_id"],
                    "client_secret": data["client_secret"],
                    "refresh_token": data["refresh_token"],
                },
            )
        except httpx.HTTPError as e:
            raise TransportError(f"Token refresh failed: {e}") from e
        if response.status_code != 200:
            raise AuthenticationError(f"Token refresh rejected: {response.status_code} {_error_message(response)}")

        payload = _json_object(response)
        token = payload.get("access_token")
        if not token:
            raise AuthenticationError("Token response missing access_token")
        data["access_token"] = token
        data["expires_at"] = int(time.time()) + int(payload.get("expires_in", 3600))
        self._write(data)
        logger.info("Refreshed Drive access token")
        return str(token)

    def invalidate(self) -> None:
        data = self._read()
        if data.pop("access_token", None) is not None:
            data.pop("expires_at", None)
            self._write(data)


def _error_message(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return response.text[:200]
    error = payload.get("error") if isinstance(payload, dict) else None
    if isinstance(error, dict):
        return str(error.get("message", ""))
    if isinstance(payload, dict) and "error_description" in payload:
        return str(payload["error_description"])
    return str(error or response.text[:200])


def _json_object(response: httpx.Response) -> Dict[str, Any]:
    try:
        payload = response.json()
    except ValueError as e:
        raise RemoteStoreError(f"Drive returned a non-JSON response: {e}") from e
    if not isinstance(payload, dict):
        raise RemoteStoreError("Drive returned an unexpected response body")
    return payload


def _file_ids(payload: Dict[str, Any]) -> List[str]:
    try:
        return [str(entry["id"]) for entry in payload.get("files") or []]
    except (KeyError, TypeError) as e:
        raise RemoteStoreError(f"Drive file listing is malformed: {e!r}") from e


def _quote(value: str) -> str:
    return value.replace("\\", "\\\\").replace("'", "\\'")


def _multipart_body(metadata: Dict[str, Any], content: bytes, mime_type: str) -> Tuple[bytes, str]:
    boundary = f"cardcraft-{uuid.uuid4().hex}"
    parts = [
        f"--{boundary}\r\nContent-Type: application/json; charset=UTF-8\r\n\r\n".encode("utf-8"),
        json.dumps(metadata).encode("utf-8"),
        f"\r\n--{boundary}\r\nContent-Type: {mime_type}\r\n\r\n".encode("utf-8"),
        content,
        f"\r\n--{boundary}--".encode("utf-8"),
    ]
    return b"".join(parts), f"multipart/related; boundary={boundary}"


class DriveFileStore:
    """Remote store holding all files in one Drive app folder."""

    def __init__(
        self,
        tokens: TokenProvider,
        folder_name: str = DEFAULT_FOLDER_NAME,
        *,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.tokens = tokens
        self.folder_name = folder_name
        self._client = httpx.AsyncClient(timeout=timeout, transport=transport)
        self._token: Optional[str] = None
        self._folder_id: Optional[str] = None

    @property
    def is_signed_in(self) -> bool:
        return self._token is not None or self.tokens.available

    async def ensure_signed_in(self) -> str:
        self._token = await self.tokens.get_token(self._client)
        return self._token

    async def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        token = self._token or await self.ensure_signed_in()
        headers = dict(kwargs.pop("headers", {}) or {})
        headers["Authorization"] = f"Bearer {token}"
        try:
            response = await self._client.request(method, url, headers=headers, **kwargs)
        except httpx.HTTPError as e:
            raise TransportError(f"{method} {url} failed: {e}") from e

        if response.status_code == 401:
            self._token = None
            self.tokens.invalidate()
            raise AuthenticationError("Drive session expired; sign in again")
        if response.status_code == 404:
            raise RemoteNotFoundError(f"Drive file not found: {_error_message(response)}")
        if response.status_code == 403:
            raise RemoteStoreError(f"Drive access denied: {_error_message(response)}")
        if response.status_code >= 400:
            raise RemoteStoreError(f"Drive API error {response.status_code}: {_error_message(response)}")
        return response

    async def _ensure_folder(self) -> str:
        if self._folder_id:
            return self._folder_id
        query = (
            f"name = '{_quote(self.folder_name)}' and mimeType = '{FOLDER_MIME_TYPE}' and trashed = false"
        )
        response = await self._request("GET", f"{DRIVE_API}/files", params={"q": query, "fields": "files(id, name)"})
        folders = _file_ids(_json_object(response))
        if folders:
            self._folder_id = folders[0]
        else:
            created = await self._request(
                "POST",
                f"{DRIVE_API}/files",
                json={"name": self.folder_name, "mimeType": FOLDER_MIME_TYPE},
                params={"fields": "id"},
            )
            folder_id = _json_object(created).get("id")
            if not isinstance(folder_id, str) or not folder_id:
                raise RemoteStoreError("Drive folder creation returned no id")
            self._folder_id = folder_id
            logger.info("Created Drive folder '%s' (%s)", self.folder_name, self._folder_id)
        return self._folder_id

    async def list_files(self) -> List[RemoteFile]:
        folder_id = await self._ensure_folder()
        files: List[RemoteFile] = []
        page_token: Optional[str] = None
        while True:
            params = {
                "q": f"'{folder_id}' in parents and trashed = false",
                "fields": "nextPageToken, files(id, name, modifiedTime)",
                "pageSize": 1000,
            }
            if page_token:
                params["pageToken"] = page_token
            payload = _json_object(await self._request("GET", f"{DRIVE_API}/files", params=params))
            try:
                for entry in payload.get("files") or []:
                    files.append(RemoteFile(id=entry["id"], name=entry["name"], modified_time=entry["modifiedTime"]))
            except (KeyError, TypeError) as e:
                raise RemoteStoreError(f"Drive file listing is malformed: {e!r}") from e
            page_token = payload.get("nextPageToken")
            if not page_token:
                return files

    async def get_file_bytes(self, file_id: str) -> bytes:
        response = await self._request("GET", f"{DRIVE_API}/files/{file_id}", params={"alt": "media"})
        return response.content

    async def get_file_content(self, file_id: str) -> str:
        data = await self.get_file_bytes(file_id)
        try:
            return data.decode("utf-8")
        except UnicodeDecodeError as e:
            raise RemoteStoreError(f"Drive file '{file_id}' is not UTF-8 text") from e

    async def _find_by_name(self, folder_id: str, name: str) -> Optional[str]:
        query = f"name = '{_quote(name)}' and '{folder_id}' in parents and trashed = false"
        response = await self._request("GET", f"{DRIVE_API}/files", params={"q": query, "fields": "files(id)"})
        matches = _file_ids(_json_object(response))
        return matches[0] if matches else None

    async def save_file(self, name: str, content: Union[str, bytes], mime_type: str = DECK_MIME_TYPE) -> None:
        folder_id = await self._ensure_folder()
        payload = content.encode("utf-8") if isinstance(content, str) else content
        existing = await self._find_by_name(folder_id, name)

        metadata: Dict[str, Any] = {"name": name, "mimeType": mime_type}
        if existing is None:
            metadata["parents"] = [folder_id]
        body, content_type = _multipart_body(metadata, payload, mime_type)
        url = f"{DRIVE_UPLOAD_API}/files" if existing is None else f"{DRIVE_UPLOAD_API}/files/{existing}"
        await self._request(
            "POST" if existing is None else "PATCH",
            url,
            params={"uploadType": "multipart", "fields": "id, modifiedTime"},
            content=body,
            headers={"Content-Type": content_type},
        )
        logger.debug("Saved %s to Drive (%d bytes)", name, len(payload))

    async def delete_file(self, file_id: str) -> None:
        await self._request("DELETE", f"{DRIVE_API}/files/{file_id}")

    async def aclose(self) -> None:
        await self._client.aclose()


__all__ = [
    "CredentialsFileTokenProvider",
    "DEFAULT_FOLDER_NAME",
    "DriveFileStore",
    "StaticTokenProvider",
    "TokenProvider",
]
