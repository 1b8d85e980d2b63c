"""Remote copies of the journal.

The sync layer only ever sees a single named JSON blob through four calls:
``find() -> handle | None``, ``create(payload) -> handle``,
``update(handle, payload) -> handle`` and ``read(handle) -> payload``.  Any
failure surfaces as ``RemoteStoreError``; nothing here retries.
"""

import json
import urllib.error
import urllib.parse
import urllib.request
import uuid
from pathlib import Path
from hj.common.logger import log
from hj.core.errors import RemoteStoreError
from hj.core.model import Dataset

REMOTE_FILE_NAME = "habits.json"


class RemoteStore:

    def find(self):
        raise NotImplementedError

    def create(self, payload):
        raise NotImplementedError

    def update(self, handle, payload):
        raise NotImplementedError

    def read(self, handle):
        raise NotImplementedError


class FolderRemoteStore(RemoteStore):
    """The blob as a plain file in a folder, e.g. one kept in sync by a desktop drive client."""

    def __init__(self, folder, file_name=REMOTE_FILE_NAME):
        self.folder = Path(folder)
        self.file_name = file_name

    @property
    def path(self):
        return self.folder / self.file_name

    def find(self):
        return self.path if self.path.exists() else None

    def _write(self, path, payload):
        try:
            self.folder.mkdir(parents=True, exist_ok=True)
            with open(path, "w", encoding="utf-8") as f:
                json.dump(payload, f, indent=2)
        except OSError as e:
            raise RemoteStoreError(f"Failed to write '{path}': {e}") from e
        return path

    def create(self, payload):
        return self._write(self.path, payload)

    def update(self, handle, payload):
        return self._write(Path(handle), payload)

    def read(self, handle):
        try:
            with open(handle, "r", encoding="utf-8") as f:
                return json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise RemoteStoreError(f"Failed to read '{handle}': {e}") from e


class DriveRemoteStore(RemoteStore):
    """The blob as ``habits.json`` in the Google Drive app-data folder.

    ``access_token`` is a ready OAuth bearer token; obtaining and refreshing
    it belongs to the sign-in flow.  Handles are Drive file ids.
    """

    API_BASE = "https://www.googleapis.com/drive/v3"
    UPLOAD_BASE = "https://www.googleapis.com/upload/drive/v3"

    def __init__(self, access_token, file_name=REMOTE_FILE_NAME, timeout_s=20):
        self.access_token = access_token
        self.file_name = file_name
        self.timeout_s = timeout_s

    def _request(self, method, url, body=None, content_type=None):
        headers = {"Authorization": f"Bearer {self.access_token}", "Accept": "application/json"}
        if content_type:
            headers["Content-Type"] = content_type
        req = urllib.request.Request(url, data=body, method=method, headers=headers)
        try:
            with urllib.request.urlopen(req, timeout=self.timeout_s) as resp:
                return json.loads(resp.read().decode("utf-8"))
        except urllib.error.HTTPError as e:
            raise RemoteStoreError(f"Drive {method} failed: HTTP {e.code} {e.reason}") from e
        except (urllib.error.URLError, OSError, ValueError) as e:
            raise RemoteStoreError(f"Drive {method} failed: {type(e).__name__}: {e}") from e

    def find(self):
        params = urllib.parse.urlencode({
            "spaces": "appDataFolder",
            "fields": "files(id, name, modifiedTime)",
            "q": f"name='{self.file_name}'",
        })
        files = self._request("GET", f"{self.API_BASE}/files?{params}").get("files") or []
        return files[0]["id"] if files else None

    def create(self, payload):
        boundary = uuid.uuid4().hex
        metadata = {"name": self.file_name, "parents": ["appDataFolder"]}
        body = (
            f"--{boundary}\r\nContent-Type: application/json; charset=UTF-8\r\n\r\n{json.dumps(metadata)}\r\n"
            f"--{boundary}\r\nContent-Type: application/json\r\n\r\n{json.dumps(payload)}\r\n"
            f"--{boundary}--"
        ).encode("utf-8")
        url = f"{self.UPLOAD_BASE}/files?uploadType=multipart&fields=id,name,modifiedTime"
        return self._request("POST", url, body, f"multipart/related; boundary={boundary}")["id"]

    def update(self, handle, payload):
        url = f"{self.UPLOAD_BASE}/files/{handle}?uploadType=media&fields=id,name,modifiedTime"
        return self._request("PATCH", url, json.dumps(payload).encode("utf-8"), "application/json")["id"]

    def read(self, handle):
        return self._request("GET", f"{self.API_BASE}/files/{handle}?alt=media")


def load_remote(store):
    """Fetch the remote dataset, or None when no copy exists yet."""
    handle = store.find()
    if handle is None:
        log.info("No remote journal found")
        return None
    return Dataset.from_dict(store.read(handle), source="remote")


def save_remote(store, dataset):
    """Write the whole dataset, creating the blob on first save."""
    payload = dataset.to_dict()
    handle = store.find()
    if handle is None:
        handle = store.create(payload)
        log.info("Created remote journal")
    else:
        handle = store.update(handle, payload)
        log.debug("Updated remote journal")
    return handle
