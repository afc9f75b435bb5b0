"""Best-effort cloud backup of the spreadsheet snapshot.

A persisted ``needs_backup`` flag is set when a payment commits and cleared
only after an upload is confirmed. Failures are logged and leave the flag
set; they never touch order data.
"""

import json
import logging
from collections.abc import Callable
from dataclasses import dataclass
from uuid import uuid4

import httpx
from sqlalchemy import delete
from sqlmodel import Session

from .config import Settings
from .database import atomic
from .export import XLSX_MEDIA_TYPE, export_snapshot
from .models import AppState, utcnow

logger = logging.getLogger(__name__)

NEEDS_BACKUP_KEY = "needs_backup"

DRIVE_FILES_URL = "https://www.googleapis.com/drive/v3/files"
DRIVE_UPLOAD_URL = "https://www.googleapis.com/upload/drive/v3/files"
FOLDER_MIME_TYPE = "application/vnd.google-apps.folder"


@dataclass(frozen=True)
class BackupResult:
    success: bool
    message: str


# -------------------------
# Dirty flag
# -------------------------

def mark_dirty(session: Session) -> None:
    """Set the flag with a fresh revision so an in-flight upload cannot clear it."""
    state = session.get(AppState, NEEDS_BACKUP_KEY, populate_existing=True)
    if state is None:
        state = AppState(key=NEEDS_BACKUP_KEY, value="")
    state.value = uuid4().hex
    state.updated_at = utcnow()
    session.add(state)
    session.flush()


def dirty_revision(session: Session) -> str | None:
    state = session.get(AppState, NEEDS_BACKUP_KEY, populate_existing=True)
    return state.value if state is not None else None


def clear_dirty(session: Session, revision: str) -> bool:
    """Clear the flag only if it still carries ``revision``."""
    result = session.execute(
        delete(AppState)
        .where(AppState.key == NEEDS_BACKUP_KEY, AppState.value == revision)
        .execution_options(synchronize_session=False)
    )
    session.flush()
    return result.rowcount > 0


def needs_backup(session: Session) -> bool:
    return dirty_revision(session) is not None


# -------------------------
# Google Drive upload
# -------------------------

class DriveUploader:
    def __init__(self, client: httpx.Client, token: str) -> None:
        self.client = client
        self.headers = {"Authorization": f"Bearer {token}"}

    def _search(self, query: str) -> list[dict]:
        response = self.client.get(DRIVE_FILES_URL, headers=self.headers, params={"q": query})
        response.raise_for_status()
        return response.json().get("files") or []

    def get_or_create_folder(self, name: str) -> str:
        found = self._search(f"mimeType='{FOLDER_MIME_TYPE}' and name='{name}' and trashed=false")
        if found:
            return found[0]["id"]
        response = self.client.post(
            DRIVE_FILES_URL,
            headers=self.headers,
            json={"name": name, "mimeType": FOLDER_MIME_TYPE},
        )
        response.raise_for_status()
        return response.json()["id"]

    def upload(self, folder_name: str, file_name: str, payload: bytes) -> str:
        folder_id = self.get_or_create_folder(folder_name)
        existing = self._search(f"name='{file_name}' and '{folder_id}' in parents and trashed=false")
        metadata: dict = {"name": file_name}
        if existing:
            method = "PATCH"
            url = f"{DRIVE_UPLOAD_URL}/{existing[0]['id']}"
        else:
            method = "POST"
            url = DRIVE_UPLOAD_URL
            metadata["parents"] = [folder_id]
        response = self.client.request(
            method,
            url,
            headers=self.headers,
            params={"uploadType": "multipart"},
            files={
                "metadata": (None, json.dumps(metadata).encode("utf-8"), "application/json"),
                "file": (file_name, payload, XLSX_MEDIA_TYPE),
            },
        )
        response.raise_for_status()
        return response.json().get("id", "")


def sync_backup(session: Session, settings: Settings, client: httpx.Client | None = None) -> BackupResult:
    token = settings.drive_access_token
    if not token:
        return BackupResult(success=False, message="Backup is not configured")
    owns_client = client is None
    http = client or httpx.Client(timeout=settings.backup_timeout)
    try:
        revision = dirty_revision(session)
        payload = export_snapshot(session)
        file_id = DriveUploader(http, token).upload(
            settings.backup_folder_name, settings.backup_file_name, payload
        )
        cleared = False
        if revision is not None:
            with atomic(session):
                cleared = clear_dirty(session, revision)
    except Exception as exc:  # noqa: BLE001
        logger.warning("Backup sync failed: %s", exc)
        return BackupResult(success=False, message=str(exc) or exc.__class__.__name__)
    finally:
        if owns_client:
            http.close()
    logger.info("Backup uploaded as %s (%d bytes)", file_id, len(payload))
    if revision is not None and not cleared:
        logger.info("Newer changes arrived during upload; backup flag stays set")
    return BackupResult(success=True, message="Synced Successfully")


def run_backup(session_factory: Callable[[], Session], settings: Settings) -> BackupResult:
    """Background-task entry point with its own session."""
    with session_factory() as session:
        return sync_backup(session, settings)
