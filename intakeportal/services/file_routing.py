from __future__ import annotations

from dataclasses import dataclass
import hashlib
import logging
from typing import Protocol

from intakeportal.domain.models import Actor, Brokerage, ClientIdentity, IntakeSession
from intakeportal.persistence.base import IntakeStore
from intakeportal.services.audit import AuditTrail


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DriveFolder:
    folder_id: str
    folder_url: str
    created: bool


@dataclass(frozen=True)
class DriveFile:
    file_id: str
    file_url: str


class FileRouter(Protocol):
    """Routes intake uploads into per-session storage folders."""

    async def ensure_folder(
        self,
        *,
        brokerage: Brokerage,
        client: ClientIdentity,
        session: IntakeSession,
    ) -> DriveFolder: ...

    async def upload_asset(
        self,
        *,
        brokerage: Brokerage,
        client: ClientIdentity,
        session: IntakeSession,
        folder_id: str,
        file_name: str,
        mime_type: str,
        revision: int,
    ) -> DriveFile: ...


def _digest(*parts: str) -> str:
    return hashlib.sha256("|".join(parts).encode("utf-8")).hexdigest()[:24]


class StubDriveRouter:
    """Deterministic identifiers and URLs; no external calls are made."""

    def __init__(self, base_url: str = "https://drive.google.com") -> None:
        self._base_url = base_url.rstrip("/")

    async def ensure_folder(
        self,
        *,
        brokerage: Brokerage,
        client: ClientIdentity,
        session: IntakeSession,
    ) -> DriveFolder:
        if session.drive_folder_id and session.drive_folder_url:
            return DriveFolder(folder_id=session.drive_folder_id, folder_url=session.drive_folder_url, created=False)
        folder_id = f"folder_{_digest(brokerage.id, client.id, session.id)}"
        return DriveFolder(
            folder_id=folder_id,
            folder_url=f"{self._base_url}/drive/folders/{folder_id}",
            created=True,
        )

    async def upload_asset(
        self,
        *,
        brokerage: Brokerage,
        client: ClientIdentity,
        session: IntakeSession,
        folder_id: str,
        file_name: str,
        mime_type: str,
        revision: int,
    ) -> DriveFile:
        file_id = f"file_{_digest(folder_id, file_name, str(revision))}"
        return DriveFile(file_id=file_id, file_url=f"{self._base_url}/file/d/{file_id}/view")


class SessionFileRouting:
    """Best-effort wrapper: routing failures are logged and never block the caller."""

    def __init__(self, *, store: IntakeStore, audit: AuditTrail, router: FileRouter, drive_enabled: bool) -> None:
        self._store = store
        self._audit = audit
        self._router = router
        self._mode = "google" if drive_enabled else "stub"

    async def ensure_folder(
        self,
        *,
        brokerage: Brokerage,
        client: ClientIdentity,
        session: IntakeSession,
    ) -> DriveFolder | None:
        try:
            folder = await self._router.ensure_folder(brokerage=brokerage, client=client, session=session)
        except Exception as exc:  # noqa: BLE001 - file routing is a non-fatal side channel
            logger.warning("drive_folder_failed session_id=%s", session.id, exc_info=exc)
            return None
        if not folder.created:
            return folder
        await self._store.sessions.update(
            session.id,
            {"drive_folder_id": folder.folder_id, "drive_folder_url": folder.folder_url},
        )
        await self._audit.record(
            session_id=session.id,
            brokerage_id=brokerage.id,
            client_id=client.id,
            actor=Actor.SYSTEM,
            action="DRIVE_FOLDER_CREATED",
            details={
                "folder_id": folder.folder_id,
                "folder_url": folder.folder_url,
                "parent_folder_id": brokerage.drive_parent_folder_id,
                "integration_mode": self._mode,
            },
        )
        return folder

    async def upload_asset(
        self,
        *,
        brokerage: Brokerage,
        client: ClientIdentity,
        session: IntakeSession,
        file_name: str,
        mime_type: str,
        revision: int,
    ) -> DriveFile | None:
        folder = await self.ensure_folder(brokerage=brokerage, client=client, session=session)
        if folder is None:
            return None
        try:
            routed = await self._router.upload_asset(
                brokerage=brokerage,
                client=client,
                session=session,
                folder_id=folder.folder_id,
                file_name=file_name,
                mime_type=mime_type,
                revision=revision,
            )
        except Exception as exc:  # noqa: BLE001 - file routing is a non-fatal side channel
            logger.warning("drive_upload_failed session_id=%s file_name=%s", session.id, file_name, exc_info=exc)
            return None
        await self._audit.record(
            session_id=session.id,
            brokerage_id=brokerage.id,
            client_id=client.id,
            actor=Actor.SYSTEM,
            action="DRIVE_FILE_ROUTED",
            details={
                "folder_id": folder.folder_id,
                "drive_file_id": routed.file_id,
                "drive_file_url": routed.file_url,
                "file_name": file_name,
                "mime_type": mime_type,
                "revision": revision,
            },
        )
        return routed
