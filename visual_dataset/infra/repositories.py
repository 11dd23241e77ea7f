from __future__ import annotations

from datetime import datetime, timezone
import logging
import re
from threading import RLock
from typing import Any, Iterable
from urllib.parse import quote
from uuid import uuid4

import requests

from visual_dataset.config import settings
from visual_dataset.domain.models import District
from visual_dataset.infra.supabase_client import get_supabase_client

logger = logging.getLogger(__name__)

DISTRICTS_TABLE = "districts"
SUBMISSIONS_TABLE = "submissions"
COVERAGE_TABLE = "coverage_stats"
DISTRICT_JOIN = "*, districts(*)"

# Page size for storage folder listings.
LIST_PAGE_SIZE = 100

# Columns an older schema may lack; inserts retry without them.
OPTIONAL_SUBMISSION_COLUMNS = {"contributor_contact", "latitude", "longitude"}


class RepositoryError(RuntimeError):
    pass


class LoadError(RepositoryError):
    pass


class UploadError(RepositoryError):
    pass


class InsertError(RepositoryError):
    pass


class UpdateError(RepositoryError):
    pass


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _extract_missing_column_name(message: str) -> str | None:
    # Handles messages like:
    # "Could not find the 'latitude' column of 'submissions' in the schema cache"
    patterns = [
        r"'([^']+)'\s+column",
        r"column\s+'([^']+)'",
        r'Could not find the "([^"]+)" column',
    ]
    for pat in patterns:
        m = re.search(pat, message, flags=re.IGNORECASE)
        if m:
            return m.group(1)
    return None


class DatasetRepository:
    """Data-access contract shared by the wizard, the review console and the API."""

    def list_districts(self) -> list[dict[str, Any]]:
        raise NotImplementedError

    def list_submissions(self) -> list[dict[str, Any]]:
        raise NotImplementedError

    def get_submission(self, submission_id: str) -> dict[str, Any] | None:
        raise NotImplementedError

    def list_coverage(self) -> list[dict[str, Any]]:
        raise NotImplementedError

    def upload_blob(self, path: str, content: bytes, content_type: str | None = None) -> str:
        raise NotImplementedError

    def public_url(self, path: str) -> str:
        raise NotImplementedError

    def insert_submission(self, row: dict[str, Any]) -> dict[str, Any]:
        raise NotImplementedError

    def update_submission_status(
        self,
        submission_id: str,
        status: str,
        reviewed_at: str,
        reviewed_by: str,
        admin_notes: str | None = None,
    ) -> dict[str, Any]:
        raise NotImplementedError

    def list_blobs(self, prefix: str) -> list[str]:
        raise NotImplementedError

    def remove_blobs(self, paths: list[str]) -> list[str]:
        raise NotImplementedError


class InMemoryRepository(DatasetRepository):
    def __init__(
        self,
        districts: Iterable[dict[str, Any] | District] | None = None,
        *,
        public_base_url: str = "memory://submission-images",
    ) -> None:
        self._lock = RLock()
        self._districts: dict[str, dict[str, Any]] = {}
        self._submissions: dict[str, dict[str, Any]] = {}
        self._blobs: dict[str, tuple[bytes, str | None]] = {}
        self.public_base_url = public_base_url.rstrip("/")
        for district in districts or []:
            self.add_district(district)

    def add_district(self, district: dict[str, Any] | District) -> dict[str, Any]:
        if isinstance(district, District):
            row = {"id": district.id, "state": district.state, "district_name": district.district_name}
        else:
            row = dict(district)
            row.setdefault("id", str(uuid4()))
        with self._lock:
            self._districts[str(row["id"])] = row
            return dict(row)

    def _join(self, row: dict[str, Any]) -> dict[str, Any]:
        district = self._districts.get(str(row.get("district_id")))
        return {**row, "districts": dict(district) if district else None}

    def list_districts(self) -> list[dict[str, Any]]:
        with self._lock:
            rows = sorted(
                self._districts.values(),
                key=lambda r: (str(r.get("state", "")), str(r.get("district_name", ""))),
            )
            return [dict(r) for r in rows]

    def list_submissions(self) -> list[dict[str, Any]]:
        with self._lock:
            rows = sorted(
                self._submissions.values(),
                key=lambda r: str(r.get("submitted_at", "")),
                reverse=True,
            )
            return [self._join(r) for r in rows]

    def get_submission(self, submission_id: str) -> dict[str, Any] | None:
        with self._lock:
            row = self._submissions.get(submission_id)
            return self._join(row) if row else None

    def list_coverage(self) -> list[dict[str, Any]]:
        with self._lock:
            counts: dict[str, dict[str, Any]] = {}
            for row in self._submissions.values():
                district_id = str(row.get("district_id"))
                stats = counts.setdefault(
                    district_id,
                    {
                        "district_id": district_id,
                        "total_submissions": 0,
                        "pending_count": 0,
                        "approved_count": 0,
                        "rejected_count": 0,
                    },
                )
                stats["total_submissions"] += 1
                stats[f"{row.get('status')}_count"] += 1
            rows = sorted(counts.values(), key=lambda r: r["total_submissions"], reverse=True)
            return [self._join(r) for r in rows]

    def upload_blob(self, path: str, content: bytes, content_type: str | None = None) -> str:
        with self._lock:
            if path in self._blobs:
                raise UploadError(f"Upload failed for {path}: object already exists")
            self._blobs[path] = (bytes(content), content_type)
            return path

    def public_url(self, path: str) -> str:
        return f"{self.public_base_url}/{quote(path, safe='/')}"

    def insert_submission(self, row: dict[str, Any]) -> dict[str, Any]:
        with self._lock:
            if str(row.get("district_id")) not in self._districts:
                raise InsertError(f"Insert failed for {SUBMISSIONS_TABLE}: unknown district {row.get('district_id')}")
            item = {
                "id": row.get("id") or str(uuid4()),
                "submitted_at": row.get("submitted_at") or _utc_now(),
                "reviewed_at": None,
                "reviewed_by": None,
                "admin_notes": None,
                **row,
            }
            self._submissions[str(item["id"])] = item
            return dict(item)

    def update_submission_status(
        self,
        submission_id: str,
        status: str,
        reviewed_at: str,
        reviewed_by: str,
        admin_notes: str | None = None,
    ) -> dict[str, Any]:
        with self._lock:
            existing = self._submissions.get(submission_id)
            if not existing:
                raise UpdateError(f"Update failed for submission {submission_id}: not found")
            existing.update(
                {
                    "status": status,
                    "reviewed_at": reviewed_at,
                    "reviewed_by": reviewed_by,
                    "admin_notes": admin_notes,
                }
            )
            return dict(existing)

    def list_blobs(self, prefix: str) -> list[str]:
        with self._lock:
            return sorted(p for p in self._blobs if p.startswith(prefix))

    def remove_blobs(self, paths: list[str]) -> list[str]:
        with self._lock:
            removed = [p for p in paths if p in self._blobs]
            for path in removed:
                del self._blobs[path]
            return removed

    def blob(self, path: str) -> bytes | None:
        with self._lock:
            entry = self._blobs.get(path)
            return entry[0] if entry else None


class SupabaseRepository(DatasetRepository):
    def __init__(self, client: Any, *, bucket: str | None = None) -> None:
        self.client = client
        self.bucket = bucket or settings.storage_bucket

    def _storage(self) -> Any:
        return self.client.storage.from_(self.bucket)

    def _select(self, table: str, columns: str, order: list[tuple[str, bool]]) -> list[dict[str, Any]]:
        try:
            q = self.client.table(table).select(columns)
            for column, desc in order:
                q = q.order(column, desc=desc)
            res = q.execute()
        except Exception as exc:
            raise LoadError(f"Load failed for {table}: {exc}") from exc
        return [dict(r) for r in (res.data or [])]

    def list_districts(self) -> list[dict[str, Any]]:
        return self._select(DISTRICTS_TABLE, "*", [("state", False), ("district_name", False)])

    def list_submissions(self) -> list[dict[str, Any]]:
        return self._select(SUBMISSIONS_TABLE, DISTRICT_JOIN, [("submitted_at", True)])

    def get_submission(self, submission_id: str) -> dict[str, Any] | None:
        try:
            res = self.client.table(SUBMISSIONS_TABLE).select(DISTRICT_JOIN).eq("id", submission_id).limit(1).execute()
        except Exception as exc:
            raise LoadError(f"Load failed for submission {submission_id}: {exc}") from exc
        if not res.data:
            return None
        return dict(res.data[0])

    def list_coverage(self) -> list[dict[str, Any]]:
        return self._select(COVERAGE_TABLE, DISTRICT_JOIN, [("total_submissions", True)])

    def upload_blob(self, path: str, content: bytes, content_type: str | None = None) -> str:
        options = {"content-type": content_type} if content_type else None
        try:
            if options:
                self._storage().upload(path, content, options)
            else:
                self._storage().upload(path, content)
        except Exception as exc:
            raise UploadError(f"Upload failed for {path}: {exc}") from exc
        return path

    def public_url(self, path: str) -> str:
        return str(self._storage().get_public_url(path))

    def insert_submission(self, row: dict[str, Any]) -> dict[str, Any]:
        payload = dict(row)
        payload.setdefault("id", str(uuid4()))
        # Retry by dropping optional columns reported missing by the PostgREST schema cache.
        for _ in range(len(OPTIONAL_SUBMISSION_COLUMNS) + 1):
            try:
                res = self.client.table(SUBMISSIONS_TABLE).insert(payload).execute()
                if not res.data:
                    raise InsertError(f"Insert failed for {SUBMISSIONS_TABLE}")
                return dict(res.data[0])
            except InsertError:
                raise
            except Exception as exc:
                missing_col = _extract_missing_column_name(str(exc))
                if missing_col in OPTIONAL_SUBMISSION_COLUMNS and missing_col in payload:
                    logger.warning("repository.column_dropped table=%s column=%s", SUBMISSIONS_TABLE, missing_col)
                    payload.pop(missing_col, None)
                    continue
                raise InsertError(f"Insert failed for {SUBMISSIONS_TABLE}: {exc}") from exc
        raise InsertError(f"Insert failed for {SUBMISSIONS_TABLE}: too many schema-mismatch retries")

    def update_submission_status(
        self,
        submission_id: str,
        status: str,
        reviewed_at: str,
        reviewed_by: str,
        admin_notes: str | None = None,
    ) -> dict[str, Any]:
        payload = {
            "status": status,
            "reviewed_at": reviewed_at,
            "reviewed_by": reviewed_by,
            "admin_notes": admin_notes,
        }
        try:
            res = self.client.table(SUBMISSIONS_TABLE).update(payload).eq("id", submission_id).execute()
        except Exception as exc:
            raise UpdateError(f"Update failed for submission {submission_id}: {exc}") from exc
        if not res.data:
            raise UpdateError(f"Update failed for submission {submission_id}")
        return dict(res.data[0])

    def list_blobs(self, prefix: str) -> list[str]:
        folder = prefix.rstrip("/")
        paths: list[str] = []
        offset = 0
        while True:
            try:
                entries = self._storage().list(folder, {"limit": LIST_PAGE_SIZE, "offset": offset}) or []
            except Exception as exc:
                raise LoadError(f"Listing failed for {folder}: {exc}") from exc
            # Folder placeholders come back without an id.
            paths.extend(f"{folder}/{e['name']}" for e in entries if e.get("id") and e.get("name"))
            if len(entries) < LIST_PAGE_SIZE:
                return paths
            offset += LIST_PAGE_SIZE

    def remove_blobs(self, paths: list[str]) -> list[str]:
        if not paths:
            return []
        try:
            out = self._storage().remove(list(paths)) or []
        except Exception as exc:
            raise RepositoryError(f"Remove failed: {exc}") from exc
        return [str(e.get("name")) for e in out if isinstance(e, dict) and e.get("name")]


class SupabaseRESTRepository(DatasetRepository):
    def __init__(self, *, base_url: str, service_key: str, bucket: str | None = None) -> None:
        self.base_url = base_url.rstrip("/")
        self.service_key = service_key
        self.bucket = bucket or settings.storage_bucket

    def _headers(self, include_json: bool = True) -> dict[str, str]:
        h = {
            "apikey": self.service_key,
            "Authorization": f"Bearer {self.service_key}",
            "Prefer": "return=representation",
        }
        if include_json:
            h["Content-Type"] = "application/json"
        return h

    def _rest(
        self,
        method: str,
        table: str,
        *,
        params: dict[str, Any] | None = None,
        payload: dict[str, Any] | None = None,
    ) -> list[dict[str, Any]]:
        url = f"{self.base_url}/rest/v1/{table}"
        res = requests.request(
            method,
            url,
            params=params,
            json=payload,
            headers=self._headers(include_json=True),
            timeout=20,
        )
        if res.status_code >= 400:
            raise RepositoryError(f"Supabase REST error [{res.status_code}] {res.text[:300]}")
        try:
            data = res.json()
        except ValueError:
            data = []
        if isinstance(data, list):
            return [dict(r) for r in data]
        if isinstance(data, dict):
            return [data]
        return []

    def _load(self, table: str, params: dict[str, Any]) -> list[dict[str, Any]]:
        try:
            return self._rest("GET", table, params=params)
        except (RepositoryError, requests.RequestException) as exc:
            raise LoadError(f"Load failed for {table}: {exc}") from exc

    def _object_url(self, path: str) -> str:
        return f"{self.base_url}/storage/v1/object/{self.bucket}/{quote(path, safe='/')}"

    def list_districts(self) -> list[dict[str, Any]]:
        return self._load(DISTRICTS_TABLE, {"select": "*", "order": "state.asc,district_name.asc"})

    def list_submissions(self) -> list[dict[str, Any]]:
        return self._load(SUBMISSIONS_TABLE, {"select": DISTRICT_JOIN, "order": "submitted_at.desc"})

    def get_submission(self, submission_id: str) -> dict[str, Any] | None:
        out = self._load(SUBMISSIONS_TABLE, {"select": DISTRICT_JOIN, "id": f"eq.{submission_id}", "limit": 1})
        return out[0] if out else None

    def list_coverage(self) -> list[dict[str, Any]]:
        return self._load(COVERAGE_TABLE, {"select": DISTRICT_JOIN, "order": "total_submissions.desc"})

    def upload_blob(self, path: str, content: bytes, content_type: str | None = None) -> str:
        headers = self._headers(include_json=False)
        headers.pop("Prefer", None)
        headers["Content-Type"] = content_type or "application/octet-stream"
        headers["x-upsert"] = "false"
        try:
            res = requests.post(self._object_url(path), data=content, headers=headers, timeout=60)
        except requests.RequestException as exc:
            raise UploadError(f"Upload failed for {path}: {exc}") from exc
        if res.status_code >= 400:
            raise UploadError(f"Upload failed for {path} [{res.status_code}] {res.text[:300]}")
        return path

    def public_url(self, path: str) -> str:
        return f"{self.base_url}/storage/v1/object/public/{self.bucket}/{quote(path, safe='/')}"

    def insert_submission(self, row: dict[str, Any]) -> dict[str, Any]:
        payload = dict(row)
        payload.setdefault("id", str(uuid4()))
        for _ in range(len(OPTIONAL_SUBMISSION_COLUMNS) + 1):
            try:
                out = self._rest("POST", SUBMISSIONS_TABLE, payload=payload)
            except (RepositoryError, requests.RequestException) as exc:
                missing_col = _extract_missing_column_name(str(exc))
                if missing_col in OPTIONAL_SUBMISSION_COLUMNS and missing_col in payload:
                    logger.warning("repository.column_dropped table=%s column=%s", SUBMISSIONS_TABLE, missing_col)
                    payload.pop(missing_col, None)
                    continue
                raise InsertError(f"Insert failed for {SUBMISSIONS_TABLE}: {exc}") from exc
            if not out:
                raise InsertError(f"Insert failed for {SUBMISSIONS_TABLE}")
            return out[0]
        raise InsertError(f"Insert failed for {SUBMISSIONS_TABLE}: too many schema-mismatch retries")

    def update_submission_status(
        self,
        submission_id: str,
        status: str,
        reviewed_at: str,
        reviewed_by: str,
        admin_notes: str | None = None,
    ) -> dict[str, Any]:
        payload = {
            "status": status,
            "reviewed_at": reviewed_at,
            "reviewed_by": reviewed_by,
            "admin_notes": admin_notes,
        }
        try:
            out = self._rest("PATCH", SUBMISSIONS_TABLE, params={"id": f"eq.{submission_id}"}, payload=payload)
        except (RepositoryError, requests.RequestException) as exc:
            raise UpdateError(f"Update failed for submission {submission_id}: {exc}") from exc
        if not out:
            raise UpdateError(f"Update failed for submission {submission_id}")
        return out[0]

    def list_blobs(self, prefix: str) -> list[str]:
        folder = prefix.rstrip("/")
        paths: list[str] = []
        offset = 0
        while True:
            try:
                res = requests.post(
                    f"{self.base_url}/storage/v1/object/list/{self.bucket}",
                    json={"prefix": folder, "limit": LIST_PAGE_SIZE, "offset": offset},
                    headers=self._headers(include_json=True),
                    timeout=20,
                )
            except requests.RequestException as exc:
                raise LoadError(f"Listing failed for {folder}: {exc}") from exc
            if res.status_code >= 400:
                raise LoadError(f"Listing failed for {folder} [{res.status_code}] {res.text[:300]}")
            entries = res.json() or []
            paths.extend(f"{folder}/{e['name']}" for e in entries if e.get("id") and e.get("name"))
            if len(entries) < LIST_PAGE_SIZE:
                return paths
            offset += LIST_PAGE_SIZE

    def remove_blobs(self, paths: list[str]) -> list[str]:
        if not paths:
            return []
        try:
            res = requests.delete(
                f"{self.base_url}/storage/v1/object/{self.bucket}",
                json={"prefixes": list(paths)},
                headers=self._headers(include_json=True),
                timeout=20,
            )
        except requests.RequestException as exc:
            raise RepositoryError(f"Remove failed: {exc}") from exc
        if res.status_code >= 400:
            raise RepositoryError(f"Remove failed [{res.status_code}] {res.text[:300]}")
        return [str(e.get("name")) for e in (res.json() or []) if isinstance(e, dict) and e.get("name")]


def build_repository() -> tuple[DatasetRepository, bool, str | None]:
    client, client_err = get_supabase_client()

    if client is not None:
        try:
            # Connectivity + schema check on the reference table.
            client.table(DISTRICTS_TABLE).select("id").limit(1).execute()
            logger.info("repository.selected backend=supabase")
            return SupabaseRepository(client), True, None
        except Exception as exc:
            logger.warning("repository.supabase_unavailable error=%s", exc)
            return (
                InMemoryRepository(),
                False,
                f"Supabase unavailable or schema mismatch ({exc}). Using in-memory repository.",
            )

    # Fallback path when supabase-py isn't available: use REST directly.
    if settings.supabase_url_valid() and settings.supabase_key:
        try:
            repo = SupabaseRESTRepository(base_url=settings.supabase_url, service_key=settings.supabase_key)
            repo._rest("GET", DISTRICTS_TABLE, params={"select": "id", "limit": 1})
            logger.info("repository.selected backend=supabase_rest")
            return repo, True, None
        except (RepositoryError, requests.RequestException) as exc:
            logger.warning("repository.supabase_rest_unavailable error=%s", exc)
            return (
                InMemoryRepository(),
                False,
                f"Supabase REST unavailable or schema mismatch ({exc}). Using in-memory repository.",
            )

    logger.info("repository.selected backend=memory reason=%s", client_err)
    return InMemoryRepository(), False, f"{client_err or 'Supabase not configured'}; using in-memory repository."
