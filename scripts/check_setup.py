from __future__ import annotations

import json
import sys
from pathlib import Path

import requests

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from visual_dataset.config import settings
from visual_dataset.infra.repositories import COVERAGE_TABLE, DISTRICTS_TABLE, SUBMISSIONS_TABLE


def probe(method: str, url: str, headers: dict[str, str], **kwargs) -> tuple[int | None, str]:
    try:
        resp = requests.request(method, url, headers=headers, timeout=20, **kwargs)
    except requests.RequestException as exc:
        return None, str(exc)
    return resp.status_code, resp.text[:200]


def key_kind(key: str) -> str:
    if key.startswith("sb_secret_"):
        return "service"
    if key.startswith("sb_publishable_"):
        return "publishable"
    return "jwt_or_unknown"


def main() -> int:
    url = settings.supabase_url
    key = settings.supabase_key
    bucket = settings.storage_bucket

    print("== ENV VALIDATION ==")
    print(
        json.dumps(
            {
                "APP_ENV": settings.app_env,
                "SUPABASE_URL_VALID": settings.supabase_url_valid(),
                "SUPABASE_KEY_PRESENT": settings.supabase_key_present(),
                "SUPABASE_KEY_TYPE": key_kind(key),
                "SUPABASE_STORAGE_BUCKET": bucket,
            },
            indent=2,
        )
    )

    if not settings.supabase_url_valid() or not key:
        print("\nFix SUPABASE_URL/SUPABASE_KEY before connectivity checks.")
        return 1

    auth = {"apikey": key, "Authorization": f"Bearer {key}"}
    failures = 0

    print("\n== CONNECTIVITY CHECKS ==")
    for table in (DISTRICTS_TABLE, SUBMISSIONS_TABLE, COVERAGE_TABLE):
        status, detail = probe("GET", f"{url}/rest/v1/{table}", auth, params={"select": "*", "limit": 1})
        print(f"table_{table}: status={status}")
        if status is None or status >= 400:
            failures += 1
            print(f"  detail={detail}")

    status, detail = probe(
        "POST",
        f"{url}/storage/v1/object/list/{bucket}",
        auth,
        json={"prefix": "", "limit": 1},
    )
    print(f"storage_bucket_{bucket}: status={status}")
    if status is None or status >= 400:
        failures += 1
        print(f"  detail={detail}")
        print("  note=create a public bucket with this name, or set SUPABASE_STORAGE_BUCKET.")

    return 1 if failures else 0


if __name__ == "__main__":
    raise SystemExit(main())
