#!/usr/bin/env python3
"""Dump the Bazar OpenAPI schema to contracts/openapi.json for the admin frontend's client generator."""
import json
import os
import sys
from pathlib import Path


def main() -> int:
    repo_root = Path(__file__).resolve().parents[2]
    backend_root = Path(__file__).resolve().parents[1]

    sys.path.insert(0, str(backend_root))

    os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
    os.environ.setdefault("SECRET_KEY", "contract-test-secret")
    os.environ.setdefault("EMAIL_ENABLED", "false")

    from bazar.api import app  # noqa: PLC0415

    schema = app.openapi()
    out_path = Path(sys.argv[1]) if len(sys.argv) > 1 else repo_root / "contracts" / "openapi.json"
    out_path.parent.mkdir(parents=True, exist_ok=True)
    out_path.write_text(json.dumps(schema, indent=2, sort_keys=True, ensure_ascii=False) + "\n", encoding="utf-8")
    print(f"Wrote {out_path}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
