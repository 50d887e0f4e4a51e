from __future__ import annotations

import hashlib
import json
import os
import platform
import sys
import warnings
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, Mapping, Optional


def _now_iso() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


def _safe_git_sha() -> str | None:
    # Avoid shelling out; allow env override if CI sets it
    return os.environ.get("GIT_SHA") or None


def file_digest(path: Path, chunk_size: int = 1 << 20) -> str:
    h = hashlib.sha256()
    with Path(path).open("rb") as fh:
        for chunk in iter(lambda: fh.read(chunk_size), b""):
            h.update(chunk)
    return h.hexdigest()


def input_digests(paths: Mapping[str, Optional[Path]]) -> Dict[str, Dict[str, Any]]:
    """Path and SHA-256 of every named input that exists."""
    out: Dict[str, Dict[str, Any]] = {}
    for name, path in paths.items():
        if path is None:
            continue
        p = Path(path)
        out[name] = {"path": str(p), "sha256": file_digest(p) if p.exists() else None}
    return out


def write_provenance(
    out_dir: Path,
    filename: str = "provenance.json",
    inputs: Mapping[str, Optional[Path]] | None = None,
    extra: Dict[str, Any] | None = None,
) -> Optional[Path]:
    """Write a lightweight provenance record to `out_dir/filename`.

    Includes timestamp, Python version, platform, optional GIT_SHA env var,
    input digests and any extra fields provided by the caller (e.g. the study
    config). A write failure is reported as a RuntimeWarning; it never aborts
    the run.
    """
    payload: Dict[str, Any] = {
        "timestamp": _now_iso(),
        "python": sys.version.split()[0],
        "platform": platform.platform(),
        "git_sha": _safe_git_sha(),
        "inputs": input_digests(inputs or {}),
    }
    if extra:
        payload.update(extra)
    path = Path(out_dir) / filename
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(payload, indent=2, default=str))
    except OSError as exc:
        warnings.warn(f"Could not write provenance to {path}: {exc}", RuntimeWarning, stacklevel=2)
        return None
    return path


def list_outputs(out_dir: Path, names: Iterable[str]) -> Dict[str, str]:
    return {name: str(Path(out_dir) / name) for name in names}
