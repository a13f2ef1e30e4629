from __future__ import annotations

import re
from pathlib import Path
from uuid import uuid4


def sanitize_filename(name: str) -> str:
    sanitized = re.sub(r"[^0-9A-Za-z_\-]+", "", name).strip()
    return sanitized[:48] or "clip"


def ensure_dir(path: Path) -> Path:
    path.mkdir(parents=True, exist_ok=True)
    return path


def unique_name(job_id: str, suffix: str) -> str:
    return f"{sanitize_filename(job_id)}_{uuid4().hex[:8]}{suffix}"
