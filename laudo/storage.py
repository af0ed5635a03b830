from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from laudo.config import get_settings
from laudo.types import CaseValidationError


def reports_root() -> Path:
    root = get_settings().data_dir / 'reports'
    root.mkdir(parents=True, exist_ok=True)
    return root


def write_bytes_atomic(path: Path, data: bytes) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + '.tmp')
    tmp.write_bytes(data)
    tmp.replace(path)


def read_json(path: Path) -> dict[str, Any]:
    try:
        payload = json.loads(path.read_text(encoding='utf-8'))
    except (OSError, ValueError) as exc:
        raise CaseValidationError(f'cannot read case file {path}: {exc}') from exc
    if not isinstance(payload, dict):
        raise CaseValidationError(f'case file {path} must hold a JSON object')
    return payload
