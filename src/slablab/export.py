"""Atomic file output for SlabLab results."""
from __future__ import annotations

import json
import os
from typing import Dict, Iterable, Optional

import pandas as pd

from slablab.errors import OutputError
from slablab.models import ProjectConfig
from slablab.serialization import to_jsonable


def _atomic_replace(temp_path: str, final_path: str) -> None:
    os.replace(temp_path, final_path)


def ensure_output_dir(path: str) -> None:
    dirpath = os.path.dirname(path)
    if not dirpath:
        return
    try:
        os.makedirs(dirpath, exist_ok=True)
    except OSError as exc:
        raise OutputError(f"Cannot create output directory {dirpath}: {exc}") from exc


def write_text_atomic(path: str, lines: Iterable[str]) -> None:
    """Write ``lines`` to ``path`` through a temporary file and a rename."""
    ensure_output_dir(path)
    temp_path = path + ".tmp"
    try:
        with open(temp_path, "w", encoding="utf-8") as handle:
            for line in lines:
                handle.write(line)
                handle.write("\n")
        _atomic_replace(temp_path, path)
    except OSError as exc:
        raise OutputError(f"Cannot write {path}: {exc}") from exc


def write_dataframe(df: pd.DataFrame, path_csv: str) -> None:
    ensure_output_dir(path_csv)
    temp_csv = path_csv + ".tmp"
    try:
        df.to_csv(temp_csv, index=False)
        _atomic_replace(temp_csv, path_csv)
    except OSError as exc:
        raise OutputError(f"Cannot write {path_csv}: {exc}") from exc


def write_json(data, path: str) -> None:
    ensure_output_dir(path)
    temp_path = path + ".tmp"
    try:
        with open(temp_path, "w", encoding="utf-8") as handle:
            json.dump(to_jsonable(data), handle, indent=2)
        _atomic_replace(temp_path, path)
    except OSError as exc:
        raise OutputError(f"Cannot write {path}: {exc}") from exc


def export_run_metadata(
    project: ProjectConfig,
    summary: Dict[str, object],
    output_dir: Optional[str] = None,
) -> str:
    output_dir = output_dir or project.outputs.output_dir
    os.makedirs(output_dir, exist_ok=True)
    metadata = {
        "project": project.to_dict(),
        "summary": summary,
    }
    metadata_path = os.path.join(output_dir, "metadata.json")
    write_json(metadata, metadata_path)
    return metadata_path
