"""Files written by an analysis run.

Layout of an output directory::

    <output_dir>/
        config.yaml        effective configuration
        analysis.log
        summary.json       fitted models, diagnostics, peaks
        tables/*.csv
        figures/*.png, *.pdf
        report.html
        manifest.json      every file above with size and SHA-256
"""

import hashlib
import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import pandas as pd

logger = logging.getLogger(__name__)

GENERATOR = "foxrepro"
MANIFEST = "manifest.json"

# Manifest groups, matched against paths relative to the output directory
_ARTIFACT_GROUPS = {
    "stage1": ["config.yaml", "summary.json", "tables/*.csv"],
    "stage2": ["figures/*.png", "figures/*.pdf", "*.html"],
    "logs": ["*.log"],
}


def setup_output_directory(output_dir: Union[str, Path]) -> Path:
    """Create ``output_dir`` with its ``tables`` and ``figures`` folders."""
    root = Path(output_dir)
    for sub in ("tables", "figures"):
        (root / sub).mkdir(parents=True, exist_ok=True)
    logger.info(f"Output directory: {root}")
    return root


def write_summary_json(
    summary: Any,
    output_dir: Union[str, Path],
    filename: str = "summary.json",
) -> str:
    """Serialize a ``RunSummary`` with generation metadata.

    Returns:
        Path of the written file.
    """
    target = Path(output_dir) / filename
    target.parent.mkdir(parents=True, exist_ok=True)

    payload = summary.to_dict()
    payload["_generated_at"] = datetime.now().isoformat()
    payload["_generator"] = GENERATOR
    target.write_text(json.dumps(payload, indent=2, default=str))

    logger.info(f"Summary written to {target}")
    return str(target)


def write_table_csv(
    df: pd.DataFrame,
    output_dir: Union[str, Path],
    filename: str,
    index: bool = False,
) -> str:
    """Write ``df`` to ``<output_dir>/tables/<filename>`` and return the path."""
    target = Path(output_dir) / "tables" / filename
    target.parent.mkdir(parents=True, exist_ok=True)
    df.to_csv(target, index=index)
    logger.debug(f"Table written to {target}")
    return str(target)


def _sha256(path: Path, chunk_size: int = 1 << 16) -> str:
    digest = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(chunk_size), b""):
            digest.update(chunk)
    return digest.hexdigest()


def collect_output_manifest(output_dir: Union[str, Path]) -> Dict[str, Any]:
    """List the run's files by group with sizes and checksums.

    Checksums let a rerun with the same seed and data be compared file by
    file. The log is listed but changes between runs by construction.
    """
    root = Path(output_dir)
    files: Dict[str, List[Dict[str, Any]]] = {}
    for group, patterns in _ARTIFACT_GROUPS.items():
        entries = []
        for pattern in patterns:
            for path in sorted(root.glob(pattern)):
                entries.append(
                    {
                        "path": path.relative_to(root).as_posix(),
                        "size_bytes": path.stat().st_size,
                        "sha256": _sha256(path),
                    }
                )
        files[group] = entries

    return {
        "output_dir": str(root.resolve()),
        "generated_at": datetime.now().isoformat(),
        "generator": GENERATOR,
        "files": files,
    }


def write_manifest(
    output_dir: Union[str, Path],
    manifest: Optional[Dict[str, Any]] = None,
) -> str:
    """Write ``manifest.json``, collecting it first unless given."""
    if manifest is None:
        manifest = collect_output_manifest(output_dir)
    target = Path(output_dir) / MANIFEST
    target.write_text(json.dumps(manifest, indent=2))
    n_files = sum(len(v) for v in manifest["files"].values())
    logger.info(f"Manifest of {n_files} files written to {target}")
    return str(target)
