"""Artifact storage for gate signatures and reconciliation snapshots.

Artifacts are written once under a base directory and addressed by a
DataReference carrying a SHA256 hash, so a stored signature can be
verified when it is read back.
"""

import hashlib
import json
from datetime import datetime
from pathlib import Path
from typing import Any, Union

from core.models.refs import DataReference

_EXTENSIONS = {
    "image/png": ".png",
    "image/jpeg": ".jpg",
    "image/svg+xml": ".svg",
    "application/json": ".json",
}


def _compute_sha256(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def put_bytes(data: bytes, path: Path, content_type: str = "application/octet-stream") -> DataReference:
    """Write bytes to path and return a DataReference describing them."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(data)

    return DataReference(
        storage_uri=str(path.absolute()),
        content_hash=_compute_sha256(data),
        content_type=content_type,
        size_bytes=len(data),
        stored_at=datetime.utcnow(),
    )


def get_bytes(ref: DataReference, validate_hash: bool = True) -> bytes:
    """Read an artifact back from its DataReference.

    Raises:
        FileNotFoundError: If artifact path doesn't exist
        ValueError: If hash validation fails
    """
    path = Path(ref.storage_uri)
    if not path.exists():
        raise FileNotFoundError(f"Artifact not found: {ref.storage_uri}")

    data = path.read_bytes()
    if validate_hash:
        actual_hash = _compute_sha256(data)
        if actual_hash != ref.content_hash:
            raise ValueError(
                f"Hash mismatch for {ref.storage_uri}: "
                f"expected {ref.content_hash}, got {actual_hash}"
            )
    return data


class ArtifactStore:
    """Artifact store rooted at a base directory.

    Layout:
        signatures/<shipment_id>/<timestamp>.<ext>
        reconciliation/<sales_order_id>/<timestamp>.json
    """

    def __init__(self, base_path: Union[str, Path]):
        self.base_path = Path(base_path)
        self.base_path.mkdir(parents=True, exist_ok=True)

    def put_signature(self, shipment_id: str, data: bytes,
                      content_type: str = "image/png") -> DataReference:
        """Store a gate signature image for a shipment."""
        stamp = datetime.utcnow().strftime("%Y%m%dT%H%M%S%f")
        ext = _EXTENSIONS.get(content_type, ".bin")
        path = self.base_path / "signatures" / shipment_id / f"{stamp}{ext}"
        return put_bytes(data, path, content_type)

    def put_report(self, sales_order_id: str, report: Any) -> DataReference:
        """Store a JSON snapshot of a reconciliation report."""
        if hasattr(report, "model_dump"):
            payload = report.model_dump(mode="json")
        else:
            payload = report
        data = json.dumps(payload, indent=2, ensure_ascii=False).encode("utf-8")
        stamp = datetime.utcnow().strftime("%Y%m%dT%H%M%S%f")
        path = self.base_path / "reconciliation" / sales_order_id / f"{stamp}.json"
        return put_bytes(data, path, "application/json")

    def get_bytes(self, ref: DataReference, validate_hash: bool = True) -> bytes:
        return get_bytes(ref, validate_hash)

    def get_json(self, ref: DataReference, validate_hash: bool = True) -> dict:
        return json.loads(get_bytes(ref, validate_hash).decode("utf-8"))
