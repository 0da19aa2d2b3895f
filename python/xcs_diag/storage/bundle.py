"""
Packaging of a collected staging root into a portable archive.

The archive is a gzip-compressed tarball containing the staging tree
plus a metadata document and a manifest listing every file with its
size and SHA-256 checksum.
"""

from __future__ import annotations

import hashlib
import io
import json
import platform
import tarfile
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from xcs_diag import __version__
from xcs_diag.exceptions import StorageError
from xcs_diag.logging import get_logger

logger = get_logger(__name__)


@dataclass
class BundleMetadata:
    """Metadata for a diagnostic bundle."""

    bundle_id: str
    name: str
    created_at: datetime
    hostname: str = field(default_factory=platform.node)
    collector_version: str = __version__
    format_version: str = "1.0"
    components: list[str] = field(default_factory=list)
    file_count: int = 0
    total_size_bytes: int = 0

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "bundle_id": self.bundle_id,
            "name": self.name,
            "created_at": self.created_at.isoformat(),
            "hostname": self.hostname,
            "collector_version": self.collector_version,
            "format_version": self.format_version,
            "components": self.components,
            "file_count": self.file_count,
            "total_size_bytes": self.total_size_bytes,
        }

    def to_json(self) -> str:
        """Serialize to JSON string."""
        return json.dumps(self.to_dict(), indent=2)


@dataclass
class BundleManifest:
    """Manifest listing all files in a bundle."""

    files: list[dict[str, Any]] = field(default_factory=list)

    def add_file(self, path: str, size_bytes: int, checksum: str, component: str) -> None:
        """Add a file to the manifest."""
        self.files.append(
            {
                "path": path,
                "size_bytes": size_bytes,
                "checksum": checksum,
                "component": component,
            }
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "files": self.files,
            "file_count": len(self.files),
            "total_size_bytes": sum(f["size_bytes"] for f in self.files),
        }

    def to_json(self) -> str:
        """Serialize to JSON string."""
        return json.dumps(self.to_dict(), indent=2)


class BundleArchiver:
    """Writes a staging root into a ``.tar.gz`` bundle."""

    METADATA_FILENAME = "bundle_metadata.json"
    MANIFEST_FILENAME = "bundle_manifest.json"

    def __init__(self, output_directory: Path, compression_level: int = 6) -> None:
        """
        Initialize the archiver.

        Args:
            output_directory: Directory receiving bundle files. Created if needed.
            compression_level: gzip compression level.
        """
        self.output_directory = Path(output_directory)
        self.compression_level = compression_level

    @staticmethod
    def generate_bundle_id(name: str) -> str:
        """Generate a bundle ID from a name prefix and the current UTC time."""
        timestamp = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S")
        return f"{name}_{timestamp}"

    @staticmethod
    def _calculate_file_checksum(path: Path) -> str:
        """Calculate SHA-256 checksum of a file."""
        sha256 = hashlib.sha256()
        with path.open("rb") as f:
            for chunk in iter(lambda: f.read(65536), b""):
                sha256.update(chunk)
        return sha256.hexdigest()

    def archive(self, staging_root: Path, name: str, bundle_id: str | None = None) -> Path:
        """
        Archive a staging root.

        Top-level directories of the staging root are recorded as components.
        Files are stored under ``<bundle_id>/`` inside the archive.

        Args:
            staging_root: Collected tree to package.
            name: Bundle name recorded in the metadata.
            bundle_id: Explicit bundle ID. Generated from name when omitted.

        Returns:
            Path to the created archive.

        Raises:
            StorageError: If the archive cannot be written. Partial output is removed.
        """
        staging_root = Path(staging_root)
        bundle_id = bundle_id or self.generate_bundle_id(name)
        self.output_directory.mkdir(parents=True, exist_ok=True)
        bundle_path = self.output_directory / f"{bundle_id}.tar.gz"

        metadata = BundleMetadata(
            bundle_id=bundle_id,
            name=name,
            created_at=datetime.now(timezone.utc),
            components=sorted(p.name for p in staging_root.iterdir() if p.is_dir()),
        )
        manifest = BundleManifest()

        logger.info("bundle_archive_started", bundle_id=bundle_id, staging_root=str(staging_root))
        start_time = time.perf_counter()

        try:
            with tarfile.open(bundle_path, "w:gz", compresslevel=self.compression_level) as tar:
                for file_path in sorted(staging_root.rglob("*")):
                    if not file_path.is_file():
                        continue

                    relative_path = file_path.relative_to(staging_root)
                    arcname = f"{bundle_id}/{relative_path.as_posix()}"
                    tar.add(file_path, arcname=arcname)

                    manifest.add_file(
                        path=relative_path.as_posix(),
                        size_bytes=file_path.stat().st_size,
                        checksum=self._calculate_file_checksum(file_path),
                        component=relative_path.parts[0] if len(relative_path.parts) > 1 else "",
                    )

                metadata.file_count = len(manifest.files)
                metadata.total_size_bytes = manifest.to_dict()["total_size_bytes"]

                self._add_json_to_archive(tar, f"{bundle_id}/{self.METADATA_FILENAME}", metadata.to_json())
                self._add_json_to_archive(tar, f"{bundle_id}/{self.MANIFEST_FILENAME}", manifest.to_json())

        except (OSError, tarfile.TarError) as e:
            if bundle_path.exists():
                bundle_path.unlink()

            logger.exception("bundle_archive_failed", bundle_id=bundle_id, error=str(e))
            raise StorageError.archive_failed(str(bundle_path), str(e)) from e

        logger.info(
            "bundle_archived",
            bundle_id=bundle_id,
            path=str(bundle_path),
            file_count=metadata.file_count,
            size_bytes=bundle_path.stat().st_size,
            duration_seconds=round(time.perf_counter() - start_time, 3),
        )
        return bundle_path

    @staticmethod
    def _add_json_to_archive(tar: tarfile.TarFile, arcname: str, content: str) -> None:
        """Add a JSON document to the archive from memory."""
        data = content.encode("utf-8")
        info = tarfile.TarInfo(name=arcname)
        info.size = len(data)
        info.mtime = int(time.time())
        tar.addfile(info, io.BytesIO(data))
