"""Archive extraction for downloaded images.

This module handles:
- Detecting compressed image files
- Extracting .zip, .tar* and .gz archives with the standard library
- Extracting .7z archives through the system 7z binary
- Locating the image inside an extracted archive
"""

from __future__ import annotations

import gzip
import logging
import shutil
import subprocess
import tarfile
import zipfile
from pathlib import Path, PurePosixPath

logger = logging.getLogger(__name__)

# Binaries tried, in order, for .7z archives
SEVEN_ZIP_BINARIES = ("7z", "7za", "7zz")

TAR_SUFFIXES = (".tar", ".tar.gz", ".tgz", ".tar.xz", ".tar.bz2")

IMAGE_SUFFIX = ".img"


class ExtractionError(Exception):
    """Raised when archive extraction fails."""

    def __init__(self, message: str, code: str = "extraction_error") -> None:
        """Initialize ExtractionError.

        Args:
            message: Error description.
            code: Error code for structured error handling.
        """
        super().__init__(message)
        self.code = code


def _archive_kind(path: Path) -> str | None:
    name = path.name.lower()
    if name.endswith(".zip"):
        return "zip"
    if name.endswith(".7z"):
        return "7z"
    if name.endswith(TAR_SUFFIXES):
        return "tar"
    if name.endswith(".gz"):
        return "gz"
    return None


def is_compressed_file(path: str | Path) -> bool:
    """Whether the file name has a supported archive extension."""
    return _archive_kind(Path(path)) is not None


def _check_member_name(archive_path: Path, name: str) -> None:
    member = PurePosixPath(name.replace("\\", "/"))
    if member.is_absolute() or ".." in member.parts:
        raise ExtractionError(
            f"Refusing to extract {name} from {archive_path.name}: path traversal detected",
            code="path_traversal",
        )


def _find_seven_zip() -> str:
    for name in SEVEN_ZIP_BINARIES:
        found = shutil.which(name)
        if found:
            return found
    raise ExtractionError(
        "No 7z binary found (install p7zip or 7-Zip)",
        code="missing_tool",
    )


def _run_seven_zip(args: list[str], archive_path: Path) -> str:
    # List args, no shell
    result = subprocess.run(
        [_find_seven_zip(), *args],
        capture_output=True,
        text=True,
        check=False,
    )
    if result.returncode != 0:
        raise ExtractionError(
            f"Failed to extract {archive_path}: {result.stderr.strip() or result.stdout.strip()}",
            code="7z_error",
        )
    return result.stdout


def list_archive(archive_path: Path) -> list[str]:
    """List member names of an archive.

    Raises:
        ExtractionError: If the archive cannot be read.
    """
    archive_path = Path(archive_path)
    kind = _archive_kind(archive_path)

    try:
        if kind == "zip":
            with zipfile.ZipFile(archive_path) as zf:
                return [info.filename for info in zf.infolist() if not info.is_dir()]
        if kind == "tar":
            with tarfile.open(archive_path) as tar:
                return [member.name for member in tar.getmembers() if member.isfile()]
        if kind == "gz":
            return [archive_path.name[: -len(".gz")]]
        if kind == "7z":
            output = _run_seven_zip(["l", "-slt", "-ba", str(archive_path)], archive_path)
            return [
                line.split("=", 1)[1].strip()
                for line in output.splitlines()
                if line.startswith("Path = ")
            ]
    except (zipfile.BadZipFile, tarfile.TarError) as e:
        raise ExtractionError(f"Could not read {archive_path}: {e}", code="corrupt_archive") from e

    raise ExtractionError(
        f"Unsupported archive format: {archive_path.name}",
        code="unsupported_format",
    )


def extract_archive(archive_path: Path, dest_dir: Path) -> Path:
    """Extract an archive into a directory.

    Args:
        archive_path: Archive file.
        dest_dir: Output directory (created if missing).

    Returns:
        The output directory.

    Raises:
        ExtractionError: If the format is unsupported, a member would
            escape dest_dir, or extraction fails.
    """
    archive_path = Path(archive_path)
    dest_dir = Path(dest_dir)
    kind = _archive_kind(archive_path)
    if kind is None:
        raise ExtractionError(
            f"Unsupported archive format: {archive_path.name}",
            code="unsupported_format",
        )

    logger.info("Extracting %s to %s", archive_path.name, dest_dir)
    dest_dir.mkdir(parents=True, exist_ok=True)

    try:
        if kind == "zip":
            with zipfile.ZipFile(archive_path) as zf:
                for info in zf.infolist():
                    _check_member_name(archive_path, info.filename)
                zf.extractall(dest_dir)

        elif kind == "tar":
            with tarfile.open(archive_path) as tar:
                members = tar.getmembers()
                if not members:
                    raise ExtractionError(
                        f"Archive {archive_path} is empty",
                        code="empty_archive",
                    )
                for member in members:
                    _check_member_name(archive_path, member.name)
                tar.extractall(dest_dir, filter="data")

        elif kind == "gz":
            target = dest_dir / archive_path.name[: -len(".gz")]
            with gzip.open(archive_path, "rb") as src, target.open("wb") as dst:
                shutil.copyfileobj(src, dst)

        else:
            _run_seven_zip(
                ["x", "-y", f"-o{dest_dir}", str(archive_path)],
                archive_path,
            )

    except zipfile.BadZipFile as e:
        raise ExtractionError(f"Failed to extract {archive_path}: {e}", code="zip_error") from e
    except tarfile.TarError as e:
        raise ExtractionError(f"Failed to extract {archive_path}: {e}", code="tar_error") from e
    except OSError as e:
        raise ExtractionError(
            f"OS error extracting {archive_path}: {e}",
            code="os_error",
        ) from e

    logger.info("Extracted %s", archive_path.name)
    return dest_dir


def find_extracted_image(dest_dir: Path, name: str | None = None) -> Path:
    """Locate the image file inside an extraction directory.

    Args:
        dest_dir: Directory an archive was extracted into.
        name: Expected file name; if None, the single *.img file is used.

    Returns:
        Path to the image.

    Raises:
        ExtractionError: If no image (or more than one candidate) is found.
    """
    dest_dir = Path(dest_dir)

    if name is not None:
        matches = sorted(p for p in dest_dir.rglob(name) if p.is_file())
        if not matches:
            raise ExtractionError(
                f"{name} not found in {dest_dir}",
                code="image_not_found",
            )
        return matches[0]

    images = sorted(p for p in dest_dir.rglob(f"*{IMAGE_SUFFIX}") if p.is_file())
    if len(images) == 1:
        return images[0]
    if not images:
        raise ExtractionError(f"No image found in {dest_dir}", code="image_not_found")
    raise ExtractionError(
        f"Multiple images found in {dest_dir}: {[p.name for p in images]}",
        code="ambiguous_image",
    )


__all__ = [
    "ExtractionError",
    "extract_archive",
    "find_extracted_image",
    "is_compressed_file",
    "list_archive",
]
