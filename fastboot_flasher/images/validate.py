"""Pre-flash checks on image files."""

from __future__ import annotations

from pathlib import Path

from fastboot_flasher.security import is_safe_file_path
from fastboot_flasher.types import ImageValidation

SUPPORTED_EXTENSIONS = (".img", ".bin", ".zip", ".7z", ".tar", ".gz")

MIN_IMAGE_SIZE = 1024 * 1024  # 1 MiB
MAX_IMAGE_SIZE = 10 * 1024 * 1024 * 1024  # 10 GiB

_SIZE_UNITS = ("Bytes", "KB", "MB", "GB", "TB")


def format_file_size(size: int) -> str:
    """Format a byte count for display, e.g. `1.5 MB`."""
    if size <= 0:
        return "0 Bytes"
    value = float(size)
    index = 0
    while value >= 1024 and index < len(_SIZE_UNITS) - 1:
        value /= 1024
        index += 1
    text = f"{value:.2f}".rstrip("0").rstrip(".")
    return f"{text} {_SIZE_UNITS[index]}"


def validate_image_file(
    path: str | Path,
    min_size: int = MIN_IMAGE_SIZE,
    max_size: int = MAX_IMAGE_SIZE,
    check_extension: bool = True,
) -> ImageValidation:
    """Collect the problems of an image file without raising.

    Args:
        path: Image file.
        min_size: Smallest acceptable size in bytes.
        max_size: Size above which a warning is added.
        check_extension: Require one of SUPPORTED_EXTENSIONS.

    Returns:
        ImageValidation with errors (fatal) and warnings (informational).
    """
    errors: list[str] = []
    warnings: list[str] = []
    path_str = str(path) if path else ""

    if not path_str:
        errors.append("Image path is empty")
        return ImageValidation(is_valid=False, errors=errors, warnings=warnings)

    path = Path(path_str)
    if check_extension and path.suffix.lower() not in SUPPORTED_EXTENSIONS:
        errors.append(
            f"Unsupported image format '{path.suffix}', "
            f"supported: {', '.join(SUPPORTED_EXTENSIONS)}"
        )

    if not is_safe_file_path(path_str):
        errors.append("Image path is invalid or contains illegal characters")

    try:
        size = path.stat().st_size
    except FileNotFoundError:
        errors.append(f"Image file not found: {path}")
    except OSError as e:
        errors.append(f"Could not read image file {path}: {e}")
    else:
        if not path.is_file():
            errors.append(f"Image path is not a file: {path}")
        elif size == 0:
            errors.append(f"Image file is empty: {path}")
        elif size < min_size:
            errors.append(
                f"Image file is too small ({format_file_size(size)}), "
                f"minimum: {format_file_size(min_size)}"
            )
        elif size > max_size:
            warnings.append(f"Image file is very large: {format_file_size(size)}")

    return ImageValidation(is_valid=not errors, errors=errors, warnings=warnings)


__all__ = [
    "MAX_IMAGE_SIZE",
    "MIN_IMAGE_SIZE",
    "SUPPORTED_EXTENSIONS",
    "format_file_size",
    "validate_image_file",
]
