"""Artifact validation.

The only gate between "ffmpeg exited 0" and "safe to publish": a package
with a missing or empty rendition must never reach storage.
"""

import logging
import os

from vod_pipeline.modules.transcoding.abr import stream_dir_name, VARIANT_MANIFEST_NAME
from vod_pipeline.modules.transcoding.exceptions import ValidationError
from vod_pipeline.modules.transcoding.schemas import WorkingPackage

logger = logging.getLogger(__name__)


def collect_violations(package: WorkingPackage, min_manifest_bytes: int = 50) -> list[str]:
    """Check the package and return every problem found.

    Checks, in order: the master manifest exists; every rendition manifest
    exists; every rendition manifest is at least ``min_manifest_bytes``
    long; the master manifest references every rendition.

    Args:
        package: Package to check
        min_manifest_bytes: Smallest size a real variant playlist can have

    Returns:
        List of violations, empty when the package is valid
    """
    errors = []

    master_path = package.master_manifest_path
    master_text = None
    if not os.path.isfile(master_path):
        errors.append(f"master manifest missing: {master_path}")
    else:
        with open(master_path, "r", encoding="utf-8", errors="replace") as f:
            master_text = f.read()

    for i in range(package.rendition_count):
        manifest_path = package.variant_manifest_path(i)
        if not os.path.isfile(manifest_path):
            errors.append(f"rendition {i} manifest missing: {manifest_path}")
            continue
        size = os.path.getsize(manifest_path)
        if size < min_manifest_bytes:
            errors.append(
                f"rendition {i} manifest too small ({size} bytes < {min_manifest_bytes}): {manifest_path}"
            )

    if master_text is not None:
        for i in range(package.rendition_count):
            reference = f"{stream_dir_name(i)}/{VARIANT_MANIFEST_NAME}"
            if reference not in master_text:
                errors.append(f"master manifest does not reference {reference}")

    return errors


def validate_package(package: WorkingPackage, min_manifest_bytes: int = 50) -> WorkingPackage:
    """Validate a package, raising on any violation.

    Raises:
        ValidationError: With every violation found
    """
    errors = collect_violations(package, min_manifest_bytes)
    if errors:
        logger.warning(
            f"Package for video {package.video_id} failed validation with {len(errors)} error(s)",
            extra={"validation_errors": errors},
        )
        raise ValidationError(errors, video_id=package.video_id, work_dir=package.work_dir)
    return package
