# hls_runner/encoding/cleanup.py
"""Removal of a conversion's partial output."""

import logging
import os
import shutil

logger = logging.getLogger(__name__)


def _delete_item(item_path: str) -> bool:
    """
    Delete a single file or directory.

    Returns:
        bool: True if deletion was successful, False otherwise
    """
    try:
        if os.path.isdir(item_path) and not os.path.islink(item_path):
            shutil.rmtree(item_path)
        else:
            os.remove(item_path)
        logger.debug(f"Deleted {item_path}")
        return True
    except OSError as e:
        logger.warning(f"Failed to delete item {item_path}: {e}")
    return False


def cleanup(output_dir) -> int:
    """
    Remove every entry of an output directory, keeping the directory itself.

    Failures are logged and skipped; this function never raises. A missing
    directory is already clean.

    Args:
        output_dir: Directory to empty

    Returns:
        int: Number of entries removed
    """
    output_dir = os.fspath(output_dir)
    if not os.path.isdir(output_dir):
        logger.debug(f"Cleanup skipped: {output_dir} does not exist")
        return 0

    try:
        items = os.listdir(output_dir)
    except OSError as e:
        logger.warning(f"Cannot list {output_dir} for cleanup: {e}")
        return 0

    count = 0
    for item in items:
        if _delete_item(os.path.join(output_dir, item)):
            count += 1
    logger.info(f"Cleaned up {count} items from {output_dir}")
    return count
