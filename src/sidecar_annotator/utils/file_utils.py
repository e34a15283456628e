"""
File Utilities - encoding detection and small filesystem helpers
"""

import codecs
import shutil
from pathlib import Path
from typing import Optional, Union
import logging
import chardet

logger = logging.getLogger(__name__)

# Bytes inspected by the encoding detector
_DETECT_SAMPLE_BYTES = 10000


def detect_bytes_encoding(raw_data: bytes) -> str:
    """
    Detect the encoding of raw text bytes

    Args:
        raw_data: Bytes to inspect (only a leading sample is examined)

    Returns:
        Detected encoding name, 'utf-8' when detection is not confident
    """
    result = chardet.detect(raw_data[:_DETECT_SAMPLE_BYTES])
    encoding = result.get('encoding') or 'utf-8'
    confidence = result.get('confidence') or 0

    logger.debug(f"Detected encoding: {encoding} (confidence: {confidence:.2f})")

    if confidence < 0.5:
        return 'utf-8'
    return encoding


def decode_text_bytes(raw_data: bytes) -> str:
    """
    Decode text bytes, preferring UTF-8

    A UTF-8 byte order mark is stripped. Anything that is not valid UTF-8 is
    decoded with the encoding chardet detects, then with common fallbacks.

    Args:
        raw_data: Encoded text

    Returns:
        Decoded string
    """
    if raw_data.startswith(codecs.BOM_UTF8):
        raw_data = raw_data[len(codecs.BOM_UTF8):]
    try:
        return raw_data.decode('utf-8')
    except UnicodeDecodeError:
        pass

    encoding = detect_bytes_encoding(raw_data)
    fallback_encodings = [encoding, 'cp1252', 'latin-1']
    for candidate in fallback_encodings:
        try:
            text = raw_data.decode(candidate)
        except (UnicodeDecodeError, LookupError):
            continue
        logger.warning(f"Decoded non-UTF-8 input as {candidate}")
        return text

    # latin-1 accepts every byte, so this is only reached for exotic detector output
    return raw_data.decode('utf-8', errors='replace')


def create_backup(file_path: Union[str, Path], backup_suffix: str = ".backup") -> Optional[str]:
    """
    Create a backup copy next to a file

    Args:
        file_path: Path to the original file
        backup_suffix: Suffix to add to backup filename

    Returns:
        Path to backup file or None if there was nothing to back up
    """
    original_path = Path(file_path)
    if not original_path.exists():
        return None

    backup_path = original_path.with_suffix(original_path.suffix + backup_suffix)
    shutil.copy2(str(original_path), str(backup_path))

    logger.info(f"Created backup: {backup_path}")
    return str(backup_path)


def ensure_directory_exists(directory_path: Union[str, Path]) -> bool:
    """
    Ensure a directory exists, creating it if necessary

    Args:
        directory_path: Path to the directory

    Returns:
        True if directory exists or was created successfully
    """
    try:
        Path(directory_path).mkdir(parents=True, exist_ok=True)
        return True
    except OSError as e:
        logger.error(f"Error creating directory {directory_path}: {e}")
        return False
