"""
Content fingerprints and base-state keys used for change detection.
"""

import hashlib


def compute_hash(text: str) -> str:
    """SHA-256 hex digest of UTF-8 text."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def notes_fingerprint(notes: str | None) -> str | None:
    """Fingerprint of a notes value.

    Missing and empty notes are the same value and both fingerprint to None,
    so a place whose notes were cleared compares equal to one that never had any.
    """
    if not notes:
        return None
    return compute_hash(notes)


def place_notes_key(place_id: int) -> str:
    return f"place_{place_id}"


def place_list_key(place_id: int, list_id: int) -> str:
    return f"place_{place_id}_list_{list_id}"
