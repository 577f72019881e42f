from __future__ import annotations

import re
import secrets
import string

from pydantic import BaseModel

from tripsync.core.errors import IdentifierInvalid
from tripsync.providers.base import BackupStore

SYNC_ID_RE = re.compile(r"^[A-Z0-9-]+$")
SYNC_ID_ALPHABET = string.ascii_uppercase + string.digits
DEFAULT_MIN_LENGTH = 4
GENERATED_LENGTH = 8


def normalize_sync_id(value: str | None) -> str:
    return (value or "").strip().upper()


def validate_sync_id(value: str | None, min_length: int = DEFAULT_MIN_LENGTH) -> str:
    """Return the normalized identifier or raise before any network call."""
    sync_id = normalize_sync_id(value)
    if len(sync_id) < min_length:
        raise IdentifierInvalid(f"sync_id_too_short: min_length={min_length}")
    if not SYNC_ID_RE.match(sync_id):
        raise IdentifierInvalid("sync_id_invalid_characters: use A-Z, 0-9 and '-'")
    return sync_id


def generate_sync_id(length: int = GENERATED_LENGTH) -> str:
    return "".join(secrets.choice(SYNC_ID_ALPHABET) for _ in range(length))


class SyncIdCheck(BaseModel):
    sync_id: str
    current: str = ""
    unchanged: bool = False
    # True when the backup store already holds data under `sync_id`; switching
    # to it and syncing will merge into (and overwrite) that blob.
    in_use: bool = False


def check_sync_id_change(
    store: BackupStore,
    new_id: str,
    current_id: str = "",
    min_length: int = DEFAULT_MIN_LENGTH,
) -> SyncIdCheck:
    sync_id = validate_sync_id(new_id, min_length=min_length)
    current = normalize_sync_id(current_id)
    if sync_id == current:
        return SyncIdCheck(sync_id=sync_id, current=current, unchanged=True)
    return SyncIdCheck(sync_id=sync_id, current=current, in_use=store.fetch(sync_id) is not None)
