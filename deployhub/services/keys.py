from __future__ import annotations

import secrets

DEPLOY_KEY_SUFFIX = ".lua"
DEPLOY_KEY_BYTES = 16
STORAGE_ROOT = "v1"
OWNER_PREFIX_LENGTH = 8


def generate_deploy_key() -> str:
    """Return 128 random bits as 32 hex chars plus the script suffix.

    Uniqueness rests on the randomness alone; the store is not consulted.
    """
    return secrets.token_hex(DEPLOY_KEY_BYTES) + DEPLOY_KEY_SUFFIX


def build_storage_path(owner_id: str, deploy_key: str) -> str:
    short_owner = str(owner_id)[:OWNER_PREFIX_LENGTH]
    return f"{STORAGE_ROOT}/{short_owner}/{deploy_key}"
