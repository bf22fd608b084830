import logging
import os
from pathlib import Path

import paramiko

logger = logging.getLogger(__name__)


def load_or_create_host_key(path: str, bits: int = 2048) -> paramiko.RSAKey:
    """Load the persistent SSH host key, generating it on first start.

    The key must survive restarts, otherwise every client sees a host key
    mismatch.
    """
    key_path = Path(path)
    if key_path.exists():
        logger.info(f"Loading existing host key from {key_path}")
        return paramiko.RSAKey.from_private_key_file(str(key_path))

    logger.info(f"Generating new {bits}-bit RSA host key at {key_path}")
    key_path.parent.mkdir(parents=True, exist_ok=True)
    key = paramiko.RSAKey.generate(bits)
    key.write_private_key_file(str(key_path))
    os.chmod(key_path, 0o600)
    logger.info(f"Host key saved (fingerprint {key.get_fingerprint().hex()})")
    return key
