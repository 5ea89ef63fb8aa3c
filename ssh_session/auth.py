"""Private key discovery and loading for automatic public-key auth."""
import logging
import os
from pathlib import Path
from typing import List, Optional

import paramiko

logger = logging.getLogger('ssh_session.auth')

# Same search order as OpenSSH-style clients: modern keys first
DEFAULT_IDENTITY_FILES = ['id_ed25519', 'id_ecdsa', 'id_rsa']


def candidate_identity_files(ssh_dir: str, identity: Optional[str] = None) -> List[str]:
    """Return existing key files to try, configured identity first."""
    candidates = []
    if identity:
        candidates.append(os.path.expanduser(identity))

    ssh_path = Path(os.path.expanduser(ssh_dir))
    for key_name in DEFAULT_IDENTITY_FILES:
        candidates.append(str(ssh_path / key_name))

    seen = set()
    found = []
    for path in candidates:
        if path in seen:
            continue
        seen.add(path)
        if os.path.isfile(path):
            found.append(path)
    return found


def load_private_key(path: str, passphrase: Optional[str] = None) -> Optional[paramiko.PKey]:
    """Load a private key file, trying each supported key type in turn.

    Returns None when the file is not a usable key, including encrypted keys
    for which no passphrase was given.
    """
    key_types = [
        ('Ed25519', paramiko.Ed25519Key),
        ('ECDSA', paramiko.ECDSAKey),
        ('RSA', paramiko.RSAKey),
    ]

    for key_name, key_class in key_types:
        try:
            pkey = key_class.from_private_key_file(path, password=passphrase)
            logger.debug(f"Loaded {key_name} key from {path}")
            return pkey
        except paramiko.PasswordRequiredException:
            logger.info(f"Key {path} requires a passphrase, skipping")
            return None
        except (paramiko.SSHException, ValueError) as e:
            logger.debug(f"{path} is not a {key_name} key: {e}")
            continue
        except OSError as e:
            logger.warning(f"Cannot read key file {path}: {e}")
            return None

    logger.warning(f"Could not load private key {path}")
    return None
