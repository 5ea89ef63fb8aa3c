"""Known-hosts verification of the server identity."""
import hashlib
import logging
import os
from contextlib import ExitStack
from typing import Dict, Optional

import paramiko
from paramiko.hostkeys import InvalidHostKey

from .constants import HostKeyState, PublicKeyHash
from .errors import TransportError, TrustError

_HASHES = {
    PublicKeyHash.SHA1: hashlib.sha1,
    PublicKeyHash.MD5: hashlib.md5,
    PublicKeyHash.SHA256: hashlib.sha256,
}


def publickey_hash(key: paramiko.PKey, hash_type: PublicKeyHash = PublicKeyHash.SHA1) -> bytes:
    """Digest of the key blob."""
    try:
        algorithm = _HASHES[PublicKeyHash(hash_type)]
    except (KeyError, ValueError):
        algorithm = hashlib.sha1
    return algorithm(key.asbytes()).digest()


def get_hexa(digest: bytes) -> str:
    """Render a digest as colon separated lowercase hex, e.g. ``4f:0a:…``."""
    return ":".join(f"{b:02x}" for b in digest)


def known_hosts_name(hostname: str, port: int) -> str:
    if port == 22:
        return hostname
    return f"[{hostname}]:{port}"


class TrustVerifier:
    """Decides whether the server's host key is acceptable.

    One verifier is built per ``verify_knownhost`` call. ``state`` holds the
    outcome of the last lookup and starts as UNKNOWN.
    """

    def __init__(self, transport, known_hosts_path: str, hostname: str, port: int,
                 strict: bool = False, hash_type: PublicKeyHash = PublicKeyHash.SHA1):
        self.logger = logging.getLogger('ssh_session.known_hosts')
        self.transport = transport
        self.known_hosts_path = known_hosts_path
        self.hostname = hostname
        self.port = port
        self.strict = strict
        self.hash_type = hash_type
        self.state = HostKeyState.UNKNOWN
        self.fingerprint: Optional[str] = None
        self.lookup_error: Optional[str] = None

    @property
    def entry_name(self) -> str:
        return known_hosts_name(self.hostname, self.port)

    def _load_store(self) -> Optional[paramiko.HostKeys]:
        if not os.path.exists(self.known_hosts_path):
            return None
        return paramiko.HostKeys(self.known_hosts_path)

    def lookup(self, key: paramiko.PKey) -> HostKeyState:
        """Classify ``key`` against the known-hosts store."""
        try:
            store = self._load_store()
        except (OSError, ValueError, paramiko.SSHException, InvalidHostKey) as e:
            # ValueError covers a store that is not valid UTF-8
            self.lookup_error = f"{self.known_hosts_path}: {e}"
            self.state = HostKeyState.LOOKUP_ERROR
            return self.state

        known: Optional[Dict[str, paramiko.PKey]] = store.lookup(self.entry_name) if store else None
        if not known:
            self.state = HostKeyState.NOT_FOUND
        elif key.get_name() not in known:
            self.state = HostKeyState.FOUND_OTHER
        elif known[key.get_name()] == key:
            self.state = HostKeyState.KNOWN_OK
        else:
            self.state = HostKeyState.CHANGED
        self.logger.debug(f"[KNOWNHOST] {self.entry_name} ({key.get_name()}): {self.state.value}")
        return self.state

    def write_knownhost(self, key: paramiko.PKey) -> None:
        """Append an entry for ``key``; raises OSError on failure."""
        directory = os.path.dirname(self.known_hosts_path)
        if directory:
            os.makedirs(directory, mode=0o700, exist_ok=True)
        line = f"{self.entry_name} {key.get_name()} {key.get_base64()}\n"
        with open(self.known_hosts_path, 'a') as f:
            f.write(line)
        self.logger.info(f"Added {self.entry_name} ({key.get_name()}) to {self.known_hosts_path}")

    def verify(self, skip_key_problem: bool = False) -> HostKeyState:
        """Run the check; returns the accepted state or raises TrustError.

        ``skip_key_problem`` accepts a changed or other-type key for this call
        only.
        """
        with ExitStack() as stack:
            try:
                key = stack.enter_context(self.transport.server_public_key())
            except TransportError as e:
                raise TransportError(f"get server pubkey failed: {e}")
            return self._decide(key, skip_key_problem)

    def _decide(self, key: paramiko.PKey, skip_key_problem: bool) -> HostKeyState:
        logger = self.logger.getChild('verify')
        state = self.lookup(key)
        try:
            digest = publickey_hash(key, self.hash_type)
        except Exception as e:
            raise TransportError(f"get server pubkey hash failed: {e}")
        self.fingerprint = get_hexa(digest)

        if state == HostKeyState.KNOWN_OK:
            return state

        if state == HostKeyState.LOOKUP_ERROR:
            detail = self.lookup_error or self.transport.last_error
            raise TrustError(f"knownhost failed: {detail}")

        if state == HostKeyState.NOT_FOUND:
            if self.strict:
                raise TrustError(
                    f"knownhost failed: Host {self.entry_name} is unknown "
                    f"(fingerprint {self.fingerprint}) and strict host key checking is on"
                )
            try:
                self.write_knownhost(key)
            except OSError as e:
                raise TrustError(f"knownhost write failed: {e.strerror or e}")
            return state

        if state == HostKeyState.CHANGED:
            if skip_key_problem:
                logger.warning(f"Host key for {self.entry_name} changed, accepted by caller: {self.fingerprint}")
                return state
            raise TrustError(
                f"knownhost failed: Host key for server changed: it is now: {self.fingerprint}"
            )

        # FOUND_OTHER
        if skip_key_problem:
            logger.warning(f"Other key type on file for {self.entry_name}, accepted by caller")
            return state
        raise TrustError(
            "knownhost failed: The host key for this server was not found but an other type of key exists."
        )
