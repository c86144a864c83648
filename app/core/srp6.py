"""SRP6 salted verifiers compatible with the game server's auth database.

The realm reads `account.salt` / `account.verifier` directly, so the
derivation must stay byte-identical to the server's: upper-cased credentials,
SHA1 digests interpreted little-endian, and a 32-byte little-endian verifier.
"""

import hashlib
import hmac
import secrets

G = 7
N = 0x894B645E89E1535BBDAD5B8B290650530801B18EBFBF5E8FAB3C82872A3E9BB7

SALT_LENGTH = 32
VERIFIER_LENGTH = 32


def generate_salt() -> bytes:
    return secrets.token_bytes(SALT_LENGTH)


def _check_length(name: str, value: bytes, expected: int) -> None:
    if len(value) != expected:
        raise ValueError(f"{name} must be {expected} bytes, got {len(value)}")


def derive_verifier(username: str, password: str, salt: bytes) -> bytes:
    """Return the 32-byte verifier for `username`/`password` under `salt`."""
    _check_length("salt", salt, SALT_LENGTH)
    credentials = f"{username.upper()}:{password.upper()}".encode("utf-8")
    inner_hash = hashlib.sha1(credentials).digest()
    x = int.from_bytes(hashlib.sha1(salt + inner_hash).digest(), "little")
    verifier = pow(G, x, N)
    return verifier.to_bytes(VERIFIER_LENGTH, "little")


def verify_login(username: str, password: str, salt: bytes, stored_verifier: bytes) -> bool:
    _check_length("verifier", stored_verifier, VERIFIER_LENGTH)
    computed = derive_verifier(username, password, salt)
    return hmac.compare_digest(computed, stored_verifier)
