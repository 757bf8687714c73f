"""Artifact encryption: AES-256-GCM, streamed.

File layout::

    b"DBVAULT1" | mode (1 byte) | mode header | nonce (12) | ciphertext | tag (16)

Everything before the ciphertext is authenticated as associated data.

- Passphrase mode (``0x01``): header is a 16-byte salt; the key is
  derived with scrypt from the passphrase file's contents.
- Recipients mode (``0x02``): a random data key is wrapped with RSA-OAEP
  (SHA-256) once per recipient.  Public keys are read from
  ``<keyring>/<recipient>.pub``, private keys from ``<keyring>/<recipient>.key``,
  both PEM.
"""

import logging
import os
import secrets
import struct
from pathlib import Path

from cryptography.exceptions import InvalidTag, UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt

from db_vault.errors import EncryptionError

logger = logging.getLogger(__name__)

MAGIC = b"DBVAULT1"
MODE_PASSPHRASE = 0x01
MODE_RECIPIENTS = 0x02

SALT_SIZE = 16
NONCE_SIZE = 12
TAG_SIZE = 16
KEY_SIZE = 32
CHUNK_SIZE = 1024 * 1024

_OAEP = padding.OAEP(
    mgf=padding.MGF1(algorithm=hashes.SHA256()),
    algorithm=hashes.SHA256(),
    label=None,
)


def is_encrypted(path: Path) -> bool:
    with open(path, "rb") as f:
        return f.read(len(MAGIC)) == MAGIC


# ------------------------------------------------------------------
# Key material
# ------------------------------------------------------------------


def derive_key(passphrase: bytes, salt: bytes) -> bytes:
    return Scrypt(salt=salt, length=KEY_SIZE, n=2**14, r=8, p=1).derive(passphrase)


def read_passphrase(path: Path) -> bytes:
    """Read a passphrase file (surrounding whitespace stripped)."""
    try:
        passphrase = path.read_bytes().strip()
    except OSError as e:
        raise EncryptionError(f"Cannot read passphrase file {path}: {e}") from e
    if not passphrase:
        raise EncryptionError(f"Passphrase file {path} is empty")
    return passphrase


def ensure_passphrase(path: Path) -> bytes:
    """Return the passphrase at ``path``, creating the file if it is missing.

    A created file holds a random value and is readable by the owner only.
    """
    if not path.exists():
        path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
        with os.fdopen(fd, "w") as f:
            f.write(secrets.token_urlsafe(32) + "\n")
        logger.warning(
            "Passphrase file %s did not exist; created one with a random value. "
            "Back it up: artifacts cannot be decrypted without it.",
            path,
        )
    return read_passphrase(path)


def _key_path(keyring: Path, recipient: str, suffix: str) -> Path:
    if not recipient or "/" in recipient or "\\" in recipient or recipient.startswith("."):
        raise EncryptionError(f"Invalid recipient id: {recipient!r}")
    return keyring / f"{recipient}{suffix}"


def load_public_key(keyring: Path, recipient: str) -> rsa.RSAPublicKey:
    path = _key_path(keyring, recipient, ".pub")
    try:
        key = serialization.load_pem_public_key(path.read_bytes())
    except (OSError, ValueError, UnsupportedAlgorithm) as e:
        raise EncryptionError(f"Cannot load public key for {recipient} from {path}: {e}") from e
    if not isinstance(key, rsa.RSAPublicKey):
        raise EncryptionError(f"Public key for {recipient} is not an RSA key")
    return key


def load_private_key(keyring: Path, recipient: str) -> rsa.RSAPrivateKey | None:
    """Private key for ``recipient``, or None when the keyring lacks it."""
    path = _key_path(keyring, recipient, ".key")
    if not path.exists():
        return None
    try:
        key = serialization.load_pem_private_key(path.read_bytes(), password=None)
    except (OSError, ValueError, TypeError, UnsupportedAlgorithm) as e:
        raise EncryptionError(f"Cannot load private key for {recipient} from {path}: {e}") from e
    if not isinstance(key, rsa.RSAPrivateKey):
        raise EncryptionError(f"Private key for {recipient} is not an RSA key")
    return key


# ------------------------------------------------------------------
# Headers
# ------------------------------------------------------------------


def _pack_short_bytes(value: bytes) -> bytes:
    return struct.pack(">H", len(value)) + value


def _read_exact(f, size: int) -> bytes:
    data = f.read(size)
    if len(data) != size:
        raise EncryptionError("Encrypted artifact is truncated")
    return data


def _read_short_bytes(f) -> bytes:
    (length,) = struct.unpack(">H", _read_exact(f, 2))
    return _read_exact(f, length)


# ------------------------------------------------------------------
# Encrypt / decrypt
# ------------------------------------------------------------------


def _encrypt_stream(src: Path, dest: Path, key: bytes, header: bytes) -> None:
    nonce = os.urandom(NONCE_SIZE)
    header = header + nonce
    encryptor = Cipher(algorithms.AES(key), modes.GCM(nonce)).encryptor()
    encryptor.authenticate_additional_data(header)
    with open(src, "rb") as f_in, open(dest, "wb") as f_out:
        f_out.write(header)
        while chunk := f_in.read(CHUNK_SIZE):
            f_out.write(encryptor.update(chunk))
        f_out.write(encryptor.finalize())
        f_out.write(encryptor.tag)


def encrypt_with_passphrase(src: Path, dest: Path, passphrase: bytes) -> None:
    salt = os.urandom(SALT_SIZE)
    header = MAGIC + bytes([MODE_PASSPHRASE]) + salt
    try:
        _encrypt_stream(src, dest, derive_key(passphrase, salt), header)
    except OSError as e:
        raise EncryptionError(f"Encryption failed: {e}", stage="encrypt") from e


def encrypt_for_recipients(src: Path, dest: Path, recipients: list[str], keyring: Path) -> None:
    if not recipients:
        raise EncryptionError("No recipients given", stage="encrypt")
    data_key = os.urandom(KEY_SIZE)
    header = MAGIC + bytes([MODE_RECIPIENTS]) + struct.pack(">H", len(recipients))
    for recipient in recipients:
        public_key = load_public_key(keyring, recipient)
        header += _pack_short_bytes(recipient.encode("utf-8"))
        header += _pack_short_bytes(public_key.encrypt(data_key, _OAEP))
    try:
        _encrypt_stream(src, dest, data_key, header)
    except OSError as e:
        raise EncryptionError(f"Encryption failed: {e}", stage="encrypt") from e


def read_recipients(path: Path) -> list[str]:
    """Recipient ids recorded in an encrypted artifact's header."""
    with open(path, "rb") as f:
        if f.read(len(MAGIC)) != MAGIC:
            raise EncryptionError(f"{path} is not an encrypted artifact")
        if _read_exact(f, 1)[0] != MODE_RECIPIENTS:
            return []
        (count,) = struct.unpack(">H", _read_exact(f, 2))
        recipients = []
        for _ in range(count):
            recipients.append(_read_short_bytes(f).decode("utf-8"))
            _read_short_bytes(f)
        return recipients


def decrypt_file(
    src: Path,
    dest: Path,
    *,
    passphrase: bytes | None = None,
    keyring: Path | None = None,
) -> None:
    """Decrypt an artifact written by either encryption mode.

    Raises:
        EncryptionError: Wrong passphrase, no usable private key, tampered
            or truncated content.  ``dest`` is removed on failure.
    """
    try:
        _decrypt(src, dest, passphrase, keyring)
    except InvalidTag as e:
        dest.unlink(missing_ok=True)
        raise EncryptionError(
            "Decryption failed: wrong key or corrupted artifact", stage="decrypt"
        ) from e
    except EncryptionError as e:
        dest.unlink(missing_ok=True)
        raise e.with_context(stage="decrypt")
    except (OSError, ValueError) as e:
        dest.unlink(missing_ok=True)
        raise EncryptionError(f"Decryption failed: {e}", stage="decrypt") from e


def _decrypt(src: Path, dest: Path, passphrase: bytes | None, keyring: Path | None) -> None:
    total = src.stat().st_size
    with open(src, "rb") as f_in:
        if f_in.read(len(MAGIC)) != MAGIC:
            raise EncryptionError(f"{src} is not an encrypted artifact")
        mode = _read_exact(f_in, 1)[0]

        if mode == MODE_PASSPHRASE:
            if passphrase is None:
                raise EncryptionError("Artifact is passphrase-encrypted but no passphrase is configured")
            salt = _read_exact(f_in, SALT_SIZE)
            key = derive_key(passphrase, salt)
        elif mode == MODE_RECIPIENTS:
            key = _unwrap_data_key(f_in, keyring)
        else:
            raise EncryptionError(f"Unknown encryption mode 0x{mode:02x}")

        nonce = _read_exact(f_in, NONCE_SIZE)
        header_len = f_in.tell()
        remaining = total - header_len - TAG_SIZE
        if remaining < 0:
            raise EncryptionError("Encrypted artifact is truncated")

        f_in.seek(0)
        header = _read_exact(f_in, header_len)
        f_in.seek(total - TAG_SIZE)
        tag = _read_exact(f_in, TAG_SIZE)
        f_in.seek(header_len)

        decryptor = Cipher(algorithms.AES(key), modes.GCM(nonce, tag)).decryptor()
        decryptor.authenticate_additional_data(header)
        with open(dest, "wb") as f_out:
            while remaining > 0:
                chunk = f_in.read(min(CHUNK_SIZE, remaining))
                if not chunk:
                    raise EncryptionError("Encrypted artifact is truncated")
                remaining -= len(chunk)
                f_out.write(decryptor.update(chunk))
            f_out.write(decryptor.finalize())


def _unwrap_data_key(f_in, keyring: Path | None) -> bytes:
    if keyring is None:
        raise EncryptionError("Artifact is recipient-encrypted but no keyring_path is configured")
    (count,) = struct.unpack(">H", _read_exact(f_in, 2))
    wrapped_keys = []
    for _ in range(count):
        recipient = _read_short_bytes(f_in).decode("utf-8")
        wrapped_keys.append((recipient, _read_short_bytes(f_in)))

    data_key = None
    for recipient, wrapped in wrapped_keys:
        private_key = load_private_key(keyring, recipient)
        if private_key is None:
            continue
        try:
            data_key = private_key.decrypt(wrapped, _OAEP)
        except ValueError:
            logger.warning("Key for recipient %s does not unwrap this artifact", recipient)
            continue
        break
    if data_key is None:
        ids = ", ".join(r for r, _ in wrapped_keys)
        raise EncryptionError(f"No private key in {keyring} for recipients: {ids}")
    return data_key
