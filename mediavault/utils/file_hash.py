"""Content hashing helpers used for checksum verification of moved files."""

import hashlib

CHUNK_SIZE = 1024 * 1024


def compute_file_sha1(filepath, chunk_size=CHUNK_SIZE):
    """
    Compute the SHA-1 digest of a local file, reading in chunks to handle large files.

    Args:
        filepath: Path to the file to hash
        chunk_size: Size of chunks to read at a time (default 1MB)

    Returns:
        20-byte raw digest
    """
    with open(filepath, 'rb') as f:
        return hash_stream(f, chunk_size)


def hash_stream(stream, chunk_size=CHUNK_SIZE):
    """Compute the SHA-1 digest of a readable binary stream without buffering it."""
    sha1 = hashlib.sha1()
    while True:
        chunk = stream.read(chunk_size)
        if not chunk:
            break
        sha1.update(chunk)
    return sha1.digest()


class HashingReader:
    """
    File-like wrapper that counts bytes and optionally hashes them as they are read.

    Used for streaming uploads so the checksum is computed while the bytes
    move to their destination instead of in a second pass.
    """

    def __init__(self, stream, compute_checksum=False):
        self._stream = stream
        self._hash = hashlib.sha1() if compute_checksum else None
        self.size = 0

    def read(self, size=-1):
        chunk = self._stream.read(size)
        if chunk:
            self.size += len(chunk)
            if self._hash is not None:
                self._hash.update(chunk)
        return chunk

    def readable(self):
        return True

    @property
    def checksum(self):
        return self._hash.digest() if self._hash is not None else None
