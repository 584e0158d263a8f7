"""
auth/passwords.py -- bcrypt password hashing behind a bounded worker pool.

Security design decisions:
  bcrypt directly, no passlib wrapper. The digest embeds algorithm, cost and
       salt ("$2b$12$<salt><hash>"), so checkpw() reads the cost from the
       digest itself. Raising BCRYPT_COST only affects new hashes; older
       digests keep verifying.

  72-byte limit: bcrypt only looks at the first 72 bytes and bcrypt>=5 raises
       on longer input. _encode() truncates identically for hash and verify so
       both paths see the same bytes.

  Bounded pool: each hash costs ~250ms at cost 12. hash_async/verify_async
       run on a ThreadPoolExecutor with max_workers threads, so a burst of
       logins queues behind the pool instead of occupying every worker the
       server has.

  Timing equalization [C1]: verify_dummy() runs a full checkpw against a
       digest computed once at construction. The engine calls it when the
       email is unknown so response time does not reveal account existence.
"""

from __future__ import annotations

import asyncio
import logging
from concurrent.futures import ThreadPoolExecutor

import bcrypt

from auth.errors import EntropyUnavailable

logger = logging.getLogger("authservice.passwords")

_BCRYPT_MAX_BYTES = 72


def _encode(plain: str) -> bytes:
    return plain.encode("utf-8")[:_BCRYPT_MAX_BYTES]


class PasswordHasher:
    """Salted, slow, one-way password hashing.

    Usage:
        hasher = PasswordHasher(cost=12, max_workers=4)
        digest = await hasher.hash_async("Passw0rd1")
        ok = await hasher.verify_async(digest, "Passw0rd1")
        hasher.close()
    """

    def __init__(self, cost: int = 12, max_workers: int = 4) -> None:
        self.cost = cost
        self._pool = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="bcrypt")
        self._dummy_hash = self.hash("authservice_timing_dummy")

    def hash(self, plain: str) -> str:
        """Return a bcrypt digest of plain with a fresh random salt."""
        try:
            salt = bcrypt.gensalt(rounds=self.cost)
        except OSError as exc:
            raise EntropyUnavailable() from exc
        return bcrypt.hashpw(_encode(plain), salt).decode("ascii")

    def verify(self, digest: str, plain: str) -> bool:
        """Return True if plain matches digest.

        A mismatch is a normal False. A malformed digest (e.g. a corrupted row)
        is also False -- logged, never raised to the caller.
        """
        try:
            return bcrypt.checkpw(_encode(plain), digest.encode("ascii"))
        except (ValueError, TypeError, UnicodeEncodeError):
            logger.warning("Stored password digest is malformed; treating as mismatch")
            return False

    def verify_dummy(self, plain: str) -> bool:
        """Burn one verify's worth of CPU. Always False."""
        self.verify(self._dummy_hash, plain)
        return False

    async def hash_async(self, plain: str) -> str:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._pool, self.hash, plain)

    async def verify_async(self, digest: str, plain: str) -> bool:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._pool, self.verify, digest, plain)

    async def verify_dummy_async(self, plain: str) -> bool:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._pool, self.verify_dummy, plain)

    def close(self) -> None:
        self._pool.shutdown(wait=False, cancel_futures=True)
