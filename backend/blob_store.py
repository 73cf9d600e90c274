# blob_store.py — Object storage for uploaded branding files (logo, favicon)
import asyncio
import logging
import os
import re
import uuid

logger = logging.getLogger("iti-tech.store")

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]")


class LocalBlobStore:
    """Writes blobs under `root/<folder>/` and serves them from `public_url/<folder>/`."""

    def __init__(self, root: str, public_url: str = "/files"):
        self.root = root
        self.public_url = public_url.rstrip("/")

    @staticmethod
    def object_name(filename: str) -> str:
        # Random prefix keeps every upload's URL unique so browsers never show a cached logo
        base = _UNSAFE_CHARS.sub("_", os.path.basename(filename or "")) or "upload"
        return f"{uuid.uuid4().hex[:12]}_{base}"

    def _write(self, path: str, data: bytes) -> None:
        os.makedirs(os.path.dirname(path), exist_ok=True)
        with open(path, "wb") as fh:
            fh.write(data)

    async def put(self, folder: str, filename: str, data: bytes) -> str:
        """Store `data` and return its public URL. Raises OSError on write failure."""
        name = self.object_name(filename)
        path = os.path.join(self.root, folder, name)
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self._write, path, data)
        logger.info(f"Stored {len(data)} bytes at {folder}/{name}")
        return f"{self.public_url}/{folder}/{name}"
