from __future__ import annotations

import os

from PIL import Image


class FileSystemComplexDataStore:
    """Persist decoded complex data images as PNG files."""

    def __init__(self, directory: str) -> None:
        self.directory = directory

    def path_for(self, uuid: str) -> str:
        return os.path.join(self.directory, f"{uuid}.png")

    def save(self, uuid: str, image: Image.Image) -> str:
        """Write ``image`` for observation ``uuid`` and return its path."""
        os.makedirs(self.directory, exist_ok=True)
        path = self.path_for(uuid)
        image.save(path, format="PNG")
        return path

    def load(self, path: str) -> Image.Image:
        """Return the image stored at ``path``.

        Raises ``OSError`` when the file is missing or not an image.
        """
        with Image.open(path) as img:
            img.load()
            return img.copy()
