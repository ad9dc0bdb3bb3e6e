"""
vision/image_paths.py
---------------------
Maps a product's stored image reference to something the encoder can open.

    "/images/2316.jpg"   -> <extracted_dir>/2316.jpg
    "/uploads/abc.png"   -> <uploads_dir>/abc.png
    "https://..."        -> unchanged (fetched remotely)

Pure path algebra: no filesystem or network access happens here.
"""

from __future__ import annotations
import posixpath
from pathlib import Path
from typing import Dict, Union

DEFAULT_EXTRACTED_PREFIX = "/images/"
DEFAULT_UPLOADS_PREFIX = "/uploads/"


class ImagePathResolver:
    def __init__(self, roots: Dict[str, Union[str, Path]]):
        # longest prefix first so nested prefixes resolve to the right root
        self.roots = sorted(
            ((prefix, Path(root)) for prefix, root in roots.items()),
            key=lambda pair: len(pair[0]),
            reverse=True,
        )

    @classmethod
    def from_dirs(cls, extracted_dir, uploads_dir,
                  extracted_prefix=DEFAULT_EXTRACTED_PREFIX,
                  uploads_prefix=DEFAULT_UPLOADS_PREFIX) -> "ImagePathResolver":
        return cls({extracted_prefix: extracted_dir, uploads_prefix: uploads_dir})

    def resolve(self, reference: str) -> str:
        if not reference:
            return reference
        for prefix, root in self.roots:
            if reference.startswith(prefix):
                filename = posixpath.basename(reference[len(prefix):])
                return str(root / filename)
        return reference


def resolve(reference: str, extracted_dir="extracted", uploads_dir="uploads") -> str:
    """Resolve with the default `/images/` and `/uploads/` prefixes."""
    return ImagePathResolver.from_dirs(extracted_dir, uploads_dir).resolve(reference)


def is_remote(source: str) -> bool:
    return source.startswith(("http://", "https://"))
