"""File storage URL helpers.

Stored configuration refers to uploaded files by storage key rather than by
their public URL, so that a change of CDN domain does not break old batches.
"""

from urllib.parse import unquote, urlparse

from imagegen.services.exceptions import StorageKeyResolutionError


class FileService:
    """Translate between public file URLs and storage keys."""

    def __init__(self, public_base_url: str = ""):
        """Initialize file service.

        Args:
            public_base_url: Public URL prefix of the storage bucket
                (e.g. "https://cdn.example.com/files"). When empty, the URL path
                is used as the key.
        """
        self.public_base_url = public_base_url.rstrip("/")

    def get_key_from_full_url(self, url: str) -> str:
        """Resolve a full URL to its storage key.

        Args:
            url: Public http(s) URL of a stored file

        Returns:
            Storage key without leading slash (e.g. "images/abc.png")

        Raises:
            StorageKeyResolutionError: If the URL is not an http(s) URL, lies outside
                the configured public base URL, or has an empty path
        """
        parsed = urlparse(url)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise StorageKeyResolutionError(f"Not a full http(s) URL: {url!r}")

        if self.public_base_url:
            prefix = self.public_base_url + "/"
            if not url.startswith(prefix):
                raise StorageKeyResolutionError(
                    f"URL {url!r} is outside storage base {self.public_base_url!r}"
                )
            key = url[len(prefix) :].split("?", 1)[0].split("#", 1)[0]
        else:
            key = parsed.path.lstrip("/")

        key = unquote(key)
        if not key:
            raise StorageKeyResolutionError(f"URL {url!r} has no storage key")
        return key

    def get_full_url(self, key: str) -> str:
        """Build the public URL of a storage key."""
        if not self.public_base_url:
            return key
        return f"{self.public_base_url}/{key.lstrip('/')}"
