import httpx
from ..core.config import settings

def http_client() -> httpx.Client:
    """Create an HTTP client for fetching remote images.

    No timeout is applied unless `FETCH_TIMEOUT` is configured.
    """
    return httpx.Client(
        timeout=settings.fetch_timeout,
        follow_redirects=True,
    )
