"""HTTP client for the Tailscale v2 API.

See :class:`TailscaleAPI` for the async client and :func:`tailnet_path` for
building tailnet-scoped request paths.
"""

from tsrouter.client.api import TailscaleAPI, tailnet_path

__all__ = ["TailscaleAPI", "tailnet_path"]
