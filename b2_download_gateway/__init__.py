"""GameVault download gateway signing requests for Backblaze B2."""

from .app import create_app
from .proxy import DownloadGateway
from .settings import GatewaySettings

__all__ = ["DownloadGateway", "GatewaySettings", "create_app"]
