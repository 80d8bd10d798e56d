from .link import PeerLink
from .manager import PeerLinkManager

__all__ = ["PeerLink", "PeerLinkManager"]
