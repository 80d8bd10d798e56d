from .relay import WebsocketRelay

__all__ = ["WebsocketRelay"]
