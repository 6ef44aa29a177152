from .publisher import ClipEventPublisher, ConnectionState, ReconnectPolicy

__all__ = ["ClipEventPublisher", "ConnectionState", "ReconnectPolicy"]
