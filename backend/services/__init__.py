"""
Services Module
External I/O and background loops.

Exports:
    Stream: ConnectionSupervisor, ConnectionStatus, ConnectionState
    Clients: EmsApiClient, WhatsAppClient, get_whatsapp_client
    Emitter: LoadEmitter
    Sessions: SimulatorSession, SessionManager, get_session_manager
"""

from .stream import ConnectionSupervisor, ConnectionStatus, ConnectionState, stream_url
from .ems_client import EmsApiClient
from .whatsapp import WhatsAppClient, GatewayStatus, get_whatsapp_client
from .emitter import LoadEmitter, EmitterStats
from .session import SimulatorSession, SessionManager, get_session_manager, reset_session_manager

__all__ = [
    # Stream
    "ConnectionSupervisor",
    "ConnectionStatus",
    "ConnectionState",
    "stream_url",
    # Clients
    "EmsApiClient",
    "WhatsAppClient",
    "GatewayStatus",
    "get_whatsapp_client",
    # Emitter
    "LoadEmitter",
    "EmitterStats",
    # Sessions
    "SimulatorSession",
    "SessionManager",
    "get_session_manager",
    "reset_session_manager",
]
