"""Interop bridge adapter for workers whose CLI speaks another completion protocol."""

from attoteam.interop.bridge import InteropBridge, InteropBridgeAdapter, NullInteropBridge, requires_bridge
from attoteam.interop.file_bridge import FileInteropBridge

__all__ = [
    "FileInteropBridge",
    "InteropBridge",
    "InteropBridgeAdapter",
    "NullInteropBridge",
    "requires_bridge",
]
