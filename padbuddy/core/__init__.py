"""Core package"""

from .device_view import DeviceView
from .server import PadBuddyServer

__all__ = ['DeviceView', 'PadBuddyServer']
