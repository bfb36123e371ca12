"""PadBuddy server package"""

from .core import DeviceView
from .services import FirebaseService, ReconciliationJob, CronServer

__all__ = ['DeviceView', 'FirebaseService', 'ReconciliationJob', 'CronServer']
