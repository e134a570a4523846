from savesync.state import StateMixin
from savesync.platforms import PlatformMapMixin
from savesync.romm_client import RommClientMixin
from savesync.scanner import ScannerMixin
from savesync.resolver import ResolverMixin
from savesync.executor import ExecutorMixin
from savesync.save_sync import SaveSyncMixin

__all__ = [
    "StateMixin", "PlatformMapMixin", "RommClientMixin", "ScannerMixin",
    "ResolverMixin", "ExecutorMixin", "SaveSyncMixin",
]
