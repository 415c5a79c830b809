from chatdesk_core.config import CoreConfig, load_core_config
from chatdesk_core.home import ChatDeskPaths, ensure_chatdesk_layout, resolve_chatdesk_home

__version__ = "0.1.0"

__all__ = [
    "ChatDeskPaths",
    "CoreConfig",
    "__version__",
    "ensure_chatdesk_layout",
    "load_core_config",
    "resolve_chatdesk_home",
]
