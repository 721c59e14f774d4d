from .app import create_application
from .dependencies import AppState

__all__ = ["create_application", "AppState"]
