from .api import router
from .handler import Acknowledgement, ClientErrorHandler, ClientErrorReport

__all__ = ["Acknowledgement", "ClientErrorHandler", "ClientErrorReport", "router"]
