"""FastAPI dependency helpers."""
from .auth import get_optional_caller
from .carriers import collect_carriers
from .database import get_db
from .transport import get_send_meter, get_transport

__all__ = ["collect_carriers", "get_db", "get_optional_caller", "get_send_meter", "get_transport"]
