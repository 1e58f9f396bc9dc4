from .alldebrid import AllDebrid
from .factory import create_debrid
from .realdebrid import RealDebrid

__all__ = ["AllDebrid", "RealDebrid", "create_debrid"]
