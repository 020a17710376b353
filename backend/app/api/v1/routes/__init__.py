# This makes all routers importable from 'routes'
from .kyc import router as kyc_router

__all__ = [
    "kyc_router",
]
