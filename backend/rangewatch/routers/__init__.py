# API routers
from .diagnostics import router as diagnostics_router
from .ranges import router as ranges_router
from .templates import router as templates_router
from .testing import router as testing_router
from .topology import router as topology_router

__all__ = [
    "diagnostics_router",
    "ranges_router",
    "templates_router",
    "testing_router",
    "topology_router",
]
