"""FastAPI 라우터 모듈.

app.py에서 분리된 API 엔드포인트들을 제공합니다.
"""

from .health import router as health_router
from .auth import router as auth_router
from .rooms import router as rooms_router
from .broadcast import router as broadcast_router
from .view import router as view_router
from .calls import router as calls_router
from .deps import init_sessions, verify_auth_header

__all__ = [
    "health_router",
    "auth_router",
    "rooms_router",
    "broadcast_router",
    "view_router",
    "calls_router",
    "init_sessions",
    "verify_auth_header",
]
