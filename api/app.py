"""
api/app.py — FastAPI 앱 인스턴스 + 세션 미들웨어 + 만료 세션 정리 루프
"""

import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware

from api.config import CORS_ALLOW_ORIGINS, SESSION_CLEANUP_INTERVAL, SESSION_COOKIE, SESSION_TTL
from api.routes import router
import api.session as session
from proctored_test.services.gateway import SubmissionGateway

logger = logging.getLogger(__name__)


async def _cleanup_loop() -> None:
    while True:
        await asyncio.sleep(SESSION_CLEANUP_INTERVAL)
        removed = session.cleanup_expired()
        for state in removed:
            await session.dispose(state)
        if removed:
            logger.info(f"만료 세션 {len(removed)}개 정리")


@asynccontextmanager
async def _lifespan(app: FastAPI):
    task = asyncio.create_task(_cleanup_loop())
    try:
        yield
    finally:
        task.cancel()


def create_app(gateway_factory=SubmissionGateway) -> FastAPI:
    """
    Args:
        gateway_factory: token 키워드 인자를 받아 게이트웨이를 만드는 callable.
    """
    app = FastAPI(title="Proctored Test Engine", docs_url=None, redoc_url=None, lifespan=_lifespan)
    app.state.gateway_factory = gateway_factory

    app.add_middleware(
        CORSMiddleware,
        allow_origins=CORS_ALLOW_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # 세션 미들웨어: 쿠키에서 세션 ID를 읽고, 없으면 새로 발급
    @app.middleware("http")
    async def session_middleware(request: Request, call_next):
        sid = request.cookies.get(SESSION_COOKIE)
        if not sid or session.get_session(sid) is None:
            sid = session.create_session()

        request.state.session_id = sid
        response: Response = await call_next(request)
        response.set_cookie(
            key=SESSION_COOKIE,
            value=sid,
            httponly=True,
            samesite="lax",
            max_age=SESSION_TTL,
        )
        return response

    app.include_router(router)
    return app
