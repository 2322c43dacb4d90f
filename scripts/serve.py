#!/usr/bin/env python3
"""Screen Insight API launcher."""

import os

import uvicorn

from screen_insight.config import REPO_ROOT, get_settings
from screen_insight.logger import logger

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 5577


def main() -> int:
    os.chdir(REPO_ROOT)

    logger.info("================ Screen Insight Starting up... ===============")

    # .env.local を読み込んだ上で設定を確定させる
    settings = get_settings()
    if not settings.model_configured:
        logger.warning("AIモデルが未設定です. ヒューリスティック解析のみで動作します")

    host = os.getenv("API_HOST", DEFAULT_HOST)
    port = int(os.getenv("API_PORT", str(DEFAULT_PORT)))
    logger.info(f"API Server: http://{host}:{port} を起動します")

    uvicorn.run("screen_insight.main:app", host=host, port=port, log_level=settings.log_level.lower())
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
