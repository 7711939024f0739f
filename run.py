#!/usr/bin/env python3
"""
币种排名 API 服务启动脚本
"""
import uvicorn

if __name__ == "__main__":
    uvicorn.run(
        "coin_ranker.app:app",
        host="0.0.0.0",
        port=8000,
        workers=1,
        log_level="info",
        access_log=True
    )
