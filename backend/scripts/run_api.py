#!/usr/bin/env python3
"""Run the backend API server (FPL gateway + league stats)."""
import os
import sys
from pathlib import Path

from dotenv import load_dotenv

backend = Path(__file__).resolve().parent.parent
load_dotenv(backend / ".env")
sys.path.insert(0, str(backend / "src"))
os.chdir(backend)

import uvicorn

from config import Config
from utils.logger import setup_logging

if __name__ == "__main__":
    config = Config()
    setup_logging(config)
    uvicorn.run(
        "api.main:app",
        host="0.0.0.0",
        port=config.api_port,
        reload=config.environment == "development",
        log_config=None,
    )
