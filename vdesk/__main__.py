from __future__ import annotations

import uvicorn

from .config import load_config
from .main import make_app


if __name__ == "__main__":
    config = load_config()
    uvicorn.run(make_app(config), host=config.host, port=config.port, log_level="info")
