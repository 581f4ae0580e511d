"""Server launcher: ``python -m inbox_mirror.run``."""
import uvicorn

from inbox_mirror.config import get_config

if __name__ == "__main__":
    config = get_config()
    uvicorn.run("inbox_mirror.main:app", host=config.host, port=config.port)
