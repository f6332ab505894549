"""Run the API with uvicorn: `python -m careerbot`."""

import uvicorn

from .config import settings


def run():
    uvicorn.run("careerbot.main:app", host="0.0.0.0", port=settings.PORT, reload=settings.is_dev)


if __name__ == '__main__':
    run()
