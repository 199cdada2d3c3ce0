"""Run uvicorn. Usage: python run.py."""
import uvicorn

from launchpad.config import settings

if __name__ == "__main__":
    uvicorn.run(
        "launchpad.main:app",
        host=settings.app_host,
        port=settings.app_port,
        reload=False,
    )
