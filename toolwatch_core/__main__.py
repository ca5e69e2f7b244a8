"""Entry point for ToolWatch Core"""

import uvicorn
from .config import settings


def main():
    """Run the FastAPI application"""
    uvicorn.run(
        "toolwatch_core.main:app",
        host=settings.HOST,
        port=settings.PORT,
        log_level=settings.LOG_LEVEL.lower(),
        reload=settings.LOG_LEVEL.lower() == "debug",
    )


if __name__ == "__main__":
    main()
