import logging
import os

import uvicorn

from cmnotes.observability import setup_logging


logger = logging.getLogger(__name__)


def main():
    setup_logging(
        level=os.environ.get("CMNOTES_LOG_LEVEL", "INFO"),
        fmt=os.environ.get("CMNOTES_LOG_FORMAT", "json")
    )
    host = os.environ.get("CMNOTES_HOST", "0.0.0.0")
    port = int(os.environ.get("CMNOTES_PORT", "8000"))

    logger.info("Starting CM Notes API Server on %s:%d", host, port)
    logger.info("Docs available at: http://localhost:%d/docs", port)

    uvicorn.run(
        "cmnotes.api.server:app",
        host=host,
        port=port,
        reload=True
    )


if __name__ == "__main__":
    main()
