import os
import logging
import uvicorn

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)

if os.environ.get("DEBUG", "0") == "1":
    logging.getLogger("minutes_pipeline").setLevel(logging.DEBUG)

from minutes_pipeline.api import create_app
from minutes_pipeline.config import get_config

config = get_config()
app = create_app()


def run():
    logger.info(f"Starting meeting minutes pipeline on {config.host}:{config.port}")
    if not config.api_key:
        logger.warning("GEMINI_API_KEY is not set; model calls will fail")
    logger.info(f"Model: {config.model_name}, max retries: {config.max_retries}")
    uvicorn.run(app, host=config.host, port=config.port)


if __name__ == "__main__":
    run()
