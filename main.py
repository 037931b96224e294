"""
Run the RateGuard FX API under uvicorn.
"""
import sys

from dotenv import load_dotenv

# Before the logger reads LOG_LEVEL
load_dotenv()

from pydantic import ValidationError  # noqa: E402

from core.config import get_settings  # noqa: E402
from core.logger import setup_logger  # noqa: E402

logger = setup_logger(__name__)


def main():
    try:
        settings = get_settings()
    except ValidationError as e:
        logger.error(f"Invalid configuration: {e}")
        sys.exit(1)

    if settings.demo_mode:
        logger.warning("No extraction provider keys configured, uploads run in demo mode")
    logger.info(
        f"{settings.app_name} on {settings.host}:{settings.port} "
        f"(db {settings.database_path}, max upload {settings.max_upload_bytes:,} bytes)"
    )

    import uvicorn

    uvicorn.run("app.api:app", host=settings.host, port=settings.port, log_level=settings.log_level.lower())


if __name__ == "__main__":
    main()
