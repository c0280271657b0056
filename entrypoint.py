import logging
import os

import django
import uvicorn

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "roomrelay.settings")
django.setup()

from django.conf import settings  # noqa: E402

logger = logging.getLogger(__name__)

if __name__ == "__main__":
    logger.info(f"Starting room relay on {settings.HOST}:{settings.PORT}")
    uvicorn.run(
        "roomrelay.asgi:application",
        host=settings.HOST,
        port=settings.PORT,
        lifespan="on",
        log_config=None,
    )
