import logging

from django.apps import apps

logger = logging.getLogger(__name__)


async def lifespan(scope, receive, send):
    """ASGI lifespan handler tying the reclamation sweeper to the server process."""
    sweeper = apps.get_app_config('rooms').sweeper
    while True:
        message = await receive()
        if message['type'] == 'lifespan.startup':
            try:
                await sweeper.start()
            except Exception as e:
                logger.error(f"Startup error: {e}")
                await send({'type': 'lifespan.startup.failed', 'message': str(e)})
                return
            await send({'type': 'lifespan.startup.complete'})
        elif message['type'] == 'lifespan.shutdown':
            await sweeper.stop()
            await send({'type': 'lifespan.shutdown.complete'})
            return
