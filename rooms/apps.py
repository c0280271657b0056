from django.apps import AppConfig
from django.conf import settings


class RoomsConfig(AppConfig):
    name = 'rooms'
    default_auto_field = 'django.db.models.BigAutoField'

    def ready(self):
        from .store import RoomStore
        from .sweeper import ReclamationSweeper

        self.store = RoomStore()
        self.coordinator = self.build_coordinator()
        self.sweeper = ReclamationSweeper(
            self.store,
            interval_s=settings.RELAY_SWEEP_INTERVAL,
            retention_s=settings.RELAY_OFFLINE_RETENTION,
        )

    def build_coordinator(self):
        """Fresh coordinator with empty presence and call state for this process."""
        from .coordinator import RoomCoordinator
        from .presence import CallTracker, PresenceTable
        from .transport import ChannelLayerTransport

        return RoomCoordinator(
            store=self.store,
            presence=PresenceTable(),
            calls=CallTracker(),
            transport=ChannelLayerTransport(),
        )
