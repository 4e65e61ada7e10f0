"""
Sonos Relay - Main Entrypoint
Opens the player's real-time channel through the interceptor and keeps the
bridge, coordinator and notification pipeline running until it closes.
"""
import asyncio
import functools
import logging
import sys

from sonos_relay.config.settings import settings
from sonos_relay.handlers import messages
from sonos_relay.services.artwork import resolve_artwork
from sonos_relay.services.bridge import StateBridge
from sonos_relay.services.coordinator import Coordinator, SurfaceRegistry
from sonos_relay.services.interceptor import ProtocolInterceptor
from sonos_relay.services.messaging import MessageChannel, drain_all
from sonos_relay.services.notifications import LoggingNotificationSink
from sonos_relay.services.store import StateStore
from sonos_relay.utils.http_client import build_session
from sonos_relay.utils.logging import setup_logging


async def main() -> None:
    setup_logging()
    logger = logging.getLogger(__name__)

    if not settings.CHANNEL_URL:
        logger.error("CHANNEL_URL is not configured")
        return

    page = MessageChannel("page")
    runtime = MessageChannel("runtime")
    tab = MessageChannel("tab")
    broadcast = MessageChannel("broadcast")

    store = StateStore(settings.state_file)
    preferences = StateStore(
        settings.preferences_file,
        defaults={"notificationsEnabled": settings.NOTIFICATIONS_ENABLED_DEFAULT},
    )

    surfaces = SurfaceRegistry()
    session = build_session()
    try:
        coordinator = Coordinator(
            store,
            preferences,
            tab,
            broadcast,
            LoggingNotificationSink(),
            resolve_artwork=functools.partial(resolve_artwork, session),
            locate_surface=surfaces.locate,
        )
        messages.register(runtime, coordinator)
        bridge = StateBridge(page, runtime, tab, store)
        interceptor = ProtocolInterceptor(page)

        connect = interceptor.wrap(session.ws_connect)
        logger.info("Connecting", extra={"env": settings.ENV})
        async with connect(settings.CHANNEL_URL, heartbeat=30) as channel:
            # The host page's own consumer; the interceptor taps each frame.
            async for _ in channel:
                pass

        # commit any wheel adjustment still inside its quiet period
        await bridge.flush_volume()
        bridge.detach()
        await drain_all(page, runtime, tab, broadcast)
    finally:
        for channel in (page, runtime, tab, broadcast):
            channel.close()
        await session.close()
        logger.info("Relay stopped")


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        sys.exit(0)
