from sonos_relay.utils.origin import normalize_origin, same_origin, is_monitored_channel
from sonos_relay.utils.debounce import Debouncer
from sonos_relay.utils.logging import setup_logging

__all__ = ["normalize_origin", "same_origin", "is_monitored_channel", "Debouncer", "setup_logging"]
