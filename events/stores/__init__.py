from django.conf import settings
from django.utils.module_loading import import_string

from events.stores.interfaces import EventStore, RegistrationStore, Store, UserStore


def get_default_store() -> Store:
    """Build the store named by ``settings.STORE_BACKEND``."""
    return import_string(settings.STORE_BACKEND)()


__all__ = ["Store", "UserStore", "EventStore", "RegistrationStore", "get_default_store"]
