from .offline_queue import (
    EventState,
    HttpSyncTransport,
    JsonFileQueueStore,
    OfflineEvent,
    OfflineEventQueue,
    OfflineEventType,
    SyncResult,
)
