"""
Telemetry collection for debugging and performance analysis.

When enabled via config.enable_telemetry, this module tracks:
- Cache hits/misses with cache keys
- Resolutions by kind (resolved, missing, cyclic, too deep)
- Cache writes committed or discarded per top-level call
"""
from typing import Any, Dict, List, Optional
from contextvars import ContextVar
import time

# Context variable to hold the current telemetry context
_telemetry_context: ContextVar[Optional['TelemetryContext']] = ContextVar('relstate_telemetry_context', default=None)


class TelemetryContext:
    """
    Collects telemetry data for a unit of work (for example a request).
    """

    def __init__(self):
        self.enabled = False
        self.start_time = time.time()
        self.cache_hits: List[Dict[str, Any]] = []
        self.cache_misses: List[Dict[str, Any]] = []
        self.resolutions: Dict[str, int] = {}
        self.events: List[Dict[str, Any]] = []

    def record_cache_hit(self, cache_key: str, operation_context: Optional[str] = None):
        """Record a cache hit."""
        if not self.enabled:
            return
        self.cache_hits.append({
            'cache_key': cache_key,
            'operation_context': operation_context,
            'timestamp': time.time() - self.start_time
        })

    def record_cache_miss(self, cache_key: str, operation_context: Optional[str] = None):
        """Record a cache miss."""
        if not self.enabled:
            return
        self.cache_misses.append({
            'cache_key': cache_key,
            'operation_context': operation_context,
            'timestamp': time.time() - self.start_time
        })

    def record_resolution(self, kind: str):
        """Count a resolution outcome."""
        if not self.enabled:
            return
        self.resolutions[kind] = self.resolutions.get(kind, 0) + 1

    def record_event(self, event_type: str, description: str, data: Optional[Dict] = None):
        """Record a generic event."""
        if not self.enabled:
            return
        self.events.append({
            'event_type': event_type,
            'description': description,
            'data': self._sanitize_data(data),
            'timestamp': time.time() - self.start_time
        })

    def _sanitize_data(self, data: Any) -> Any:
        """
        Sanitize data for telemetry output.
        Limits size of large payloads.
        """
        if data is None:
            return None

        data_str = str(data)
        if len(data_str) > 1000:
            return data_str[:1000] + "... (truncated)"
        return data

    def get_telemetry_data(self) -> Dict[str, Any]:
        """
        Get all collected telemetry data.
        """
        if not self.enabled:
            return {}

        return {
            'enabled': True,
            'duration_ms': (time.time() - self.start_time) * 1000,
            'cache': {
                'hits': len(self.cache_hits),
                'misses': len(self.cache_misses),
                'hit_details': self.cache_hits,
                'miss_details': self.cache_misses,
            },
            'resolutions': dict(self.resolutions),
            'events': self.events,
        }


def get_telemetry_context() -> Optional[TelemetryContext]:
    """Get the current telemetry context."""
    return _telemetry_context.get()


def set_telemetry_context(context: Optional[TelemetryContext]):
    """Set the current telemetry context."""
    _telemetry_context.set(context)


def create_telemetry_context(enabled: bool = False) -> TelemetryContext:
    """Create and activate a new telemetry context."""
    context = TelemetryContext()
    context.enabled = enabled
    set_telemetry_context(context)
    return context


def clear_telemetry_context():
    """Clear the current telemetry context."""
    set_telemetry_context(None)
