"""
ROS Event Bus — Dispatcher
============================
Routes recorded events to registered subscribers.

Dispatch behavior:
1. Look up subscribers by event_type
2. Execute handlers sequentially
3. Catch subscriber exceptions per handler
4. Log failure
5. Continue to next subscriber

A failing notification or report must never undo an order
transition that already happened. This function never raises.
"""

import logging

from core.events.registry import SubscriberRegistry

logger = logging.getLogger("ros.events")


def dispatch(event: dict, registry: SubscriberRegistry) -> dict:
    """
    Dispatch a recorded event to all registered subscribers.

    Args:
        event:    Event dict with at least 'event_type' and 'event_id'.
        registry: SubscriberRegistry with registered handlers.

    Returns:
        {
            'event_type': str,
            'event_id': str,
            'subscribers_notified': int,
            'subscribers_failed': int,
            'failures': list[dict]
        }
    """
    event_type = event["event_type"]
    event_id = str(event.get("event_id"))

    result = {
        "event_type": event_type,
        "event_id": event_id,
        "subscribers_notified": 0,
        "subscribers_failed": 0,
        "failures": [],
    }

    subscribers = registry.get_subscribers(event_type)
    if not subscribers:
        logger.debug(f"No subscribers for '{event_type}' (event_id: {event_id})")
        return result

    for handler, subscriber_name in subscribers:
        handler_name = getattr(handler, "__qualname__", str(handler))
        try:
            handler(event)
            result["subscribers_notified"] += 1
        except Exception as exc:
            result["subscribers_failed"] += 1
            result["failures"].append({
                "handler": handler_name,
                "subscriber": subscriber_name,
                "error": str(exc),
                "error_type": type(exc).__name__,
            })
            logger.error(
                f"Subscriber failed: {handler_name} for "
                f"{event_type} (event_id: {event_id}): {exc}",
                exc_info=True,
            )

    logger.debug(
        f"Dispatch complete: {event_type} (event_id: {event_id}) — "
        f"{result['subscribers_notified']} notified, "
        f"{result['subscribers_failed']} failed"
    )
    return result
