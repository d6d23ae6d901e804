"""Dapr client for publishing plan and alarm events through the Dapr sidecar."""
import json
import os
import uuid
from datetime import datetime
from typing import Dict, Any
import logging

# Import dapr if available, otherwise provide fallback
try:
    from dapr.clients import DaprClient
    DAPR_AVAILABLE = True
except ImportError:
    DAPR_AVAILABLE = False
    DaprClient = None

logger = logging.getLogger(__name__)

PUBSUB_NAME = os.environ.get("DAPR_PUBSUB_NAME", "plan-pubsub")
PLAN_TOPIC = "plan-events"
ALARM_TOPIC = "plan-alarms"


class DaprEventPublisher:
    """Publishes events via Dapr pub/sub, or logs them when Dapr is absent."""

    def __init__(self, enabled: bool = DAPR_AVAILABLE):
        """Initialize Dapr event publisher."""
        self.dapr_available = enabled
        if not self.dapr_available:
            logger.warning("Dapr not available. Running in development mode without Dapr integration.")

    def publish_event(self, topic: str, event_type: str, data: Dict[str, Any], source: str = "calendar-api"):
        """Publish an event to a topic via Dapr pub/sub."""
        if not self.dapr_available:
            # Development mode: log the event instead of publishing
            logger.info(f"[DEV MODE] Would publish to topic '{topic}': {event_type} from {source} with data {data}")
            return {"success": True, "message": "Event logged in dev mode"}

        try:
            event_envelope = {
                "event_id": str(uuid.uuid4()),
                "type": event_type,
                "timestamp": datetime.utcnow().isoformat(),
                "source": source,
                "data": data
            }

            with DaprClient() as client:
                client.publish_event(
                    pubsub_name=PUBSUB_NAME,
                    topic_name=topic,
                    data=json.dumps(event_envelope, default=str),
                    data_content_type="application/json"
                )

            logger.info(f"Published event {event_type} to topic {topic}")
            return {"success": True, "event_id": event_envelope["event_id"]}

        except Exception as e:
            logger.error(f"Failed to publish event to topic {topic}: {str(e)}")
            raise

    def publish_plan_created(self, plan_data: Dict[str, Any]):
        """Publish plan.created event."""
        return self.publish_event(topic=PLAN_TOPIC, event_type="plan.created", data=plan_data)

    def publish_plan_updated(self, plan_data: Dict[str, Any]):
        """Publish plan.updated event."""
        return self.publish_event(topic=PLAN_TOPIC, event_type="plan.updated", data=plan_data)

    def publish_plan_deleted(self, plan_data: Dict[str, Any]):
        """Publish plan.deleted event."""
        return self.publish_event(topic=PLAN_TOPIC, event_type="plan.deleted", data=plan_data)

    def publish_alarm_due(self, alarm_data: Dict[str, Any]):
        """Publish alarm.due event; the notification service delivers it."""
        return self.publish_event(topic=ALARM_TOPIC, event_type="alarm.due", data=alarm_data)


# Global instance
dapr_publisher = DaprEventPublisher()
