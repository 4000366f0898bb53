# roomchat/core/state.py
from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from roomchat.services.broker import ChatBroker

# Process-wide broker, built on startup by roomchat.main
broker: Optional[ChatBroker] = None

# Metrics
app_start_time: datetime = datetime.now(timezone.utc)


def get_broker() -> ChatBroker:
    if broker is None:
        raise RuntimeError("Broker not initialised; the application has not started")
    return broker
