"""Change notification fan-out.

Every mutating operation calls ``emit_change(table, action, record)`` after its
write succeeds. The record's session decides who hears about it.
"""
import logging
from typing import Any, Callable, Iterable, Optional

from tabletop.services.event_publisher import publish_session_change
from tabletop.services.events import ChangeEvent
from tabletop.services.realtime import RealtimeGateway, gateway

logger = logging.getLogger(__name__)


class ChangeNotifier:
    def __init__(
        self,
        realtime: RealtimeGateway,
        publish: Optional[Callable[[ChangeEvent], Any]] = None,
    ):
        self._realtime = realtime
        self._publish = publish

    def emit(
        self,
        table: str,
        action: str,
        record: Any,
        exclude_user_ids: Optional[Iterable[Any]] = None,
        audience_user_ids: Optional[Iterable[Any]] = None,
    ) -> None:
        event = ChangeEvent.build(
            table,
            action,
            record,
            exclude_user_ids=exclude_user_ids,
            audience_user_ids=audience_user_ids,
        )
        if not event.session_id:
            # not session-scoped, nobody to tell
            return
        delivered = self._realtime.broadcast_to(
            event.session_id,
            event.frame(),
            audience=event.audience,
            excluded=event.excluded,
        )
        logger.debug(
            "Change %s.%s session=%s queued for %s connection(s)",
            table,
            action,
            event.session_id,
            delivered,
        )
        if self._publish is not None:
            self._publish(event)


notifier = ChangeNotifier(gateway, publish=publish_session_change)


def emit_change(
    table: str,
    action: str,
    record: Any,
    exclude_user_ids: Optional[Iterable[Any]] = None,
    audience_user_ids: Optional[Iterable[Any]] = None,
) -> None:
    notifier.emit(
        table,
        action,
        record,
        exclude_user_ids=exclude_user_ids,
        audience_user_ids=audience_user_ids,
    )
