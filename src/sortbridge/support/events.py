import logging

logger = logging.getLogger(__name__)


class EventSource(object):
    """
    Delivers events to any number of independent handlers.

    A handler that raises is logged and does not prevent delivery to the remaining handlers.
    Handlers may be restricted to a single event type with subscribe().
    """

    def __init__(self):
        self._handlers = []

    def add(self, handler):
        self._handlers.append(handler)
        return self

    def remove(self, handler):
        if handler in self._handlers:
            self._handlers.remove(handler)
        return self

    def subscribe(self, event_type, handler):
        """
        Registers a handler that only receives events that are instances of event_type.
        :return: the registered wrapper, which can be passed to remove()
        """
        def typed_handler(event, *args, **kwargs):
            if isinstance(event, event_type):
                handler(event, *args, **kwargs)
        typed_handler.wrapped = handler
        self.add(typed_handler)
        return typed_handler

    def fire(self, *args, **kwargs):
        for handler in tuple(self._handlers):
            try:
                handler(*args, **kwargs)
            except Exception as e:
                logger.exception("event handler %s failed: %s" % (handler, e))
