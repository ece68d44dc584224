import logging
import time
from collections import OrderedDict, deque
from datetime import datetime, timezone

from sortbridge.support.mixins import StringerMixin

logger = logging.getLogger(__name__)

DAY = 24 * 60 * 60

FINISHED_STATUSES = ('completed', 'error')


class PackageInfo(StringerMixin):
    def __init__(self, package_id, source_device_id, signal, signal_value, created, device_name=None, area=None):
        self.package_id = package_id
        self.source_device_id = source_device_id
        self.signal = signal
        self.signal_value = signal_value
        self.created = created
        self.device_name = device_name
        self.area = area
        self.status = 'created'
        self.last_update = None
        self.completed = None

    @property
    def processing_time(self):
        """ seconds from creation until completion, or until now for an active package """
        end = self.completed if self.completed is not None else time.time()
        return max(0.0, end - self.created)


class PackageRegistry:
    """
    Issues package ids and remembers the packages created from device signals.

    Active packages are kept until they complete, fail, or are older than max_age.
    The most recent max_history packages are kept in the history regardless of status.
    """

    def __init__(self, prefix='PKG', max_history=1000, max_age=DAY, clock=time.time):
        self.prefix = prefix
        self.max_age = max_age
        self.clock = clock
        self.counter = 0
        self.started = clock()
        self._active = OrderedDict()
        self._history = deque(maxlen=max_history)

    def generate_id(self):
        """ ids look like PKG_20240101T120000_001 """
        self.counter += 1
        stamp = datetime.fromtimestamp(self.clock(), timezone.utc).strftime('%Y%m%dT%H%M%S')
        return '%s_%s_%03d' % (self.prefix, stamp, self.counter)

    def create(self, signal, value, device) -> PackageInfo:
        """
        :param signal: the triggering signal name
        :param value: the raw signal value, kept for reporting only
        :param device: DeviceSettings of the device that raised the signal
        """
        info = PackageInfo(self.generate_id(), device.id, signal, value or '1', self.clock(),
                           device.name, device.area)
        self._active[info.package_id] = info
        self._history.appendleft(info)
        logger.info("created package %s from %s:%s on %s" % (info.package_id, signal, value, device.id))
        return info

    def update_status(self, package_id, status):
        info = self._active.get(package_id)
        if info is None:
            logger.warning("status %s for unknown package %s" % (status, package_id))
            return False
        info.status = status
        info.last_update = self.clock()
        if status in FINISHED_STATUSES:
            info.completed = self.clock()
            del self._active[package_id]
            logger.info("package %s %s after %.3fs" % (package_id, status, info.completed - info.created))
        return True

    def get(self, package_id):
        return self._active.get(package_id)

    def active(self):
        return list(self._active.values())

    def history(self, limit=50):
        return list(self._history)[:limit]

    def statistics(self):
        now = self.clock()
        finished = [p for p in self._history if p.completed is not None]
        average = sum(p.completed - p.created for p in finished) / len(finished) if finished else 0
        return {
            'activePackages': len(self._active),
            'totalPackages': self.counter,
            'completedPackages': self.counter - len(self._active),
            'recent24Hours': sum(1 for p in self._history if now - p.created < DAY),
            'averageProcessingTime': round(average, 3),
            'uptime': now - self.started
        }

    def cleanup(self):
        """ drops active packages older than max_age, which were never reported finished
        :return: the number dropped
        """
        now = self.clock()
        expired = [key for key, p in self._active.items() if now - p.created > self.max_age]
        for key in expired:
            del self._active[key]
        if expired:
            logger.info("dropped %d stale packages" % len(expired))
        return len(expired)

    def reset(self):
        logger.info("package registry reset")
        self.counter = 0
        self._active.clear()
        self._history.clear()
        self.started = self.clock()
