"""
Chooses which actuator on a path diverts an arriving package, and to which side.

Each actuator on a path exposes two outlets, left and right, numbered from 1 along the path:
actuator i has outlets i * 2 + 1 (left) and i * 2 + 2 (right).
"""
import logging
import random
import threading
import time

from sortbridge.support.mixins import ValueObject

logger = logging.getLogger(__name__)

LEFT = 'left'
RIGHT = 'right'
STRAIGHT = 'straight'
BOTH_DIRECTIONS = (LEFT, RIGHT)

SORT = 'sort'

REPORT_EVERY = 100


class SortDecision(ValueObject):
    """ The outcome of a selection. target_code is 0 for a straight-through decision. """

    def __init__(self, action, actuator_index=-1, direction=STRAIGHT, target_code=0):
        self.action = action
        self.actuator_index = actuator_index
        self.direction = direction
        self.target_code = target_code

    @property
    def diverted(self):
        return self.action == SORT

    def as_dict(self):
        return {
            'action': self.action,
            'sorterIndex': self.actuator_index,
            'direction': self.direction,
            'targetSortCode': self.target_code
        }


def straight_through():
    return SortDecision(STRAIGHT)


def target_code(actuator_index, direction):
    """
    >>> target_code(0, 'left'), target_code(0, 'right'), target_code(5, 'left')
    (1, 2, 11)
    """
    return actuator_index * 2 + (1 if direction == LEFT else 2)


class UsageTable:
    """ Counts the diversions made by each actuator on one path since the last reset. """

    def __init__(self, path_id, actuator_count, clock=time.time):
        self.path_id = path_id
        self.counts = [0] * actuator_count
        self.last_reset = clock()
        self.lock = threading.Lock()

    def __len__(self):
        return len(self.counts)

    @property
    def total(self):
        return sum(self.counts)

    def least_used(self):
        """ the indexes of the actuators with the lowest count """
        minimum = min(self.counts)
        return [i for i, count in enumerate(self.counts) if count == minimum]

    def reset(self, clock=time.time):
        self.counts = [0] * len(self.counts)
        self.last_reset = clock()

    def summary(self):
        counts = self.counts
        size = len(counts)
        total = sum(counts)
        average = total / size if size else 0
        variance = sum((c - average) ** 2 for c in counts) / size if size else 0
        maximum = max(counts) if counts else 0
        minimum = min(counts) if counts else 0
        return {
            'totalSorters': size,
            'totalUsage': total,
            'averageUsage': round(average, 2),
            'maxUsage': maximum,
            'minUsage': minimum,
            'variance': round(variance, 2),
            'balanceScore': round((1 - (maximum - minimum) / (average or 1)) * 100),
            'usageDetails': [{
                'sorterIndex': i + 1,
                'usageCount': count,
                'percentage': round(count * 100 / total) if total else 0
            } for i, count in enumerate(counts)]
        }


class ActuatorLoadBalancer:
    """
    Decides whether to divert a package and assigns the least used actuator on its path.

    Ties between equally used actuators are broken uniformly at random, which keeps the load even
    without the fixed cycle of a round-robin.

    :param settings: SortingSettings giving the global switch, probabilities, actuator counts and
        direction constraints per path
    :param rng: the random source; a random.Random instance
    """

    def __init__(self, settings, rng=None, clock=time.time):
        self.settings = settings
        self.rng = rng or random.Random()
        self.clock = clock
        self._tables = {}
        self._tables_lock = threading.Lock()

    def _table(self, path_id, actuator_count):
        with self._tables_lock:
            table = self._tables.get(path_id)
            if table is None or len(table) != actuator_count:
                if table is not None:
                    logger.info("actuator count on %s changed from %d to %d, usage restarted" %
                                (path_id, len(table), actuator_count))
                else:
                    logger.info("tracking usage of %d actuators on %s" % (actuator_count, path_id))
                table = self._tables[path_id] = UsageTable(path_id, actuator_count, self.clock)
            return table

    def select(self, path_id) -> SortDecision:
        """
        Decides the route for one package arriving on a path.
        Only a diversion changes the path's usage table.
        """
        settings = self.settings
        actuator_count = settings.actuator_count(path_id)
        if not settings.enabled or actuator_count <= 0:
            logger.debug("%s: no diversion configured, straight through" % path_id)
            return straight_through()

        probability = settings.probability(path_id)
        if self.rng.random() >= probability:
            logger.debug("%s: straight through (divert probability %.2f)" % (path_id, probability))
            return straight_through()

        index, usage = self._select_actuator(path_id, actuator_count)
        allowed = settings.directions(path_id)
        direction = self._select_direction(allowed)
        decision = SortDecision(SORT, index, direction, target_code(index, direction))
        logger.debug("%s: actuator %d %s, outlet %d, used %d times" %
                     (path_id, index + 1, direction, decision.target_code, usage))
        return decision

    def _select_actuator(self, path_id, actuator_count):
        table = self._table(path_id, actuator_count)
        with table.lock:
            candidates = table.least_used()
            index = candidates[self.rng.randrange(len(candidates))]
            table.counts[index] += 1
            usage = table.counts[index]
            total = table.total
        if total % REPORT_EVERY == 0:
            logger.info("%s actuator usage after %d diversions: %s" % (path_id, total, table.counts))
        return index, usage

    def _select_direction(self, allowed):
        if len(allowed) == 1:
            return allowed[0]
        if LEFT in allowed and RIGHT in allowed:
            return LEFT if self.rng.random() < self.settings.left_right_balance else RIGHT
        return allowed[self.rng.randrange(len(allowed))]

    def usage(self, path_id):
        """ a copy of the per-actuator counts on a path, or None if the path has not been used """
        table = self._tables.get(path_id)
        return None if table is None else list(table.counts)

    def reset(self, path_id):
        """ zeroes the counts for a path, keeping its actuator count """
        table = self._tables.get(path_id)
        if table is None:
            return False
        with table.lock:
            table.reset(self.clock)
        logger.info("actuator usage on %s reset" % path_id)
        return True

    def reset_all(self):
        for path_id in list(self._tables):
            self.reset(path_id)

    def overview(self):
        return {path_id: table.summary() for path_id, table in self._tables.items()}

    def report(self):
        """ logs the usage of every path """
        for path_id, stats in self.overview().items():
            logger.info("%s: %d actuators, %d diversions, min %d, max %d, balance %d%%" %
                        (path_id, stats['totalSorters'], stats['totalUsage'], stats['minUsage'],
                         stats['maxUsage'], stats['balanceScore']))
