def _quote(val):
    return repr(val) if isinstance(val, str) else str(val)


class StringerMixin:
    """ renders the class name and the instance attributes, sorted by name. """

    def __str__(self):
        return "%s(%s)" % (type(self).__name__, self._sorted_items_string())

    __repr__ = __str__

    def _sorted_items_string(self):
        return ", ".join("%s=%s" % (key, _quote(val)) for key, val in sorted(self.__dict__.items()))


class CommonEqualityMixin(object):
    """ value equality for simple records: same class and equal attribute dictionaries. """

    def __eq__(self, other):
        return isinstance(other, self.__class__) and self.__dict__ == other.__dict__

    def __ne__(self, other):
        return not self.__eq__(other)

    __hash__ = None


class ValueObject(StringerMixin, CommonEqualityMixin):
    """ convenience base for events and decisions that are compared and logged by value. """
