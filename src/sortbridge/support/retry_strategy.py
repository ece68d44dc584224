from sortbridge.support.mixins import CommonEqualityMixin


class RetryStrategy:
    """ decides how long to wait before the next attempt, or None to stop retrying. """

    attempts = 0

    def __call__(self):
        return 0

    def reset(self):
        pass


class BoundedRetryStrategy(RetryStrategy, CommonEqualityMixin):
    """
    Retries after a constant interval until a fixed number of failed attempts have been counted.

    The delay does not grow between attempts. The attempt counter never exceeds max_attempts.
    """

    def __init__(self, retry_interval, max_attempts):
        """
        :param retry_interval: seconds to wait before each retry
        :param max_attempts: the number of failures after which retrying stops
        """
        self.retry_interval = retry_interval
        self.max_attempts = max_attempts
        self.attempts = 0

    def __call__(self):
        """ records a failed attempt.
        :return: the delay until the next attempt, or None when the bound is reached.
        """
        if self.exhausted:
            return None
        self.attempts += 1
        return None if self.exhausted else self.retry_interval

    @property
    def exhausted(self):
        return self.attempts >= self.max_attempts

    def reset(self):
        self.attempts = 0

    def exhaust(self):
        """ sets the counter to the bound so that no further retries are scheduled """
        self.attempts = self.max_attempts
