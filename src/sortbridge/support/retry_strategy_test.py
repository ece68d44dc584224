from unittest import TestCase

from hamcrest import is_, assert_that, none

from sortbridge.support.retry_strategy import BoundedRetryStrategy, RetryStrategy


class RetryStrategyTest(TestCase):
    def test_is_zero(self):
        assert_that(RetryStrategy()(), is_(0))


class BoundedRetryStrategyTest(TestCase):

    def setUp(self):
        self.sut = BoundedRetryStrategy(5, 3)

    def test_interval_is_constant(self):
        assert_that(self.sut(), is_(5))
        assert_that(self.sut(), is_(5))
        assert_that(self.sut.attempts, is_(2))

    def test_exhausted_at_bound(self):
        self.sut()
        self.sut()
        assert_that(self.sut(), is_(none()))
        assert_that(self.sut.exhausted, is_(True))
        assert_that(self.sut.attempts, is_(3))

    def test_counter_never_exceeds_bound(self):
        for _ in range(10):
            self.sut()
        assert_that(self.sut.attempts, is_(3))
        assert_that(self.sut(), is_(none()))

    def test_reset(self):
        self.sut.exhaust()
        assert_that(self.sut.exhausted, is_(True))
        self.sut.reset()
        assert_that(self.sut.attempts, is_(0))
        assert_that(self.sut(), is_(5))

    def test_single_attempt(self):
        sut = BoundedRetryStrategy(1, 1)
        assert_that(sut(), is_(none()))
