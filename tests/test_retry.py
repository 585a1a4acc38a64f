from ofcontrib.retry import DEFAULT_DELAY, FACTOR, RetryCounter


def test_default_delay_is_one_second():
    assert RetryCounter(3).sleep() == DEFAULT_DELAY == 1.0


def test_retry_allows_up_to_max():
    counter = RetryCounter(2)
    assert [counter.retry() for _ in range(3)] == [True, True, False]


def test_zero_retries_never_allowed():
    assert RetryCounter(0).retry() is False


def test_sleep_grows_by_factor():
    counter = RetryCounter(5, base_delay=0.1)
    first = counter.sleep()
    second = counter.sleep()
    third = counter.sleep()
    assert first == 0.1
    assert second == first * FACTOR
    assert third == second * FACTOR


def test_reset_restores_state():
    counter = RetryCounter(1, base_delay=0.25)
    counter.retry()
    counter.retry()
    counter.sleep()
    counter.sleep()
    counter.reset()
    assert counter.current_retries == 0
    assert counter.sleep() == 0.25
    assert counter.retry() is True