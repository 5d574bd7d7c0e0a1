from app.utils.backoff import calc_next_delay, calc_retry_sleep


def test_next_delay_doubles_until_cap():
    delays = [calc_next_delay(n, 1, 300) for n in range(0, 12)]
    assert delays[:4] == [1.0, 2.0, 4.0, 8.0]
    assert delays[-1] == 300.0
    # 单调不减
    assert all(a <= b for a, b in zip(delays, delays[1:]))


def test_next_delay_never_exceeds_cap_for_huge_attempts():
    assert calc_next_delay(1000, 1, 300) == 300.0
    assert calc_next_delay(-3, 2, 300) == 2.0


def test_retry_sleep_is_exponential_from_attempt_zero():
    assert [calc_retry_sleep(n, 2.0) for n in range(3)] == [2.0, 4.0, 8.0]
