from tracking.countdown import CountdownTimer, format_clock


def test_format_clock():
    assert format_clock(125) == "02:05"
    assert format_clock(59.9) == "00:59"
    assert format_clock(0) == "00:00"
    assert format_clock(-4) == "00:00"


def test_remaining_is_a_pure_function_of_end_minus_now(scheduler):
    timer = CountdownTimer(scheduler.now() + 90.5, clock=scheduler.now, scheduler=scheduler)

    assert timer.remaining_seconds == 90
    assert timer.remaining_seconds == timer.remaining_seconds
    assert timer.remaining_at(scheduler.now() + 100) == 0
    assert timer.active


def test_expired_fires_exactly_once_after_125_seconds(scheduler):
    expired = []
    timer = CountdownTimer(
        scheduler.now() + 120,
        clock=scheduler.now,
        scheduler=scheduler,
        on_expired=lambda: expired.append(scheduler.now()),
    )
    timer.start()

    scheduler.advance(125)
    assert timer.remaining_seconds == 0
    assert not timer.active
    assert len(expired) == 1

    scheduler.advance(60)
    timer.tick()
    assert len(expired) == 1
    assert not timer.running


def test_suspended_host_reads_correct_time_without_ticks():
    now = [1000.0]
    timer = CountdownTimer(1060.0, clock=lambda: now[0], scheduler=None)

    # nothing ticked for 45s (backgrounded process)
    now[0] += 45
    assert timer.remaining_seconds == 15


def test_countdown_already_past_never_fires(scheduler):
    expired = []
    timer = CountdownTimer(scheduler.now() - 5, clock=scheduler.now, scheduler=scheduler,
                           on_expired=lambda: expired.append(True))
    timer.start()
    scheduler.advance(10)

    assert expired == []
    assert timer.remaining_seconds == 0


def test_reset_rearms_and_keeps_ticking(scheduler):
    ticks = []
    expired = []
    timer = CountdownTimer(scheduler.now() + 3, clock=scheduler.now, scheduler=scheduler,
                           on_tick=ticks.append, on_expired=lambda: expired.append(True))
    timer.start()
    scheduler.advance(1)
    timer.reset(scheduler.now() + 10)

    assert timer.running
    scheduler.advance(5)
    assert expired == []
    assert ticks[-1] == 5
    scheduler.advance(6)
    assert expired == [True]


def test_expire_now_ends_the_countdown(scheduler):
    expired = []
    timer = CountdownTimer(scheduler.now() + 60, clock=scheduler.now, scheduler=scheduler,
                           on_expired=lambda: expired.append(True))
    timer.start()
    timer.expire_now()

    assert timer.remaining_seconds == 0
    assert timer.expired
    assert expired == [True]
