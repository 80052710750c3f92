"""Timeline reporting and one-shot watched marking."""

from conftest import start_playing

from watchtower.player.media import BufferedRange


def play_to(controller, media, position):
    media.current_time = position
    controller.on_time_update()


def test_watched_once_past_threshold(make_controller, media, notifier):
    controller = make_controller()
    start_playing(controller, media, duration=1000.0)

    play_to(controller, media, 500.0)
    assert notifier.watched == []

    play_to(controller, media, 910.0)
    play_to(controller, media, 950.0)
    play_to(controller, media, 990.0)

    assert notifier.watched == ["274036"]
    assert controller.session.watched


def test_mark_watched_is_idempotent(make_controller, media, notifier):
    controller = make_controller()
    start_playing(controller, media, duration=1000.0)

    controller.reporter.mark_watched()
    controller.reporter.mark_watched()

    assert notifier.watched == ["274036"]


def test_ended_reports_stopped_and_marks_watched(make_controller, media, notifier):
    controller = make_controller()
    start_playing(controller, media, duration=1000.0)
    play_to(controller, media, 995.0)

    controller.on_ended()

    assert notifier.states()[-1] == "stopped"
    assert notifier.reports[-1].position_ms == 1000000
    assert notifier.watched == ["274036"]


def test_periodic_reports_while_playing(make_controller, media, notifier, scheduler):
    controller = make_controller()
    start_playing(controller, media, duration=1000.0)
    assert notifier.states() == ["playing"]

    scheduler.advance(30.0)
    assert notifier.states() == ["playing"] * 4

    media.pause()
    assert notifier.states()[-1] == "paused"

    scheduler.advance(30.0)
    assert notifier.states() == ["playing"] * 4 + ["paused"]


def test_report_payload(make_controller, media, notifier):
    controller = make_controller()
    start_playing(controller, media, duration=1000.0)
    play_to(controller, media, 12.3456)

    media.pause()

    event = notifier.reports[-1]
    assert event.to_payload() == {
        "titleId": "274036",
        "state": "paused",
        "positionMs": 12346,
        "durationMs": 1000000,
    }


def test_nothing_reported_without_duration(make_controller, media, notifier, scheduler):
    controller = make_controller()
    controller.mount()
    controller.on_can_play()
    scheduler.advance(20.0)

    controller.unmount()

    assert notifier.reports == []
    assert notifier.beacons == []


def test_unmount_sends_stop_beacon_and_cancels_timers(make_controller, media, notifier, scheduler):
    controller = make_controller()
    start_playing(controller, media, duration=1000.0)
    play_to(controller, media, 120.0)

    controller.unmount()

    assert [event.state for event in notifier.beacons] == ["stopped"]
    assert notifier.beacons[0].position_ms == 120000
    assert media.unloads == 1

    reports = len(notifier.reports)
    scheduler.advance(60.0)
    assert len(notifier.reports) == reports

    controller.on_time_update()
    controller.unmount()
    assert len(notifier.beacons) == 1


def test_buffering_keeps_watched_state(make_controller, media, notifier):
    controller = make_controller()
    start_playing(controller, media, duration=100.0, ranges=[BufferedRange(0.0, 100.0)])

    controller.on_waiting()
    play_to(controller, media, 95.0)

    assert notifier.watched == ["274036"]
