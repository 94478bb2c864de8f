from barleybox.codec import DeviceOnline, DeviceWarning, FeedTriggered
from barleybox.state import DeviceState, Telemetry


def make_state() -> DeviceState:
    state = DeviceState()
    state.merge_telemetry(
        {"temp_env": 24.5, "hum_env": 80.0, "temp_sub": 19.0, "mode": "AUTO", "heater_on": True, "mist_on": False},
    )
    return state


def test_partial_telemetry_only_overwrites_present_fields():
    state = make_state()
    state.merge_telemetry({"temp_env": 26.0})

    assert state.snapshot().telemetry == Telemetry(
        temp_env=26.0,
        hum_env=80.0,
        temp_sub=19.0,
        mode="AUTO",
        heater_on=True,
        mist_on=False,
    )


def test_empty_patch_changes_nothing():
    state = make_state()
    before = state.snapshot()
    state.merge_telemetry({})
    state.merge_config({})
    assert state.snapshot() == before


def test_null_reading_clears_only_that_reading():
    state = make_state()
    state.merge_telemetry({"temp_sub": None})

    telemetry = state.snapshot().telemetry
    assert telemetry.temp_sub is None
    assert telemetry.temp_env == 24.5


def test_config_merge_is_field_wise():
    state = DeviceState()
    state.merge_config({"T_heat_on": 18.0, "feed_duration_ms": 4500})
    state.merge_config({"T_heat_on": 19.5, "mode": "MANUAL"})

    config = state.snapshot().config
    assert config.T_heat_on == 19.5
    assert config.feed_duration_ms == 4500
    assert config.mode == "MANUAL"
    assert config.upload_interval_seconds is None


def test_unknown_patch_keys_are_ignored():
    state = DeviceState()
    state.merge_telemetry({"co2": 400, "temp_env": 20.0})
    state.merge_config({"colour": "green"})

    assert state.snapshot().telemetry.temp_env == 20.0


def test_status_events_update_their_own_fields():
    state = make_state()

    state.apply_status(FeedTriggered())
    state.apply_status(DeviceWarning("water low"))
    state.apply_status(DeviceOnline())

    snap = state.snapshot()
    assert snap.feeding
    assert snap.last_warning == "water low"
    assert snap.online
    assert snap.telemetry.temp_env == 24.5

    state.clear_feeding()
    assert not state.snapshot().feeding
    assert state.snapshot().last_warning == "water low"


def test_snapshot_is_immutable_view():
    state = make_state()
    snap = state.snapshot()
    state.merge_telemetry({"temp_env": 30.0})

    assert snap.telemetry.temp_env == 24.5
    assert state.snapshot().telemetry.temp_env == 30.0


def test_reset_and_touch():
    state = make_state()
    state.touch(123)
    assert state.snapshot().last_update_ms == 123

    state.reset()
    assert state.snapshot().telemetry == Telemetry()
    assert state.snapshot().last_update_ms is None
