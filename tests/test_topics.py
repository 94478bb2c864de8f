from barleybox.topics import derive, diagnostic_topic


def test_derive_matches_device_namespace():
    topics = derive("barleybox-001")

    assert topics.telemetry == "farm/telemetry/barleybox-001"
    assert topics.status == "farm/status/barleybox-001"
    assert topics.config_out == "farm/config/barleybox-001/current"
    assert topics.config_in == "farm/config/barleybox-001"
    assert topics.command == "farm/command/barleybox-001"
    assert topics.control_heater == "farm/control/barleybox-001/heater"
    assert topics.control_mist == "farm/control/barleybox-001/mist"
    assert topics.control_feed == "farm/control/barleybox-001/feed"
    assert topics.control_mode == "farm/control/barleybox-001/mode"


def test_derive_is_deterministic():
    assert derive("box1") == derive("box1")
    assert derive("box1").all() == derive("box1").all()


def test_inbound_topics_are_subscription_order():
    topics = derive("box1")
    assert topics.inbound() == (topics.telemetry, topics.config_out, topics.status)


def test_control_lookup_by_channel():
    topics = derive("box1")
    assert topics.control("heater") == topics.control_heater
    assert topics.control("mist") == topics.control_mist
    assert topics.control("feed") == topics.control_feed
    assert topics.control("mode") == topics.control_mode


def test_distinct_identities_never_share_topics():
    identities = ["box1", "box2", "box1/current", "box1/heater", "a+b", "a#", "a%2Fcurrent", "box 1"]
    seen: dict[str, str] = {}

    for identity in identities:
        for topic in derive(identity).all():
            assert topic not in seen, f"{identity!r} collides with {seen[topic]!r} on {topic}"
            seen[topic] = identity


def test_identity_cannot_add_topic_levels_or_wildcards():
    topics = derive("a/b+#")
    assert topics.telemetry == "farm/telemetry/a%2Fb%2B%23"
    assert all(t.count("/") in (2, 3) for t in topics.all())


def test_diagnostic_topic():
    assert diagnostic_topic("box1") == "farm/test/box1"
