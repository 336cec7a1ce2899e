import pytest

from analyzer import Analyzer, RequiredAction, classify, stream_number_for_index
from models.audio_info import TargetLayout
from models.config import Policy
from conftest import stream


@pytest.mark.parametrize("streams", [
    [stream(1, 6, "ac3")],
    [stream(1, 2), stream(2, 6, "ac3")],
    [stream(1, 8, "dts"), stream(2, 6, "ac3")],
    [stream(1, 6, "ac3"), stream(2, 8, "truehd"), stream(3, 2)],
])
def test_any_51_is_already_complete(streams):
    decision = Analyzer().analyze(streams)
    assert decision.action == RequiredAction.ALREADY_COMPLETE
    assert decision.requests == []


@pytest.mark.parametrize("streams", [
    [],
    [stream(1, 2)],
    [stream(1, 1, "mp3")],
    [stream(1, 2), stream(2, 2, "ac3")],
    [stream(1, 5, "dts"), stream(2, 7, "dts")],
])
def test_no_51_and_no_71_is_no_surround_source(streams):
    decision = Analyzer().analyze(streams)
    assert decision.action == RequiredAction.NO_SURROUND_SOURCE
    assert decision.action.is_skip


def test_stereo_only_reason_is_distinct():
    stereo_only = Analyzer().analyze([stream(1, 2)])
    nothing = Analyzer().analyze([])
    assert "only has stereo" in stereo_only.reason
    assert stereo_only.reason != nothing.reason


def test_first_71_stream_wins():
    streams = [stream(1, 2), stream(2, 8, "dts"), stream(3, 8, "truehd")]
    decision = Analyzer().analyze(streams)

    assert decision.action == RequiredAction.SYNTHESIZE_FROM_71
    assert len(decision.requests) == 1
    request = decision.requests[0]
    assert request.target == TargetLayout.SURROUND
    assert request.source_stream_number == 1
    assert request.source_stream_index == 2
    assert request.source_channels == 8


def test_stream_number_is_ordinal_not_container_index():
    # Video at index 0 and a subtitle at 2 push the container indices
    streams = [stream(1, 2, "aac"), stream(3, 8, "dts")]
    config = classify(streams)

    assert config.has_71
    assert config.first_71_stream_number == 1
    assert config.first_71_stream_index == 3
    assert stream_number_for_index(streams, 3) == 1
    assert stream_number_for_index(streams, 2) is None


def test_classify_ignores_other_channel_counts():
    config = classify([stream(0, 1), stream(1, 3), stream(2, 7)])
    assert not (config.has_stereo or config.has_51 or config.has_71)
    assert config.first_71_stream_number is None


def test_scenario_stereo_plus_71():
    decision = Analyzer().analyze([stream(0, 2, "aac"), stream(1, 8, "dts")])
    assert decision.action == RequiredAction.SYNTHESIZE_FROM_71
    assert decision.requests[0].source_stream_number == 1


def test_analyze_is_deterministic():
    streams = [stream(0, 2), stream(1, 8, "dts")]
    analyzer = Analyzer()
    assert analyzer.analyze(streams) == analyzer.analyze(streams)


@pytest.mark.parametrize("channels, action, targets", [
    ([8], RequiredAction.SYNTHESIZE_BOTH, [TargetLayout.SURROUND, TargetLayout.STEREO]),
    ([2, 8], RequiredAction.SYNTHESIZE_FROM_71, [TargetLayout.SURROUND]),
    ([6], RequiredAction.SYNTHESIZE_STEREO, [TargetLayout.STEREO]),
    ([6, 8], RequiredAction.SYNTHESIZE_STEREO, [TargetLayout.STEREO]),
    ([2, 6], RequiredAction.ALREADY_COMPLETE, []),
    ([2], RequiredAction.NO_SURROUND_SOURCE, []),
    ([], RequiredAction.NO_SURROUND_SOURCE, []),
])
def test_full_policy_table(channels, action, targets):
    streams = [stream(i + 1, ch) for i, ch in enumerate(channels)]
    decision = Analyzer(Policy.FULL).analyze(streams)
    assert decision.action == action
    assert [r.target for r in decision.requests] == targets


def test_full_policy_stereo_source_is_first_wider_stream():
    streams = [stream(1, 1), stream(2, 6, "ac3", "eng"), stream(3, 8, "dts")]
    decision = Analyzer(Policy.FULL).analyze(streams)

    assert decision.action == RequiredAction.SYNTHESIZE_STEREO
    request = decision.requests[0]
    assert request.source_stream_number == 1
    assert request.source_stream_index == 2
    assert request.language == "eng"
