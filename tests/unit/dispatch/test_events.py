"""Unit tests for dispatch event parsing."""

import pytest

from cascade.dispatch import DispatchEvent, EventKind
from cascade.errors import ConfigurationError, DispatchError


class TestDispatchEvent:
    """Test suite for DispatchEvent."""

    def test_build_one_short_name(self):
        event = DispatchEvent.from_payload({"event_type": "build_protocol", "sha": "abc1234def"})
        assert event.event_kind is EventKind.BUILD_ONE
        assert event.trigger_repo == "blvm-protocol"
        assert event.short_sha == "abc1234"
        assert event.event_type == "build_protocol"

    def test_build_one_full_name_with_underscores(self):
        event = DispatchEvent.from_payload({"event_type": "build_blvm_node"})
        assert event.trigger_repo == "blvm-node"
        assert event.commit_sha == ""
        assert event.ref == "refs/heads/main"

    def test_build_all(self):
        event = DispatchEvent.from_payload({"event_type": "build_all", "ref": "refs/heads/dev"})
        assert event.event_kind is EventKind.BUILD_ALL
        assert event.trigger_repo is None
        assert event.ref == "refs/heads/dev"

    def test_nightly(self):
        assert DispatchEvent.from_payload({"event_type": "nightly"}).event_kind is EventKind.NIGHTLY

    def test_unknown_repository(self):
        with pytest.raises(ConfigurationError, match="Unknown repository"):
            DispatchEvent.from_payload({"event_type": "build_wallet"})

    @pytest.mark.parametrize("event_type", ["", "deploy", "build_"])
    def test_unrecognized_event_type(self, event_type):
        with pytest.raises(DispatchError):
            DispatchEvent.from_payload({"event_type": event_type})

    def test_build_one_requires_repo(self):
        with pytest.raises(DispatchError):
            DispatchEvent(None, "abc", EventKind.BUILD_ONE)

    def test_to_payload(self):
        event = DispatchEvent("blvm-sdk", "f" * 40, EventKind.BUILD_ONE)
        assert event.to_payload() == {
            "event_type": "build_sdk",
            "ref": "refs/heads/main",
            "sha": "f" * 40,
            "repo": "blvm-sdk",
        }

    @pytest.mark.parametrize("name", ["blvm-protocol", "blvm-commons", "blvm"])
    def test_event_type_uses_short_name_and_parses_back(self, name):
        event = DispatchEvent(name, "abc", EventKind.BUILD_ONE)
        assert not event.event_type.startswith("build_blvm-")
        assert DispatchEvent.from_payload(event.to_payload()).trigger_repo == name
