"""
Settings loading and validation tests.

Run with: pytest tests/unit/test_settings.py -v
"""

import pytest

from config.settings import Settings, is_valid_subject_pattern
from utils.error_handling import ConfigurationError


class TestFromEnvironment:
    def test_defaults(self, monkeypatch):
        for name in ("NATS_SERVERS", "NATS_SUBJECTS", "NATS_QUEUE_GROUP", "KNOWLEDGE_BASE_ID"):
            monkeypatch.delenv(name, raising=False)

        settings = Settings.from_environment()

        assert settings.nats_servers == ["nats://localhost:4222"]
        assert settings.nats_subjects == ["customer.events.>"]
        assert settings.nats_queue_group == "contextiq-service"
        assert settings.auto_create_customer is True
        assert settings.knowledge_base_id is None

    def test_overrides(self, monkeypatch):
        monkeypatch.setenv("NATS_SERVERS", "nats://a:4222, nats://b:4222")
        monkeypatch.setenv("NATS_SUBJECTS", "customer.events.>,crm.*.events")
        monkeypatch.setenv("NATS_QUEUE_GROUP", "workers")
        monkeypatch.setenv("NATS_JETSTREAM", "true")
        monkeypatch.setenv("AUTO_CREATE_CUSTOMER", "false")
        monkeypatch.setenv("SUMMARIZE_THRESHOLD", "50")
        monkeypatch.setenv("DERIVE_PURCHASE_KEYS", "0")

        settings = Settings.from_environment()

        assert settings.nats_servers == ["nats://a:4222", "nats://b:4222"]
        assert settings.nats_subjects == ["customer.events.>", "crm.*.events"]
        assert settings.nats_queue_group == "workers"
        assert settings.nats_jetstream is True
        assert settings.auto_create_customer is False
        assert settings.summarize_threshold == 50
        assert settings.derive_purchase_keys is False


class TestValidate:
    def test_defaults_are_valid(self):
        assert Settings().validate().nats_queue_group == "contextiq-service"

    @pytest.mark.parametrize(
        "overrides",
        [
            {"nats_servers": []},
            {"nats_subjects": []},
            {"nats_subjects": ["customer.>.events"]},
            {"nats_subjects": ["customer events"]},
            {"nats_queue_group": ""},
            {"nats_queue_group": "bad group"},
            {"summary_max_chars": 3},
        ],
    )
    def test_invalid_settings_raise(self, overrides):
        with pytest.raises(ConfigurationError):
            Settings(**overrides).validate()


@pytest.mark.parametrize(
    "pattern,valid",
    [
        ("customer.events.>", True),
        ("customer.*.purchase", True),
        (">", True),
        ("customer..events", False),
        ("customer.>.x", False),
        ("", False),
    ],
)
def test_subject_patterns(pattern, valid):
    assert is_valid_subject_pattern(pattern) is valid
