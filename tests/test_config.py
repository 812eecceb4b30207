import pytest

from tuition_fee_engine.config import DEFAULT_ENGINE_SETTINGS, load_settings


def test_empty_environment_gives_defaults():
    assert load_settings({}) == DEFAULT_ENGINE_SETTINGS
    assert DEFAULT_ENGINE_SETTINGS.pending_threshold_days == 10
    assert DEFAULT_ENGINE_SETTINGS.max_partial_payments == 2


def test_settings_from_environment():
    settings = load_settings(
        {
            "FEE_ENGINE_PENDING_THRESHOLD_DAYS": "7",
            "FEE_ENGINE_SEMESTER_LENGTH_MONTHS": "4",
            "FEE_ENGINE_MAX_PARTIAL_PAYMENTS": "3",
            "FEE_ENGINE_LOG_LEVEL": "debug",
            "FEE_ENGINE_CACHE_ENABLED": "no",
        }
    )
    assert settings.pending_threshold_days == 7
    assert settings.semester_length_months == 4
    assert settings.max_partial_payments == 3
    assert settings.log_level == "DEBUG"
    assert settings.cache_enabled is False


def test_zero_semester_length_keeps_default():
    assert load_settings({"FEE_ENGINE_SEMESTER_LENGTH_MONTHS": "0"}).semester_length_months == 6


@pytest.mark.parametrize("raw", ["ten", "-1"])
def test_bad_integer_settings_raise(raw):
    with pytest.raises(ValueError):
        load_settings({"FEE_ENGINE_PENDING_THRESHOLD_DAYS": raw})
