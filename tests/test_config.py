"""Tests für das Konfigurationssystem."""

import pytest
from pydantic import ValidationError

from config.defaults import DEMO_COURSES, ENROLLMENT_TRANSITIONS, default_institute_config
from config.manager import ConfigManager
from config.schema import (
    EnrollmentConfig,
    InstituteConfig,
    LoggingConfig,
    PricingConfig,
    Role,
    ScheduleConfig,
)
from models.enrollment import EnrollmentStatus


# ─── DEFAULT-KONFIGURATION ────────────────────────────────────────────────────

class TestDefaultConfig:
    def test_default_config_valid(self):
        config = default_institute_config()
        assert config.pricing.currency == "EUR"
        assert config.pricing.minor_unit_digits == 2
        assert config.enrollment.default_max_students == 30
        assert config.enrollment.version_retry_limit == 1
        assert config.schedule.timezone == "Europe/Berlin"
        assert config.progress.auto_complete is True

    def test_day_names_start_with_sunday(self):
        assert ScheduleConfig().day_names[0] == "So"
        assert ScheduleConfig().day_names[6] == "Sa"

    def test_correction_roles_default(self):
        roles = default_institute_config().attendance.correction_roles
        assert Role.ADMIN in roles
        assert Role.INSTRUCTOR in roles
        assert Role.STUDENT not in roles

    def test_transition_table_covers_all_statuses(self):
        assert set(ENROLLMENT_TRANSITIONS) == {s.value for s in EnrollmentStatus}
        for targets in ENROLLMENT_TRANSITIONS.values():
            assert targets <= {s.value for s in EnrollmentStatus}

    def test_terminal_statuses(self):
        assert ENROLLMENT_TRANSITIONS["completed"] == frozenset()
        assert ENROLLMENT_TRANSITIONS["dropped"] == frozenset()

    def test_demo_courses_have_subjects(self):
        for name, (fee, subjects) in DEMO_COURSES.items():
            assert float(fee) > 0, name
            assert subjects >= 3, name


# ─── VALIDIERUNG ──────────────────────────────────────────────────────────────

class TestConfigValidation:
    def test_unknown_timezone(self):
        with pytest.raises(ValidationError):
            ScheduleConfig(timezone="Mars/Olympus")

    def test_day_names_need_seven_entries(self):
        with pytest.raises(ValidationError):
            ScheduleConfig(day_names=["Mo", "Di"])

    def test_minor_unit_range(self):
        with pytest.raises(ValidationError):
            PricingConfig(minor_unit_digits=5)

    def test_retry_limit_range(self):
        with pytest.raises(ValidationError):
            EnrollmentConfig(version_retry_limit=10)

    def test_default_capacity_positive(self):
        with pytest.raises(ValidationError):
            EnrollmentConfig(default_max_students=0)

    def test_log_level_normalized(self):
        assert LoggingConfig(level="debug").level == "DEBUG"
        with pytest.raises(ValidationError):
            LoggingConfig(level="laut")


# ─── CONFIG-MANAGER ───────────────────────────────────────────────────────────

class TestConfigManager:
    def test_save_and_load_roundtrip(self, tmp_path):
        path = tmp_path / "institute_config.yaml"
        mgr = ConfigManager(path)
        assert mgr.first_run_check()

        config = default_institute_config()
        config.institute_name = "Abendschule Nord"
        config.enrollment.default_max_students = 18
        mgr.save(config)

        assert not mgr.first_run_check()
        loaded = mgr.load()
        assert loaded == config

    def test_saved_file_has_comments(self, tmp_path):
        path = tmp_path / "institute_config.yaml"
        ConfigManager(path).save(default_institute_config())
        text = path.read_text(encoding="utf-8")
        assert "Institutskonfiguration" in text
        assert "─── Einschreibung ───" in text
        assert "keine automatische Wiederholung" in text

    def test_load_missing(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            ConfigManager(tmp_path / "fehlt.yaml").load()

    def test_load_invalid(self, tmp_path):
        path = tmp_path / "kaputt.yaml"
        path.write_text("schedule:\n  timezone: Nirgendwo/Stadt\n", encoding="utf-8")
        with pytest.raises(ValueError):
            ConfigManager(path).load()

    def test_partial_file_uses_defaults(self, tmp_path):
        path = tmp_path / "teil.yaml"
        path.write_text("institute_name: Kurs-Akademie\n", encoding="utf-8")
        config = ConfigManager(path).load()
        assert config.institute_name == "Kurs-Akademie"
        assert config == InstituteConfig(institute_name="Kurs-Akademie")
