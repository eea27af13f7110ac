"""Unit tests for the anti-detection init script."""

from storecrawl.browser_config import AntiDetectionFeatures, StealthPageSettings
from storecrawl.infrastructure.stealth import STEALTH_SCRIPTS, WEBGL_PROFILES, build_stealth_script


class TestBuildStealthScript:
    """Script assembly from page settings."""

    def test_includes_all_countermeasures_by_default(self):
        script = build_stealth_script(StealthPageSettings(), seed=1)

        assert STEALTH_SCRIPTS["webdriver"] in script
        assert STEALTH_SCRIPTS["automation_signals"] in script
        assert STEALTH_SCRIPTS["plugins"] in script
        assert "hardwareConcurrency" in script
        assert '["ko-KR", "ko", "en-US", "en"]' in script

    def test_same_seed_same_fingerprint(self):
        settings = StealthPageSettings()
        assert build_stealth_script(settings, seed=42) == build_stealth_script(settings, seed=42)

    def test_fingerprint_uses_known_profile(self):
        script = build_stealth_script(StealthPageSettings(), seed=7)
        assert any(renderer in script for _, renderer in WEBGL_PROFILES)

    def test_disabled_features_are_left_out(self):
        settings = StealthPageSettings(
            features=AntiDetectionFeatures(simulate_plugins=False, randomize_fingerprint=False)
        )

        script = build_stealth_script(settings, seed=1)

        assert STEALTH_SCRIPTS["plugins"] not in script
        assert "WebGLRenderingContext" not in script
        assert STEALTH_SCRIPTS["webdriver"] in script

    def test_languages_follow_locale(self):
        script = build_stealth_script(StealthPageSettings(locale="en-US"), seed=1)
        assert '["en-US", "en"]' in script
