"""Tests for the YAML target registry."""

from __future__ import annotations

import textwrap

import pytest

from src.targets.registry import Target, TargetCheck, TargetRegistry, parse_target, target_to_dict


@pytest.fixture
def targets_file(tmp_path):
    path = tmp_path / "targets.yaml"
    path.write_text(textwrap.dedent("""
        targets:
          - id: shop
            name: Shop
            url: https://shop.test/path
            scan_interval_days: 0.5
            priority: HIGH
            checks:
              - http_status_check
              - name: ssl_certificate_check
                timeout_override: 10
                max_retries: 0
              - name: admin_reachable
                inverted: true
            notification_channels:
              email: shop@shop.test
              sms: "+15550100"
            tags: [prod]
          - id: blog
            url: https://blog.test
            enabled: false
          - name: missing id and url
    """), encoding="utf-8")
    return path


class TestTargetRegistry:
    def test_load(self, targets_file) -> None:
        registry = TargetRegistry(targets_file)
        targets = registry.load()
        assert [t.id for t in targets] == ["shop", "blog"]

        shop = registry.get("shop")
        assert shop.priority == "high"
        assert shop.scan_interval_days == 0.5
        assert shop.hostname == "shop.test"
        assert shop.check_names == ["http_status_check", "ssl_certificate_check", "admin_reachable"]
        assert shop.check_config("ssl_certificate_check") == TargetCheck(
            "ssl_certificate_check", timeout_override=10.0, max_retries=0,
        )
        assert shop.check_config("admin_reachable").inverted
        assert shop.notification_channels["sms"] == "+15550100"
        assert shop.tags == ["prod"]

    def test_defaults(self, targets_file) -> None:
        blog = TargetRegistry(targets_file).get("blog")
        assert blog.name == "blog"
        assert blog.scan_interval_days == 1.0
        assert blog.priority == "normal"
        assert blog.checks == []

    def test_enabled_filter(self, targets_file) -> None:
        assert [t.id for t in TargetRegistry(targets_file).enabled()] == ["shop"]

    def test_missing_file(self, tmp_path) -> None:
        assert TargetRegistry(tmp_path / "nope.yaml").load() == []

    def test_invalid_yaml(self, tmp_path) -> None:
        path = tmp_path / "bad.yaml"
        path.write_text("targets: [unclosed", encoding="utf-8")
        assert TargetRegistry(path).load() == []

    def test_reload_picks_up_changes(self, targets_file) -> None:
        registry = TargetRegistry(targets_file)
        assert len(registry.targets) == 2
        targets_file.write_text("targets:\n  - id: only\n    url: https://only.test\n", encoding="utf-8")
        assert len(registry.targets) == 2
        assert [t.id for t in registry.reload()] == ["only"]

    def test_in_memory_targets(self) -> None:
        registry = TargetRegistry(targets=[Target(id="a", url="https://a.test")])
        assert registry.get("a").url == "https://a.test"
        assert registry.get("b") is None


class TestParsing:
    def test_unknown_priority_falls_back(self) -> None:
        assert parse_target({"id": "x", "url": "https://x.test", "priority": "asap"}).priority == "normal"

    def test_unknown_check_config_defaults(self) -> None:
        target = parse_target({"id": "x", "url": "https://x.test"})
        assert target.check_config("anything") == TargetCheck("anything")

    def test_to_dict_hides_recipients(self) -> None:
        target = parse_target({
            "id": "x", "url": "https://x.test",
            "notification_channels": {"webhook": "https://secret.test/hook", "email": "a@x.test"},
        })
        assert target_to_dict(target)["notification_channels"] == ["email", "webhook"]
