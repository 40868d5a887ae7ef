"""
Tests for container naming, tier limits and proxy labels
"""

from c4g.runtime.labels import (
    LABEL_INSTANCE_ID,
    LABEL_MANAGED_BY,
    LABEL_SUBDOMAIN,
    LABEL_USER_ID,
    MANAGED_BY,
    HealthCheck,
    instance_labels,
    instance_url,
    limits_for_tier,
    resource_names,
)


def test_resource_names_are_derived_from_user():
    names = resource_names("abc-123")

    assert names.container == "openclaw-abc-123"
    assert names.config_volume == "openclaw-abc-123-config"
    assert names.workspace_volume == "openclaw-abc-123-workspace"
    assert names.isolated_network == "c4g-isolated-openclaw-abc-123"
    assert names.volumes == ["openclaw-abc-123-config", "openclaw-abc-123-workspace"]


class TestTierLimits:
    def test_known_tiers(self):
        assert limits_for_tier("free").to_dict() == {"memory_mb": 256, "cpus": 0.5, "pids_limit": 100}
        assert limits_for_tier("pro").to_dict() == {"memory_mb": 512, "cpus": 1.0, "pids_limit": 200}
        assert limits_for_tier("enterprise").to_dict() == {"memory_mb": 1024, "cpus": 2.0, "pids_limit": 500}

    def test_missing_or_unknown_tier_gets_pro(self):
        assert limits_for_tier(None) == limits_for_tier("pro")
        assert limits_for_tier("platinum") == limits_for_tier("pro")


def test_instance_labels_route_subdomain():
    labels = instance_labels("inst-1", "user-1", "acme-k3m9", "claw4growth.com", 18789)

    assert labels["caddy"] == "acme-k3m9.claw4growth.com"
    assert labels["caddy.reverse_proxy"] == "{{upstreams 18789}}"
    assert labels[LABEL_INSTANCE_ID] == "inst-1"
    assert labels[LABEL_USER_ID] == "user-1"
    assert labels[LABEL_SUBDOMAIN] == "acme-k3m9"
    assert labels[LABEL_MANAGED_BY] == MANAGED_BY


def test_instance_url():
    assert instance_url("acme-k3m9", "claw4growth.com") == "https://acme-k3m9.claw4growth.com"


def test_healthcheck_in_nanoseconds():
    hc = HealthCheck().to_docker()
    assert hc["interval"] == 30_000_000_000
    assert hc["start_period"] == 60_000_000_000
    assert hc["retries"] == 3
