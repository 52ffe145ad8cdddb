from pathlib import Path

import pytest

from lnfleet.config.loader import load_description, overlay
from lnfleet.errors import ConfigError


def test_load_description_minimal_ok(write_description):
    p = write_description("""
        [hosts.db-00]
        role = "database"
        ipv4_address = "10.0.0.11"
    """)
    desc = load_description(p)
    assert desc.global_.deployment_flake == "github:example/deploy"
    assert desc.host_names() == ["db-00"]
    assert desc.hosts["db-00"].role == "database"


def test_secret_directory_is_resolved_next_to_description(write_description, tmp_path: Path):
    p = write_description("""
        [hosts.db-00]
        role = "database"
        ipv4_address = "10.0.0.11"
    """)
    desc = load_description(p)
    assert Path(desc.global_.secret_directory) == tmp_path / "secrets"


def test_host_order_is_preserved(write_description):
    p = write_description("""
        [hosts.zz-02]
        role = "database"
        ipv4_address = "10.0.0.13"

        [hosts.aa-01]
        role = "database"
        ipv4_address = "10.0.0.12"
    """)
    assert load_description(p).host_names() == ["zz-02", "aa-01"]


def test_secrets_file_is_merged(write_description, tmp_path: Path, monkeypatch):
    monkeypatch.delenv("LNFLEET_SECRETS_FILE", raising=False)
    p = write_description("""
        [hosts.kld-00]
        role = "application"
        ipv4_address = "10.0.0.10"
    """)
    (tmp_path / "cluster.secrets.toml").write_text(
        '[global]\naccess_tokens = "github.com=ghp_secret"\n'
        '[host_defaults]\nmonitoring_password = "hunter2"\n'
    )
    desc = load_description(p)
    assert desc.global_.access_tokens == "github.com=ghp_secret"
    assert desc.host_defaults.monitoring_password == "hunter2"
    # the rest of the description is untouched
    assert desc.host_defaults.ipv4_gateway == "10.0.0.1"


def test_env_references_are_expanded(write_description, monkeypatch):
    monkeypatch.setenv("LNFLEET_TEST_TOKEN", "github.com=ghp_from_env")
    p = write_description("""
        [hosts.kld-00]
        role = "application"
        ipv4_address = "10.0.0.10"
    """)
    p.write_text(p.read_text().replace(
        'secret_directory = "secrets"',
        'secret_directory = "secrets"\naccess_tokens = "${LNFLEET_TEST_TOKEN}"',
    ))
    assert load_description(p).global_.access_tokens == "github.com=ghp_from_env"


def test_missing_file_raises_config_error(tmp_path: Path):
    with pytest.raises(ConfigError, match="does not exist"):
        load_description(tmp_path / "nope.toml")


def test_unknown_field_is_rejected(write_description):
    p = write_description("""
        [hosts.kld-00]
        role = "application"
        ipv4_address = "10.0.0.10"
        colour = "blue"
    """)
    with pytest.raises(ConfigError, match="colour"):
        load_description(p)


def test_invalid_toml_raises_config_error(tmp_path: Path):
    p = tmp_path / "cluster.toml"
    p.write_text("[global\n")
    with pytest.raises(ConfigError):
        load_description(p)


def test_overlay_scalar_override_and_list_replacement():
    defaults = {"ipv4_gateway": "10.0.0.1", "disks": ["/dev/vda"], "log_level": "info"}
    merged = overlay(defaults, {"ipv4_gateway": "10.0.0.254", "disks": ["/dev/vdb", "/dev/vdc"]})
    assert merged["ipv4_gateway"] == "10.0.0.254"
    assert merged["disks"] == ["/dev/vdb", "/dev/vdc"]
    assert merged["log_level"] == "info"
    # inputs are not mutated
    assert defaults["disks"] == ["/dev/vda"]


def test_overlay_additive_fields_append_without_duplicates():
    defaults = {"public_ssh_keys": ["a", "b"], "extra_modules": ["m1"]}
    merged = overlay(defaults, {"public_ssh_keys": ["b", "c"], "extra_modules": ["m2"]})
    assert merged["public_ssh_keys"] == ["a", "b", "c"]
    assert merged["extra_modules"] == ["m1", "m2"]
