# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/lnfleet/config/example.py

from __future__ import annotations

from ..utils.template_renderer import TemplateRenderer

EXAMPLE_HOSTS = [
    {"name": "kld-00", "role": "application", "ipv4_address": "192.168.0.10"},
    {"name": "db-00", "role": "database", "ipv4_address": "192.168.0.11"},
    {"name": "db-01", "role": "database", "ipv4_address": "192.168.0.12"},
]


def generate_example(renderer: TemplateRenderer | None = None) -> str:
    """Render the template cluster description shipped as example/cluster.toml."""
    renderer = renderer or TemplateRenderer()
    return renderer.render(
        "cluster.toml.j2",
        {
            "deployment_flake": "github:example/lnfleet-deployment",
            "application_flake": "github:kuutamolabs/lightning-knd",
            "secret_directory": "secrets",
            "ipv4_gateway": "192.168.0.254",
            "ipv4_cidr": 24,
            "disks": ["/dev/nvme0n1", "/dev/nvme1n1"],
            "hosts": EXAMPLE_HOSTS,
        },
    )
