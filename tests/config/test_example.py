from lnfleet.config.example import generate_example
from lnfleet.config.loader import load_description
from lnfleet.config.resolver import resolve


def test_generated_example_matches_shipped_file(example_path):
    assert generate_example() == example_path.read_text()


def test_generated_example_is_a_valid_description(tmp_path):
    p = tmp_path / "cluster.toml"
    p.write_text(generate_example())
    hosts = resolve(load_description(p))
    assert {h.role for h in hosts} == {"application", "database"}
