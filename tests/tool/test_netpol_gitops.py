"""Tests for the netpol-gitops command line tool."""

from pathlib import Path

import pytest
import yaml

from netpol_gitops.drift import rules_hash
from netpol_gitops.exceptions import CommandException
from netpol_gitops.manifest import ANNOTATION_TEMPLATE, ANNOTATION_TEMPLATE_PATH

from ..conftest import ALLOW_DNS_TEMPLATE, network_policy
from . import run_command


def write_policy(path: Path, ports: list[int]) -> Path:
    path.write_text(yaml.dump(network_policy("billing", "web", ports=ports), sort_keys=False))
    return path


async def test_hash(tmp_path: Path) -> None:
    """Test printing the rules hash of policy files."""
    first = write_policy(tmp_path / "first.yaml", [443, 80])
    second = write_policy(tmp_path / "second.yaml", [80, 443])
    result = await run_command(["hash", str(first), str(second)])
    lines = result.splitlines()
    assert lines[0].split() == ["FILE", "HASH"]
    expected = rules_hash(network_policy("billing", "web")["spec"])
    assert lines[1].split() == [str(first), expected]
    assert lines[2].split() == [str(second), expected]


async def test_compare_identical(tmp_path: Path) -> None:
    """Test comparing policies that only differ in port order."""
    first = write_policy(tmp_path / "first.yaml", [443, 80])
    second = write_policy(tmp_path / "second.yaml", [80, 443])
    result = await run_command(["compare", str(first), str(second)])
    assert result.strip() == "identical"


async def test_compare_drift(tmp_path: Path) -> None:
    """Test that drift exits with an error status."""
    first = write_policy(tmp_path / "first.yaml", [443])
    second = write_policy(tmp_path / "second.yaml", [8443])
    with pytest.raises(CommandException, match="drift"):
        await run_command(["compare", str(first), str(second)])


async def test_render(tmp_path: Path) -> None:
    """Test rendering a template for several namespaces."""
    template = tmp_path / "templates" / "allow-dns.yaml"
    template.parent.mkdir()
    template.write_text(yaml.dump(ALLOW_DNS_TEMPLATE, sort_keys=False))
    result = await run_command(
        [
            "render",
            "--template",
            str(template),
            "-n",
            "billing",
            "-n",
            "web",
            "--template-dir",
            "templates",
        ]
    )
    docs = list(yaml.safe_load_all(result))
    assert [doc["metadata"]["name"] for doc in docs] == [
        "billing-allow-dns",
        "web-allow-dns",
    ]
    assert [doc["metadata"]["namespace"] for doc in docs] == ["billing", "web"]
    annotations = docs[0]["metadata"]["annotations"]
    assert annotations[ANNOTATION_TEMPLATE] == "allow-dns.yaml"
    assert annotations[ANNOTATION_TEMPLATE_PATH] == "templates/allow-dns.yaml"
    assert docs[1]["spec"] == ALLOW_DNS_TEMPLATE["spec"]


async def test_invalid_input(tmp_path: Path) -> None:
    """Test that an invalid file is reported as an error."""
    broken = tmp_path / "broken.yaml"
    broken.write_text("kind: Service\n")
    with pytest.raises(CommandException, match="netpol-gitops error"):
        await run_command(["hash", str(broken)])
