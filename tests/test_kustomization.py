"""Tests for the kustomization index."""

import pytest
import yaml

from netpol_gitops.credentials import Credentials
from netpol_gitops.exceptions import InputException
from netpol_gitops.kustomization import Kustomization, ensure_index, update_index
from netpol_gitops.working_copy import clone

INDEX = "networkpolicies/prod/kustomization.yaml"


def test_parse_sorts_and_dedups() -> None:
    """Test that resources read from disk are normalized."""
    index = Kustomization.parse(
        "apiVersion: kustomize.config.k8s.io/v1beta1\n"
        "kind: Kustomization\n"
        "namespace: ignored-by-us\n"
        "resources:\n- b.yaml\n- a.yaml\n- b.yaml\n"
    )
    assert index.resources == ["a.yaml", "b.yaml"]
    assert index.contents["namespace"] == "ignored-by-us"


def test_add_remove() -> None:
    """Test adding and removing entries."""
    index = Kustomization.new()
    assert index.add("billing/z.yaml")
    assert index.add("billing/a.yaml")
    assert not index.add("billing/a.yaml")
    assert index.resources == ["billing/a.yaml", "billing/z.yaml"]
    assert not index.remove("missing.yaml")
    assert index.remove("billing/z.yaml")
    assert index.resources == ["billing/a.yaml"]

    doc = yaml.safe_load(index.to_yaml())
    assert list(doc) == ["apiVersion", "kind", "resources"]
    assert doc["kind"] == "Kustomization"


def test_parse_invalid() -> None:
    """Test documents that are not a kustomization."""
    with pytest.raises(InputException):
        Kustomization.parse("- a\n- b\n")
    with pytest.raises(InputException):
        Kustomization.parse("resources: a.yaml\n")
    assert Kustomization.parse("").resources == []


async def test_update_index(remote_url: str, credentials: Credentials) -> None:
    """Test maintaining the index in a working copy."""
    async with clone(remote_url, credentials) as wc:
        await ensure_index(wc, INDEX)
        created = await wc.read_file(INDEX)
        await ensure_index(wc, INDEX)
        assert await wc.read_file(INDEX) == created

        await update_index(wc, INDEX, "networkpolicies/prod/web/web-allow-dns.yaml", add=True)
        await update_index(wc, INDEX, "networkpolicies/prod/api/api-allow-dns.yaml", add=True)
        await update_index(wc, INDEX, "networkpolicies/prod/api/api-allow-dns.yaml", add=True)
        doc = yaml.safe_load(await wc.read_file(INDEX))
        assert doc["resources"] == ["api/api-allow-dns.yaml", "web/web-allow-dns.yaml"]

        before = await wc.read_file(INDEX)
        await update_index(wc, INDEX, "networkpolicies/prod/gone/x.yaml", add=False)
        assert await wc.read_file(INDEX) == before

        await update_index(wc, INDEX, "networkpolicies/prod/web/web-allow-dns.yaml", add=False)
        doc = yaml.safe_load(await wc.read_file(INDEX))
        assert doc["resources"] == ["api/api-allow-dns.yaml"]


async def test_update_index_outside_directory(
    remote_url: str, credentials: Credentials
) -> None:
    """Test that a resource outside of the index directory is kept as given."""
    async with clone(remote_url, credentials) as wc:
        await update_index(wc, INDEX, "other/policy.yaml", add=True)
        doc = yaml.safe_load(await wc.read_file(INDEX))
    assert doc["resources"] == ["other/policy.yaml"]
