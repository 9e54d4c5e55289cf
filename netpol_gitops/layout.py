"""Repository file layout and branch naming conventions."""

from pathlib import PurePosixPath

ROOT_DIR = "networkpolicies"
KUSTOMIZATION_FILE = "kustomization.yaml"
BRANCH_PREFIX = "networkpolicy"
REMOVAL_SUFFIX = "-removal"


def cluster_dir(cluster: str) -> str:
    """Return the repository directory holding all policies of a cluster."""
    return str(PurePosixPath(ROOT_DIR) / cluster)


def namespace_dir(cluster: str, namespace: str) -> str:
    """Return the repository directory holding the policies of a namespace."""
    return str(PurePosixPath(ROOT_DIR) / cluster / namespace)


def kustomization_path(cluster: str) -> str:
    """Return the path of the per-cluster kustomization index."""
    return str(PurePosixPath(cluster_dir(cluster)) / KUSTOMIZATION_FILE)


def template_stem(template_name: str) -> str:
    """Return the template file name without its YAML extension."""
    for ext in (".yaml", ".yml"):
        if template_name.endswith(ext):
            return template_name[: -len(ext)]
    return template_name


def template_policy_name(namespace: str, template_name: str) -> str:
    """Return the name of a policy rendered from a template for a namespace."""
    return f"{namespace}-{template_stem(template_name)}"


def template_file_path(cluster: str, namespace: str, template_name: str) -> str:
    """Return the repository path of a template-derived policy."""
    name = template_policy_name(namespace, template_name)
    return str(PurePosixPath(namespace_dir(cluster, namespace)) / f"{name}.yaml")


def backup_file_path(cluster: str, namespace: str, policy_name: str) -> str:
    """Return the repository path of a captured cluster policy."""
    return str(PurePosixPath(namespace_dir(cluster, namespace)) / f"{policy_name}.yaml")


def branch_name(cluster: str, namespace: str) -> str:
    """Return the branch used for changes to a namespace."""
    return f"{BRANCH_PREFIX}/{cluster}/{namespace}"


def removal_branch_name(cluster: str, namespace: str) -> str:
    """Return the branch used to remove the policies of a namespace."""
    return f"{branch_name(cluster, namespace)}{REMOVAL_SUFFIX}"


OPERATOR_NAME = "permission-binder-operator"


def pull_request_title(variant: str, namespace: str) -> str:
    """Return the commit message and pull request title for a namespace change."""
    return f"NetworkPolicy: {variant} for namespace {namespace}"


def pull_request_body(cluster: str, namespace: str, variant: str) -> str:
    """Return the pull request description for a namespace change."""
    return (
        f"Cluster: {cluster}\n"
        f"Namespace: {namespace}\n"
        f"Variant: {variant}\n"
        f"Operator: {OPERATOR_NAME}"
    )


def removal_title(namespace: str) -> str:
    """Return the commit message and pull request title for a removal."""
    return f"NetworkPolicy: Remove namespace {namespace}"


def removal_body(cluster: str, namespace: str) -> str:
    """Return the pull request description for a removal."""
    return (
        f"Cluster: {cluster}\n"
        f"Namespace: {namespace} (removed from whitelist)\n"
        "Variant: removal\n"
        f"Operator: {OPERATOR_NAME}"
    )
