"""NetworkPolicy GitOps engine for the permission-binder operator.

Renders NetworkPolicy templates for the desired namespaces, proposes them to
a GitOps repository as pull requests, follows the pull requests to merge and
detects drift between the cluster and the repository.
"""
