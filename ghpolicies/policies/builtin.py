"""Built-in evaluators: AGENTS.md, catalog-info.yaml, catalog owner, workflow permissions."""

import logging
from typing import Any, Dict, Optional

import yaml

from ghpolicies.policies.base import FilePresenceEvaluator, PolicyEvaluator
from ghpolicies.schemas.github import RemoteRepository

logger = logging.getLogger("ghpolicies.policies")

CATALOG_INFO_PATH = "catalog-info.yaml"


class HasAgentsMdEvaluator(FilePresenceEvaluator):
    """AGENTS.md must exist at the root."""

    policy_type = "has_agents_md"
    file_path = "AGENTS.md"


class HasCatalogInfoYamlEvaluator(FilePresenceEvaluator):
    """catalog-info.yaml must exist at the root."""

    policy_type = "has_catalog_info_yaml"
    file_path = CATALOG_INFO_PATH


class CatalogInfoHasOwnerEvaluator(PolicyEvaluator):
    """catalog-info.yaml must declare a non-blank ``spec.owner``.

    A missing file is compliant here; has_catalog_info_yaml covers presence.
    Undecodable or unparsable content is a violation, not an error.
    """

    policy_type = "catalog_info_has_owner"

    def evaluate(self, repository: RemoteRepository, github) -> Optional[str]:
        content = github.get_file_content(repository.id, CATALOG_INFO_PATH)
        if content is None:
            return None

        try:
            document = yaml.safe_load(content.decode("utf-8"))
        except (UnicodeDecodeError, yaml.YAMLError) as e:
            logger.error("Failed to parse %s in repository %s. The file may be malformed: %s",
                         CATALOG_INFO_PATH, repository.full_name, e)
            return f"{CATALOG_INFO_PATH} could not be parsed"

        if document is None:
            logger.warning("%s in repository %s is empty", CATALOG_INFO_PATH, repository.full_name)
            return f"{CATALOG_INFO_PATH} is empty"

        owner = _lookup(document, ("spec", "owner"))
        if owner is None or not str(owner).strip():
            logger.warning("%s in repository %s has no 'spec.owner'", CATALOG_INFO_PATH, repository.full_name)
            return f"{CATALOG_INFO_PATH} has no spec.owner"
        return None


class CorrectWorkflowPermissionsEvaluator(PolicyEvaluator):
    """Default workflow token permission must be exactly ``read``.

    No reported permission (Actions disabled) counts as compliant.
    """

    policy_type = "correct_workflow_permissions"
    expected = "read"

    def evaluate(self, repository: RemoteRepository, github) -> Optional[str]:
        permission = github.get_workflow_permissions(repository.id)
        if permission is None or permission == self.expected:
            return None
        return f"default workflow permissions are '{permission}', expected '{self.expected}'"


def _lookup(document: Any, path) -> Any:
    node = document
    for key in path:
        if not isinstance(node, dict):
            return None
        node = node.get(key)
    return node


def normalize_policy_type(policy_type: str) -> str:
    return policy_type.strip().lower().replace("-", "_")


# Evaluator registry
EVALUATOR_REGISTRY: Dict[str, type] = {
    "has_agents_md": HasAgentsMdEvaluator,
    "has_catalog_info_yaml": HasCatalogInfoYamlEvaluator,
    "catalog_info_has_owner": CatalogInfoHasOwnerEvaluator,
    "correct_workflow_permissions": CorrectWorkflowPermissionsEvaluator,
}


def get_evaluator(policy_type: str) -> Optional[PolicyEvaluator]:
    """Get an evaluator instance by policy type, or None if the type is unknown."""
    cls = EVALUATOR_REGISTRY.get(normalize_policy_type(policy_type))
    if not cls:
        return None
    return cls()
