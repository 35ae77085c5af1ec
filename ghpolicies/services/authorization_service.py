"""Authorization service: team-membership gate for the HTTP surface."""

import logging
from typing import Optional

from ghpolicies.core.exceptions import ConfigurationError, GitHubApiError
from ghpolicies.services.configuration_service import ConfigurationProvider

logger = logging.getLogger("ghpolicies.authorization")


class AuthorizationService:
    """Admits users who belong to the configured ``org/team``."""

    def __init__(self, github, configuration: ConfigurationProvider):
        self.github = github
        self.configuration = configuration

    def get_authorized_team(self) -> Optional[str]:
        try:
            return self.configuration.get_config().access_control.authorized_team
        except ConfigurationError as e:
            logger.error("Configuration unavailable while getting authorized team: %s", e.message)
            return None

    def is_user_authorized(self, user_token: str) -> bool:
        """Check the token owner's membership. Any failure denies access."""
        if not user_token:
            return False

        authorized_team = self.get_authorized_team()
        if not authorized_team:
            logger.warning("No authorized team configured")
            return False

        parts = authorized_team.split("/")
        if len(parts) != 2 or not all(parts):
            logger.error("Invalid authorized team format: %s", authorized_team)
            return False
        org, team_slug = parts

        try:
            is_member = self.github.is_user_in_team(user_token, org, team_slug)
        except GitHubApiError as e:
            logger.error("Team membership check for %s failed: %s", authorized_team, e.message)
            return False

        logger.info("Team membership check for %s: %s", authorized_team, is_member)
        return is_member
