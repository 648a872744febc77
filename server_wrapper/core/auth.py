"""Token authentication for the GitHub API."""

import os

from dotenv import load_dotenv

from ..errors import ConfigError


class GitHubAuth:
    """Holds the GitHub token and builds authenticated request headers."""

    def __init__(
        self,
        token: str | None = None,
        base_url: str | None = None,
    ) -> None:
        """Initialize authentication.

        Args:
            token: Personal access token (or load from GITHUB_TOKEN env)
            base_url: API base URL (or load from GITHUB_API_URL env)
        """
        load_dotenv()

        self.token = token or os.getenv("GITHUB_TOKEN", "")
        self.base_url = (base_url or os.getenv("GITHUB_API_URL", "https://api.github.com")).rstrip("/")

    def get_headers(self, accept: str = "application/vnd.github+json") -> dict[str, str]:
        """Generate headers for an API request."""
        headers = {
            "Accept": accept,
            "X-GitHub-Api-Version": "2022-11-28",
        }
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def get_full_url(self, path: str) -> str:
        """Build full URL from base URL and an API path like /repos/o/r."""
        return f"{self.base_url}{path}"

    def verify_credentials(self) -> bool:
        """Check that a token is set (does not test API connectivity)."""
        return bool(self.token and self.base_url)

    def require(self) -> None:
        """Raise ConfigError when no token is available."""
        if not self.verify_credentials():
            raise ConfigError(
                "Missing GitHub token. Set GITHUB_TOKEN (environment or .env) or "
                "tokens.github in the config; it is required by GitHub sources."
            )
