"""
Repo Service
============
Manages the local working clone used for validation and merges.

Philosophy:
    - Clone ONCE into REPO_PATH, reuse it for every run.
    - Runs for one branch pair are serialised, so the clone is never shared
      by two runs at the same time.
"""
import os
import subprocess
import logging

logger = logging.getLogger(__name__)


def authenticated_url(repo_url: str, github_token: str = "") -> str:
    """Insert a token into an https GitHub URL; other URLs are returned unchanged."""
    if github_token and repo_url.startswith("https://") and "github.com" in repo_url:
        return repo_url.replace("https://", f"https://x-access-token:{github_token}@", 1)
    return repo_url


def ensure_workspace(repo_path: str, repo_url: str = "", github_token: str = "") -> str:
    """
    Make sure `repo_path` is a git working clone.

    Parameters
    ----------
    repo_path : str
        Where the clone lives (or should live).
    repo_url : str
        Remote to clone from when `repo_path` is not a clone yet.
    github_token : str
        Optional token for private GitHub repositories.

    Returns
    -------
    str
        Absolute path to the working clone.

    Raises
    ------
    RuntimeError
        If there is no clone and none can be made.
    """
    dest_path = os.path.abspath(repo_path)

    if os.path.isdir(os.path.join(dest_path, ".git")):
        logger.info("Reusing working clone at %s", dest_path)
        return dest_path

    if not repo_url:
        raise RuntimeError(f"{dest_path} is not a git clone and REPO_URL is not set")

    os.makedirs(os.path.dirname(dest_path) or ".", exist_ok=True)
    logger.info("Cloning %s into %s", repo_url, dest_path)

    try:
        subprocess.run(
            ["git", "clone", authenticated_url(repo_url, github_token), dest_path],
            check=True,
            capture_output=True,
            text=True
        )
    except subprocess.CalledProcessError as e:
        # stderr may echo the URL; never log the token-bearing form
        stderr = (e.stderr or "").replace(github_token, "***") if github_token else e.stderr
        logger.error("Failed to clone repository: %s", stderr)
        raise RuntimeError(f"Cloning failed: {stderr}")

    logger.info("Successfully cloned repository to %s", dest_path)
    return dest_path
