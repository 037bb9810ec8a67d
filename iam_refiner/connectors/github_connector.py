"""
GitHub Connector for the IAM Refiner.

Stores policies in a GitHub repository through the git data API. Commits
are built from blobs and trees on top of the expected parent, then the
branch ref is moved without force, so GitHub rejects the update when the
branch has moved since the head was read.
"""

import base64
import logging
from typing import Any, List, Optional

from github import Auth, Github, GithubException, InputGitAuthor, InputGitTreeElement
from requests.exceptions import RequestException

from ..exceptions import CommitConflictError, ContentError, RepositoryError
from ..models import RepositoryCommit
from .base_connector import RepositoryStore, normalize_path

logger = logging.getLogger(__name__)


class GitHubConnector(RepositoryStore):
    """GitHub repository store."""

    def __init__(
        self,
        repository_name: str,
        token: Optional[str] = None,
        github: Any = None,
        author_name: str = "iam-refiner",
        author_email: Optional[str] = None,
    ):
        if github is None:
            if not token:
                raise ValueError("GitHub token is required")
            github = Github(auth=Auth.Token(token))

        self.github = github
        self.repository_name = repository_name
        self.author_name = author_name
        self.author_email = author_email

        try:
            self.repo = self.github.get_repo(repository_name)
        except GithubException as e:
            raise RepositoryError(f"Failed to access GitHub repository {repository_name}: {e}") from e
        except RequestException as e:
            raise RepositoryError(f"Failed to reach GitHub repository {repository_name}: {e}") from e

    def list_branches(self) -> List[str]:
        try:
            return [branch.name for branch in self.repo.get_branches()]
        except GithubException as e:
            if e.status == 409:  # empty repository
                return []
            raise RepositoryError(f"Failed to list branches of {self.repository_name}: {e}") from e
        except RequestException as e:
            raise RepositoryError(f"Failed to list branches of {self.repository_name}: {e}") from e

    def get_branch_head(self, branch: str) -> Optional[str]:
        try:
            return self.repo.get_branch(branch).commit.sha
        except GithubException as e:
            if e.status in (404, 409):
                return None
            raise RepositoryError(f"Failed to get branch {branch}: {e}") from e
        except RequestException as e:
            raise RepositoryError(f"Failed to get branch {branch}: {e}") from e

    def get_file(self, commit_specifier: str, path: str) -> bytes:
        try:
            contents = self.repo.get_contents(normalize_path(path), ref=commit_specifier)
        except GithubException as e:
            if e.status == 404:
                raise ContentError(f"file at {path} not found") from e
            raise RepositoryError(f"Failed to read {path} at {commit_specifier}: {e}") from e
        except RequestException as e:
            raise RepositoryError(f"Failed to read {path} at {commit_specifier}: {e}") from e

        if isinstance(contents, list) or not contents.decoded_content:
            raise ContentError(f"file at {path} not found")
        return contents.decoded_content

    def create_commit(self, commit: RepositoryCommit) -> str:
        try:
            elements = []
            for change in commit.files:
                blob = self.repo.create_git_blob(base64.b64encode(change.content).decode("ascii"), "base64")
                elements.append(
                    InputGitTreeElement(path=normalize_path(change.path), mode="100644", type="blob", sha=blob.sha)
                )

            if commit.parent_commit_id:
                parent = self.repo.get_git_commit(commit.parent_commit_id)
                tree = self.repo.create_git_tree(elements, parent.tree)
                if tree.sha == parent.tree.sha:
                    logger.info(f"No changes to commit on {commit.branch}")
                    return commit.parent_commit_id
                parents = [parent]
            else:
                tree = self.repo.create_git_tree(elements)
                parents = []

            kwargs = {}
            if self.author_email:
                kwargs["author"] = InputGitAuthor(self.author_name, self.author_email)
            new_commit = self.repo.create_git_commit(commit.message, tree, parents, **kwargs)
        except (GithubException, RequestException) as e:
            raise RepositoryError(f"Failed to prepare commit for {commit.branch}: {e}") from e

        try:
            if commit.parent_commit_id:
                self.repo.get_git_ref(f"heads/{commit.branch}").edit(new_commit.sha, force=False)
            else:
                self.repo.create_git_ref(f"refs/heads/{commit.branch}", new_commit.sha)
        except GithubException as e:
            if e.status == 422:
                raise CommitConflictError(commit.branch, commit.parent_commit_id, str(e)) from e
            raise RepositoryError(f"Failed to move {commit.branch} to {new_commit.sha}: {e}") from e
        except RequestException as e:
            raise RepositoryError(f"Failed to move {commit.branch} to {new_commit.sha}: {e}") from e

        logger.info(f"Created commit {new_commit.sha} on {self.repository_name}/{commit.branch}")
        return new_commit.sha
