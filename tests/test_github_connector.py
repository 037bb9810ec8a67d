"""
Tests for the GitHub repository connector.
"""

import base64
from unittest.mock import MagicMock

import pytest
from github import GithubException
from requests.exceptions import ConnectionError as RequestsConnectionError, ReadTimeout

from iam_refiner.connectors.github_connector import GitHubConnector
from iam_refiner.exceptions import CommitConflictError, ContentError, RepositoryError
from iam_refiner.models import FileChange, RepositoryCommit


def github_error(status, message="error"):
    return GithubException(status, {"message": message}, None)


class TestGitHubConnector:
    """Test cases for GitHubConnector."""

    @pytest.fixture
    def repo(self):
        repo = MagicMock()
        repo.create_git_blob.return_value = MagicMock(sha="blob-1")
        parent = MagicMock(sha="c1")
        parent.tree.sha = "tree-1"
        repo.get_git_commit.return_value = parent
        repo.create_git_tree.return_value = MagicMock(sha="tree-2")
        repo.create_git_commit.return_value = MagicMock(sha="c2")
        return repo

    @pytest.fixture
    def connector(self, repo):
        github = MagicMock()
        github.get_repo.return_value = repo
        return GitHubConnector("org/policies", github=github)

    @pytest.fixture
    def commit(self):
        return RepositoryCommit(
            branch="main",
            parent_commit_id="c1",
            files=[FileChange(path="/policies/a/policy.json", content=b"[]")],
            message="Update policy",
        )

    def test_requires_token_without_client(self):
        with pytest.raises(ValueError):
            GitHubConnector("org/policies")

    def test_inaccessible_repository(self):
        github = MagicMock()
        github.get_repo.side_effect = github_error(404, "Not Found")

        with pytest.raises(RepositoryError):
            GitHubConnector("org/policies", github=github)

    def test_list_branches(self, connector, repo):
        main, dev = MagicMock(), MagicMock()
        main.name, dev.name = "main", "dev"
        repo.get_branches.return_value = [main, dev]

        assert connector.list_branches() == ["main", "dev"]

    def test_empty_repository_has_no_branches(self, connector, repo):
        repo.get_branches.side_effect = github_error(409, "Git Repository is empty.")

        assert connector.list_branches() == []

    def test_get_branch_head(self, connector, repo):
        repo.get_branch.return_value.commit.sha = "c9"

        assert connector.get_branch_head("main") == "c9"

    def test_missing_branch_has_no_head(self, connector, repo):
        repo.get_branch.side_effect = github_error(404, "Branch not found")

        assert connector.get_branch_head("main") is None

    def test_get_file(self, connector, repo):
        repo.get_contents.return_value = MagicMock(decoded_content=b'["iam:*"]')

        assert connector.get_file("c1", "/policies/deny.json") == b'["iam:*"]'
        repo.get_contents.assert_called_once_with("policies/deny.json", ref="c1")

    def test_get_file_not_found(self, connector, repo):
        repo.get_contents.side_effect = github_error(404, "Not Found")

        with pytest.raises(ContentError, match="file at policies/deny.json not found"):
            connector.get_file("c1", "policies/deny.json")

    def test_create_commit(self, connector, repo, commit, mocker):
        """Test that the branch ref is moved without force onto the new commit."""
        element = mocker.patch("iam_refiner.connectors.github_connector.InputGitTreeElement")

        assert connector.create_commit(commit) == "c2"

        repo.create_git_blob.assert_called_once_with(base64.b64encode(b"[]").decode("ascii"), "base64")
        elements, base_tree = repo.create_git_tree.call_args.args
        element.assert_called_once_with(path="policies/a/policy.json", mode="100644", type="blob", sha="blob-1")
        assert elements == [element.return_value]
        assert base_tree is repo.get_git_commit.return_value.tree
        repo.get_git_ref.assert_called_once_with("heads/main")
        repo.get_git_ref.return_value.edit.assert_called_once_with("c2", force=False)

    def test_initial_commit_creates_ref(self, connector, repo, commit):
        connector.create_commit(commit.model_copy(update={"parent_commit_id": None}))

        repo.create_git_ref.assert_called_once_with("refs/heads/main", "c2")
        assert repo.create_git_commit.call_args.args[2] == []

    def test_unchanged_tree_returns_parent(self, connector, repo, commit):
        repo.create_git_tree.return_value = MagicMock(sha="tree-1")

        assert connector.create_commit(commit) == "c1"
        repo.create_git_commit.assert_not_called()

    def test_rejected_ref_update_is_conflict(self, connector, repo, commit):
        repo.get_git_ref.return_value.edit.side_effect = github_error(422, "Update is not a fast forward")

        with pytest.raises(CommitConflictError):
            connector.create_commit(commit)

    def test_other_errors(self, connector, repo, commit):
        repo.create_git_blob.side_effect = github_error(500, "Server Error")

        with pytest.raises(RepositoryError):
            connector.create_commit(commit)

    def test_unreachable_repository(self):
        github = MagicMock()
        github.get_repo.side_effect = RequestsConnectionError("api.github.com unreachable")

        with pytest.raises(RepositoryError):
            GitHubConnector("org/policies", github=github)

    def test_network_errors_on_reads(self, connector, repo):
        """Test that network failures surface as repository errors, not as a missing branch."""
        repo.get_branches.side_effect = RequestsConnectionError("connection reset")
        repo.get_branch.side_effect = RequestsConnectionError("connection reset")
        repo.get_contents.side_effect = ReadTimeout("read timed out")

        with pytest.raises(RepositoryError):
            connector.list_branches()
        with pytest.raises(RepositoryError):
            connector.get_branch_head("main")
        with pytest.raises(RepositoryError):
            connector.get_file("c1", "policies/deny.json")

    def test_network_error_while_preparing_commit(self, connector, repo, commit):
        repo.create_git_tree.side_effect = ReadTimeout("read timed out")

        with pytest.raises(RepositoryError, match="Failed to prepare commit for main"):
            connector.create_commit(commit)
        repo.get_git_ref.assert_not_called()

    def test_network_error_while_moving_ref(self, connector, repo, commit):
        repo.get_git_ref.return_value.edit.side_effect = RequestsConnectionError("connection reset")

        with pytest.raises(RepositoryError, match="Failed to move main to c2"):
            connector.create_commit(commit)
