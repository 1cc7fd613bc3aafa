"""Git domain - operations on the configured repository.

All operations act on a single repository directory. Clone targets are
validated to stay inside that directory.
"""

import base64
from pathlib import Path
from typing import Optional

import git
from git import Actor

from shared.config import GitSettings
from shared.logging import get_logger
from shared.models import ToolResult
from shared.schema import (
    array_property,
    boolean_property,
    create_schema,
    integer_property,
    string_property,
)
from domains.base import BaseDomain
from mcp_server.registry import ToolRegistry
from security.paths import PathValidator

logger = get_logger(__name__)

# Transports git may use for clone; excludes ext:: and local file access
ALLOWED_URL_PREFIXES = ("https://", "http://", "ssh://", "git://", "git@")


class GitDomain(BaseDomain):
    """
    Git Domain.

    Provides tools for:
    - Inspecting status, history and branches
    - Committing and pushing changes
    - Cloning remote repositories
    """

    name = "git"

    def __init__(self, settings: GitSettings) -> None:
        self.settings = settings
        self.repo_path = Path(settings.repo_path).absolute()
        self.repo_path.mkdir(parents=True, exist_ok=True)
        self.validator = PathValidator([self.repo_path])

    def _repo(self) -> git.Repo:
        """Open the repository, initializing it on first use."""
        try:
            return git.Repo(self.repo_path)
        except git.InvalidGitRepositoryError:
            logger.info("Initializing repository", path=str(self.repo_path))
            return git.Repo.init(self.repo_path)

    def _auth_env(self) -> dict[str, str]:
        """Environment that sends the token as an HTTP header, keeping it off argv."""
        if not self.settings.token:
            return {}
        credentials = base64.b64encode(f"x-access-token:{self.settings.token}".encode()).decode()
        return {
            "GIT_TERMINAL_PROMPT": "0",
            "GIT_CONFIG_COUNT": "1",
            "GIT_CONFIG_KEY_0": "http.extraHeader",
            "GIT_CONFIG_VALUE_0": f"Authorization: Basic {credentials}",
        }

    # Operations

    async def status(self) -> ToolResult:
        return await self._run("get status", self._status)

    def _status(self) -> ToolResult:
        repo = self._repo()
        staged: list[str] = []
        modified: list[str] = []
        untracked: list[str] = []

        for line in repo.git.status("--porcelain").splitlines():
            if len(line) < 4:
                continue
            index_state, tree_state, path = line[0], line[1], line[3:]
            if index_state == "?":
                untracked.append(path)
                continue
            if index_state != " ":
                staged.append(path)
            if tree_state != " ":
                modified.append(path)

        branch = "HEAD (detached)" if repo.head.is_detached else repo.active_branch.name
        lines = [f"Branch: {branch}"]
        for title, paths in (("Staged", staged), ("Modified", modified), ("Untracked", untracked)):
            lines.append(f"{title}: {len(paths)}")
            lines.extend(f"  {p}" for p in paths)

        if not (staged or modified or untracked):
            lines.append("Working tree clean")

        return ToolResult.success("\n".join(lines))

    async def commit(
        self,
        message: str,
        files: Optional[list[str]] = None,
        author: str = "MCP Gateway",
        email: str = "mcp-gateway@localhost"
    ) -> ToolResult:
        """
        Commit changes.

        ``files`` of None commits what is already staged, an empty list
        stages everything first, and a list stages just those paths.
        """
        return await self._run("commit", self._commit, message, files, author, email)

    def _commit(
        self,
        message: str,
        files: Optional[list[str]],
        author: str,
        email: str
    ) -> ToolResult:
        repo = self._repo()

        if files is not None:
            for name in files:
                outcome = self.validator.validate(str(self.repo_path / name))
                if not outcome.ok:
                    return self._rejected(outcome)
            if files:
                repo.index.add(files)
            else:
                repo.git.add(A=True)

        actor = Actor(author, email)
        commit = repo.index.commit(message, author=actor, committer=actor)

        logger.info("Created commit", sha=commit.hexsha, author=author)
        return ToolResult.success(f"Committed {commit.hexsha[:7]}: {message}")

    async def push(
        self,
        remote: str = "origin",
        branch: Optional[str] = None,
        force: bool = False
    ) -> ToolResult:
        return await self._run("push", self._push, remote, branch, force)

    def _push(self, remote_name: str, branch: Optional[str], force: bool) -> ToolResult:
        repo = self._repo()
        try:
            remote = repo.remote(remote_name)
        except ValueError:
            return ToolResult.error(f"Remote not found: {remote_name}")

        refspec = branch or repo.active_branch.name
        with repo.git.custom_environment(**self._auth_env()):
            infos = remote.push(refspec=refspec, force=force)

        lines = []
        failed = False
        for info in infos:
            if info.flags & (info.ERROR | info.REJECTED | info.REMOTE_REJECTED):
                failed = True
            lines.append(f"{info.remote_ref_string}: {info.summary.strip()}")

        text = "\n".join(lines) or "Nothing to push"
        if failed:
            return ToolResult.error(f"Push failed:\n{text}")

        logger.info("Pushed", remote=remote_name, refspec=refspec, force=force)
        return ToolResult.success(f"Pushed {refspec} to {remote_name}\n{text}")

    async def clone(self, url: str, target_path: Optional[str] = None) -> ToolResult:
        if url.startswith("-") or not url.startswith(ALLOWED_URL_PREFIXES):
            return ToolResult.error(f"Unsupported repository URL: {url}")

        target = str(self.repo_path / target_path) if target_path else str(self.repo_path)
        outcome = self.validator.validate(target)
        if not outcome.ok:
            return self._rejected(outcome)

        return await self._run("clone", self._clone, url, outcome.unwrap())

    def _clone(self, url: str, target: Path) -> ToolResult:
        if target.exists() and any(target.iterdir()):
            return ToolResult.error(f"Target directory is not empty: {target.name}")

        repo = git.Repo.clone_from(url, target, env=self._auth_env() or None)

        logger.info("Cloned repository", url=url, target=str(target))
        branch = "HEAD (detached)" if repo.head.is_detached else repo.active_branch.name
        return ToolResult.success(f"Cloned {url} into {target.name} (branch {branch})")

    async def log(self, max_count: int = 10) -> ToolResult:
        return await self._run("read log", self._log, max_count)

    def _log(self, max_count: int) -> ToolResult:
        repo = self._repo()
        if not repo.head.is_valid():
            return ToolResult.success("No commits yet")

        lines = []
        for commit in repo.iter_commits(max_count=max_count):
            when = commit.committed_datetime.isoformat()
            summary = commit.message.strip().splitlines()[0] if commit.message.strip() else ""
            lines.append(f"{commit.hexsha[:7]} {when} {commit.author.name}: {summary}")

        return ToolResult.success("\n".join(lines))

    async def branch(self, name: Optional[str] = None, checkout: bool = False) -> ToolResult:
        return await self._run("manage branches", self._branch, name, checkout)

    def _branch(self, name: Optional[str], checkout: bool) -> ToolResult:
        repo = self._repo()

        if not name:
            current = None if repo.head.is_detached else repo.active_branch.name
            names = sorted(head.name for head in repo.heads)
            if not names:
                return ToolResult.success(f"No branches yet (current: {current})")
            return ToolResult.success(
                "\n".join(f"{'* ' if n == current else '  '}{n}" for n in names)
            )

        if name.startswith("-"):
            return ToolResult.error(f"Invalid branch name: {name}")

        existing = {head.name: head for head in repo.heads}
        head = existing.get(name)
        created = head is None
        if created:
            if not repo.head.is_valid():
                return ToolResult.error("Cannot create a branch before the first commit")
            head = repo.create_head(name)

        if checkout:
            head.checkout()

        action = "Created" if created else "Found"
        suffix = " and checked out" if checkout else ""
        logger.info("Branch updated", branch=name, created=created, checkout=checkout)
        return ToolResult.success(f"{action} branch {name}{suffix}")

    # Registration

    def register(self, registry: ToolRegistry) -> None:
        async def status(args: dict) -> ToolResult:
            return await self.status()

        async def commit(args: dict) -> ToolResult:
            return await self.commit(
                args["message"],
                args.get("files"),
                args.get("author", "MCP Gateway"),
                args.get("email", "mcp-gateway@localhost"),
            )

        async def push(args: dict) -> ToolResult:
            return await self.push(
                args.get("remote", "origin"), args.get("branch"), args.get("force", False)
            )

        async def clone(args: dict) -> ToolResult:
            return await self.clone(args["url"], args.get("targetPath"))

        async def log(args: dict) -> ToolResult:
            return await self.log(args.get("maxCount", 10))

        async def branch(args: dict) -> ToolResult:
            return await self.branch(args.get("name"), args.get("checkout", False))

        registry.register(
            name="status",
            description="Show the working tree status of the repository",
            input_schema=create_schema({}),
            handler=status,
        )
        registry.register(
            name="commit",
            description="Commit changes to the repository",
            input_schema=create_schema(
                {
                    "message": string_property("Commit message"),
                    "files": array_property(
                        "Files to stage; empty stages everything, omitted commits the index",
                        {"type": "string"},
                    ),
                    "author": string_property("Author name"),
                    "email": string_property("Author email"),
                },
                required=["message"],
            ),
            handler=commit,
        )
        registry.register(
            name="push",
            description="Push commits to a remote",
            input_schema=create_schema(
                {
                    "remote": string_property("Remote name", default="origin"),
                    "branch": string_property("Branch to push; defaults to the current branch"),
                    "force": boolean_property("Force push", default=False),
                }
            ),
            handler=push,
        )
        registry.register(
            name="clone",
            description="Clone a remote repository into the repository directory",
            input_schema=create_schema(
                {
                    "url": string_property("Repository URL"),
                    "targetPath": string_property("Directory relative to the repository root"),
                },
                required=["url"],
            ),
            handler=clone,
        )
        registry.register(
            name="log",
            description="Show recent commits",
            input_schema=create_schema(
                {"maxCount": integer_property("Number of commits", 1, 1000, default=10)}
            ),
            handler=log,
        )
        registry.register(
            name="branch",
            description="List branches, or create and optionally check out a branch",
            input_schema=create_schema(
                {
                    "name": string_property("Branch name; omit to list branches"),
                    "checkout": boolean_property("Check out the branch", default=False),
                }
            ),
            handler=branch,
        )

        logger.info("Git domain registered", tool_count=6)


def register_git_domain(registry: ToolRegistry, settings: GitSettings) -> GitDomain:
    """Create the git domain and register its tools."""
    domain = GitDomain(settings)
    domain.register(registry)
    return domain
