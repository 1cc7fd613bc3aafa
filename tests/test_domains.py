"""Tests for tool domains."""

import base64
import shutil

import pytest

from shared.config import (
    BashSettings,
    FilesystemSettings,
    GitSettings,
    MemorySettings,
    PostgresSettings,
    ResourcesSettings,
)


class TestFilesystemDomain:
    """Tests for filesystem domain."""

    @pytest.fixture(autouse=True)
    def setup(self, tmp_path):
        """Set up test fixtures."""
        from domains.filesystem import FilesystemDomain

        self.root = tmp_path / "workspace"
        self.root.mkdir()
        self.outside = tmp_path / "outside"
        self.outside.mkdir()
        self.domain = FilesystemDomain(FilesystemSettings(
            allowed_directories=[str(self.root)],
            max_file_size=1024,
        ))

    @pytest.mark.asyncio
    async def test_write_and_read_file(self):
        """Test writing a file then reading it back."""
        path = str(self.root / "notes.txt")

        write = await self.domain.write_file(path, "hello")
        read = await self.domain.read_file(path)

        assert not write.is_error
        assert read.first_text == "hello"

    @pytest.mark.asyncio
    async def test_write_modes(self):
        """Test CREATE, OVERWRITE and APPEND."""
        from domains.filesystem import WriteMode

        path = str(self.root / "log.txt")

        await self.domain.write_file(path, "one")
        duplicate = await self.domain.write_file(path, "two", WriteMode.CREATE)
        await self.domain.write_file(path, "+three", WriteMode.APPEND)
        after_append = (self.root / "log.txt").read_text()
        await self.domain.write_file(path, "four", WriteMode.OVERWRITE)

        assert duplicate.is_error
        assert "already exists" in duplicate.first_text
        assert after_append == "one+three"
        assert (self.root / "log.txt").read_text() == "four"

    @pytest.mark.asyncio
    async def test_read_missing_file(self):
        """Test reading a file that does not exist."""
        result = await self.domain.read_file(str(self.root / "missing.txt"))

        assert result.is_error
        assert "does not exist" in result.first_text

    @pytest.mark.asyncio
    async def test_read_outside_sandbox(self):
        """Test access outside the allowed directories is denied."""
        (self.outside / "secret.txt").write_text("secret")

        result = await self.domain.read_file(str(self.outside / "secret.txt"))

        assert result.is_error
        assert result.first_text.startswith("Access denied")

    @pytest.mark.asyncio
    async def test_symlink_escape_denied(self):
        """Test a symlink pointing out of the sandbox cannot be followed."""
        (self.outside / "secret.txt").write_text("secret")
        (self.root / "escape").symlink_to(self.outside)

        read = await self.domain.read_file(str(self.root / "escape" / "secret.txt"))
        write = await self.domain.write_file(str(self.root / "escape" / "new.txt"), "x")

        assert read.is_error and write.is_error
        assert not (self.outside / "new.txt").exists()

    @pytest.mark.asyncio
    async def test_file_size_limit(self):
        """Test the maximum file size is enforced."""
        big = self.root / "big.txt"
        big.write_text("x" * 2048)

        read = await self.domain.read_file(str(big))
        write = await self.domain.write_file(str(self.root / "big2.txt"), "y" * 2048)

        assert read.is_error and "too large" in read.first_text
        assert write.is_error and "too large" in write.first_text

    @pytest.mark.asyncio
    async def test_extension_allowlist(self, tmp_path):
        """Test only configured extensions are accessible."""
        from domains.filesystem import FilesystemDomain

        domain = FilesystemDomain(FilesystemSettings(
            allowed_directories=[str(self.root)],
            allowed_extensions=["txt", ".md"],
        ))

        allowed = await domain.write_file(str(self.root / "a.md"), "# title")
        denied = await domain.write_file(str(self.root / "a.exe"), "MZ")

        assert not allowed.is_error
        assert denied.is_error
        assert "extension" in denied.first_text

    @pytest.mark.asyncio
    async def test_list_directory(self):
        """Test flat and recursive listing."""
        (self.root / "src" / "pkg").mkdir(parents=True)
        (self.root / "src" / "pkg" / "mod.py").write_text("x = 1")
        (self.root / "README.md").write_text("readme")

        flat = await self.domain.list_directory(str(self.root))
        deep = await self.domain.list_directory(str(self.root), recursive=True, max_depth=3)

        assert "file: README.md (6 bytes)" in flat.first_text
        assert "dir: src (0 bytes)" in flat.first_text
        assert "mod.py" not in flat.first_text
        assert "file: src/pkg/mod.py (5 bytes)" in deep.first_text

    @pytest.mark.asyncio
    async def test_create_and_delete_directory(self):
        """Test directory lifecycle including the non-empty guard."""
        target = self.root / "a" / "b"

        created = await self.domain.create_directory(str(target))
        (target / "f.txt").write_text("x")
        refused = await self.domain.delete_file(str(self.root / "a"))
        deleted = await self.domain.delete_file(str(self.root / "a"), recursive=True)

        assert not created.is_error
        assert refused.is_error and "not empty" in refused.first_text
        assert not deleted.is_error
        assert not (self.root / "a").exists()

    @pytest.mark.asyncio
    async def test_cannot_delete_root(self):
        """Test the sandbox root itself is protected."""
        result = await self.domain.delete_file(str(self.root), recursive=True)

        assert result.is_error
        assert self.root.exists()


class TestBashDomain:
    """Tests for bash domain."""

    @pytest.fixture(autouse=True)
    def setup(self, tmp_path):
        """Set up test fixtures."""
        from domains.bash import BashDomain

        self.workdir = tmp_path / "work"
        self.domain = BashDomain(BashSettings(
            allowed_commands=["echo", "ls", "sleep", "cat", "chmod", "sh"],
            working_directory=str(self.workdir),
            timeout_seconds=1,
        ))

    @pytest.mark.asyncio
    async def test_execute_allowed_command(self):
        """Test running an allowlisted command."""
        result = await self.domain.execute("echo", ["hello", "world"])

        assert not result.is_error
        assert "Exit code: 0" in result.first_text
        assert "hello world" in result.first_text

    @pytest.mark.asyncio
    async def test_runs_in_working_directory(self):
        """Test commands run in the configured directory."""
        (self.workdir / "marker.txt").write_text("x")

        result = await self.domain.execute("ls")

        assert "marker.txt" in result.first_text

    @pytest.mark.asyncio
    async def test_command_not_allowed(self):
        """Test a command outside the allowlist is rejected."""
        result = await self.domain.execute("rm", ["-rf", "/tmp/x"])

        assert result.is_error
        assert result.first_text == "Command not allowed: rm"

    @pytest.mark.asyncio
    async def test_dangerous_pattern_rejected(self):
        """Test dangerous patterns block allowlisted commands."""
        result = await self.domain.execute("chmod 777 /tmp/x")

        assert result.is_error
        assert "Dangerous pattern" in result.first_text

    @pytest.mark.asyncio
    async def test_no_shell_interpretation(self):
        """Test shell metacharacters are passed as literal arguments."""
        result = await self.domain.execute("echo", ["$HOME", "&&", "ls"])

        assert "$HOME && ls" in result.first_text

    @pytest.mark.asyncio
    async def test_non_zero_exit_is_error(self):
        """Test a failing command returns an error result with its output."""
        result = await self.domain.execute("cat", ["does-not-exist.txt"])

        assert result.is_error
        assert "Exit code: 1" in result.first_text
        assert "Stderr:" in result.first_text

    @pytest.mark.asyncio
    async def test_timeout_kills_command(self):
        """Test the wall-clock timeout."""
        result = await self.domain.execute("sleep", ["5"])

        assert result.is_error
        assert "timed out" in result.first_text

    @pytest.mark.asyncio
    async def test_extra_environment(self):
        """Test caller-supplied environment variables reach the command."""
        result = await self.domain.execute("sh", ["-c", "echo $GREETING"], env={"GREETING": "hi there"})

        assert "hi there" in result.first_text


@pytest.mark.skipif(shutil.which("git") is None, reason="git executable not available")
class TestGitDomain:
    """Tests for git domain."""

    @pytest.fixture(autouse=True)
    def setup(self, tmp_path):
        """Set up test fixtures."""
        from domains.source_control import GitDomain

        self.repo = tmp_path / "repo"
        self.domain = GitDomain(GitSettings(repo_path=str(self.repo), token=None))

    @pytest.mark.asyncio
    async def test_status_initializes_repository(self):
        """Test the repository is created on first use."""
        result = await self.domain.status()

        assert not result.is_error
        assert (self.repo / ".git").exists()
        assert "Working tree clean" in result.first_text

    @pytest.mark.asyncio
    async def test_commit_and_log(self):
        """Test staging everything, committing and reading history."""
        await self.domain.status()
        (self.repo / "a.txt").write_text("a")

        untracked = await self.domain.status()
        commit = await self.domain.commit("Add a", files=[], author="Tester", email="t@example.com")
        log = await self.domain.log()

        assert "a.txt" in untracked.first_text
        assert not commit.is_error
        assert "Add a" in log.first_text
        assert "Tester" in log.first_text

    @pytest.mark.asyncio
    async def test_log_without_commits(self):
        """Test history of an empty repository."""
        result = await self.domain.log()

        assert result.first_text == "No commits yet"

    @pytest.mark.asyncio
    async def test_commit_rejects_paths_outside_repository(self, tmp_path):
        """Test files to stage must be inside the repository."""
        (tmp_path / "outside.txt").write_text("x")

        result = await self.domain.commit("Sneaky", files=[str(tmp_path / "outside.txt")])

        assert result.is_error
        assert "Access denied" in result.first_text

    @pytest.mark.asyncio
    async def test_branches(self):
        """Test creating, checking out and listing branches."""
        await self.domain.status()
        (self.repo / "a.txt").write_text("a")
        await self.domain.commit("Initial", files=[])

        created = await self.domain.branch("feature", checkout=True)
        listing = await self.domain.branch()

        assert not created.is_error
        assert "* feature" in listing.first_text

    @pytest.mark.asyncio
    async def test_clone_target_outside_repository(self):
        """Test clone targets are confined to the repository root."""
        result = await self.domain.clone("https://example.com/repo.git", "../elsewhere")

        assert result.is_error
        assert "Access denied" in result.first_text

    @pytest.mark.asyncio
    async def test_clone_rejects_unsafe_transports(self):
        """Test only network transports are accepted for clone."""
        ext = await self.domain.clone("ext::sh -c touch% /tmp/pwned")
        local = await self.domain.clone("/etc")

        assert ext.is_error and local.is_error

    @pytest.mark.asyncio
    async def test_push_unknown_remote(self):
        """Test pushing to a remote that does not exist."""
        result = await self.domain.push("nowhere")

        assert result.is_error
        assert "Remote not found" in result.first_text


class TestPostgresDomain:
    """Tests for database domain (no server required)."""

    def setup_method(self):
        """Set up test fixtures."""
        from domains.database import PostgresDomain

        self.domain = PostgresDomain(PostgresSettings(max_rows=50))

    @pytest.mark.asyncio
    async def test_modifying_query_rejected_before_connecting(self):
        """Test the read-only gate runs before any connection."""
        result = await self.domain.query("DELETE FROM users")

        assert result.is_error
        assert "read-only" in result.first_text
        assert self.domain._engine is None

    def test_row_limit_capped(self):
        """Test callers cannot raise the configured row cap."""
        assert self.domain._row_limit(None) == 50
        assert self.domain._row_limit(10) == 10
        assert self.domain._row_limit(10_000) == 50

    @pytest.mark.asyncio
    async def test_rows_capped_at_cursor(self, tmp_path):
        """Test a large table yields only max_rows rows."""
        from sqlalchemy import create_engine, text
        from domains.database import PostgresDomain

        engine = create_engine(f"sqlite:///{tmp_path / 'rows.db'}")
        with engine.begin() as conn:
            conn.execute(text("CREATE TABLE items (id INTEGER PRIMARY KEY, label TEXT)"))
            conn.execute(
                text("INSERT INTO items (id, label) VALUES (:id, :label)"),
                [{"id": i, "label": f"item-{i}"} for i in range(20)],
            )

        domain = PostgresDomain(PostgresSettings(max_rows=5), engine=engine)
        result = await domain.query("SELECT id, label FROM items ORDER BY id")

        assert not result.is_error
        lines = result.first_text.splitlines()
        assert len([line for line in lines if "| item-" in line]) == 5
        assert "item-4" in result.first_text
        assert "item-5" not in result.first_text
        assert "limited to 5" in result.first_text

    @pytest.mark.asyncio
    async def test_named_parameters(self, tmp_path):
        """Test queries bind named parameters."""
        from sqlalchemy import create_engine, text
        from domains.database import PostgresDomain

        engine = create_engine(f"sqlite:///{tmp_path / 'params.db'}")
        with engine.begin() as conn:
            conn.execute(text("CREATE TABLE items (id INTEGER PRIMARY KEY, label TEXT)"))
            conn.execute(text("INSERT INTO items (id, label) VALUES (1, 'one'), (2, 'two')"))

        domain = PostgresDomain(PostgresSettings(max_rows=10), engine=engine)
        result = await domain.query("SELECT label FROM items WHERE id = :id", {"id": 2})

        assert "two" in result.first_text
        assert "one" not in result.first_text
        assert "(1 rows)" in result.first_text

    def test_format_table(self):
        """Test tabular rendering of results."""
        from domains.database import format_table

        text = format_table(["id", "name"], [(1, "a"), (2, None)], limit=2)

        assert text.splitlines()[0] == "id | name"
        assert "2 | NULL" in text
        assert "limited to 2" in text


class TestResourcesDomain:
    """Tests for resources domain."""

    @pytest.fixture(autouse=True)
    def setup(self, tmp_path):
        """Set up test fixtures."""
        from domains.resources import ResourcesDomain

        self.root = tmp_path / "resources"
        self.domain = ResourcesDomain(ResourcesSettings(path=str(self.root)))
        self.tmp_path = tmp_path

    @pytest.mark.asyncio
    async def test_create_list_read_delete(self):
        """Test the resource lifecycle."""
        created = await self.domain.create_resource("docs/guide.md", "# Guide\nbody", "text/markdown")
        listing = await self.domain.list_resources()
        read = await self.domain.read_resource("resource://docs/guide.md")
        deleted = await self.domain.delete_resource("resource://docs/guide.md")
        missing = await self.domain.read_resource("resource://docs/guide.md")

        assert "resource://docs/guide.md" in created.first_text
        assert "resource://docs/guide.md" in listing.first_text
        assert "Guide" in listing.first_text
        assert read.first_text == "# Guide\nbody"
        assert not deleted.is_error
        assert missing.is_error

    @pytest.mark.asyncio
    async def test_binary_resource_roundtrip(self):
        """Test binary content is stored decoded and returned base64-encoded."""
        payload = base64.b64encode(b"\x89PNG\x00\x01").decode()

        await self.domain.create_resource("logo.png", payload, "image/png")
        read = await self.domain.read_resource("resource://logo.png")

        assert (self.root / "logo.png").read_bytes() == b"\x89PNG\x00\x01"
        assert read.first_text == payload

    @pytest.mark.asyncio
    async def test_invalid_uri(self):
        """Test URIs without the resource scheme."""
        result = await self.domain.read_resource("file:///etc/passwd")

        assert result.is_error
        assert "Invalid resource URI" in result.first_text

    @pytest.mark.asyncio
    async def test_uri_traversal_denied(self):
        """Test .. in a URI cannot leave the resources directory."""
        (self.tmp_path / "secret.txt").write_text("secret")

        result = await self.domain.read_resource("resource://../secret.txt")

        assert result.is_error
        assert "Access denied" in result.first_text

    @pytest.mark.asyncio
    async def test_uri_symlink_escape_denied(self):
        """Test URIs resolve symlinks like filesystem paths do."""
        (self.tmp_path / "secret.txt").write_text("secret")
        (self.root / "link.txt").symlink_to(self.tmp_path / "secret.txt")

        result = await self.domain.read_resource("resource://link.txt")

        assert result.is_error
        assert "Access denied" in result.first_text

    @pytest.mark.asyncio
    async def test_listing_skips_symlinks_leaving_root(self):
        """Test listing never reads files outside the resources directory."""
        (self.tmp_path / "private.md").write_text("# Private heading\n")
        (self.root / "leak.md").symlink_to(self.tmp_path / "private.md")
        await self.domain.create_resource("notes.md", "# Notes\n", "text/markdown")

        listing = await self.domain.list_resources()

        assert "resource://notes.md" in listing.first_text
        assert "leak.md" not in listing.first_text
        assert "Private heading" not in listing.first_text

    @pytest.mark.asyncio
    async def test_create_existing_resource(self):
        """Test resources are not overwritten by create."""
        await self.domain.create_resource("a.txt", "one")
        result = await self.domain.create_resource("a.txt", "two")

        assert result.is_error
        assert (self.root / "a.txt").read_text() == "one"


class TestMemoryDomain:
    """Tests for memory domain."""

    @pytest.fixture(autouse=True)
    def setup(self, tmp_path):
        """Set up test fixtures."""
        from domains.memory import MemoryDomain

        self.domain = MemoryDomain(MemorySettings(storage_path=str(tmp_path / "memory")))

    async def seed(self):
        await self.domain.create_entities([
            {"name": "Alice", "entityType": "person", "observations": ["Works on the gateway"]},
            {"name": "Gateway", "entityType": "project", "observations": ["Written in Python"]},
        ])
        await self.domain.create_relations([
            {"from": "Alice", "to": "Gateway", "relationType": "maintains"},
        ])

    @pytest.mark.asyncio
    async def test_create_and_open(self):
        """Test entities persist and can be opened by name."""
        await self.seed()

        result = await self.domain.open_nodes(["Alice", "Nobody"])

        assert "Alice (person)" in result.first_text
        assert "Works on the gateway" in result.first_text
        assert "Nobody" not in result.first_text

    @pytest.mark.asyncio
    async def test_search_matches_names_and_observations(self):
        """Test case-insensitive search including relations."""
        await self.seed()

        by_observation = await self.domain.search_nodes("python")
        by_name = await self.domain.search_nodes("alice")

        assert "Gateway (project)" in by_observation.first_text
        assert "Alice --[maintains]--> Gateway" in by_name.first_text

    @pytest.mark.asyncio
    async def test_open_unknown_nodes(self):
        """Test opening names that do not exist."""
        result = await self.domain.open_nodes(["Ghost"])

        assert result.is_error

    @pytest.mark.asyncio
    async def test_graph_file_format(self):
        """Test the graph is stored as tagged JSON lines."""
        import json

        await self.seed()

        lines = self.domain.graph_file.read_text().splitlines()
        records = [json.loads(line) for line in lines]

        assert [r["type"] for r in records] == ["entity", "entity", "relation"]
        assert records[2]["from"] == "Alice"

    @pytest.mark.asyncio
    async def test_recreating_entity_replaces_observations(self):
        """Test an entity of the same name replaces the earlier one."""
        await self.seed()
        await self.domain.create_entities([
            {"name": "Alice", "entityType": "person", "observations": ["Moved teams"]},
        ])

        result = await self.domain.open_nodes(["Alice"])

        assert "Moved teams" in result.first_text
        assert "Works on the gateway" not in result.first_text

    @pytest.mark.asyncio
    async def test_duplicate_relations_skipped(self):
        """Test an identical relation is stored once."""
        await self.seed()

        result = await self.domain.create_relations([
            {"from": "Alice", "to": "Gateway", "relationType": "maintains"},
        ])

        assert result.first_text == "Created 0 relations"
        assert len(self.domain.load_graph().relations) == 1


class TestDomainRegistration:
    """Tests across all domains."""

    @pytest.mark.asyncio
    async def test_handlers_validate_and_dispatch(self, tmp_path):
        """Test registered handlers go through the registry."""
        from domains.filesystem import register_filesystem_domain
        from mcp_server.registry import ToolRegistry

        root = tmp_path / "ws"
        root.mkdir()
        registry = ToolRegistry()
        register_filesystem_domain(registry, FilesystemSettings(allowed_directories=[str(root)]))

        bad_mode = await registry.invoke(
            "writeFile", {"path": str(root / "a.txt"), "content": "x", "mode": "TRUNCATE"}
        )
        ok = await registry.invoke("writeFile", {"path": str(root / "a.txt"), "content": "x"})

        assert bad_mode.is_error and "Invalid arguments" in bad_mode.first_text
        assert not ok.is_error

    def test_every_tool_declares_an_object_schema(self, tmp_path):
        """Test all tool schemas are JSON objects."""
        from domains import load_all_domains
        from mcp_server.registry import ToolRegistry
        from shared.config import Settings

        settings = Settings(
            filesystem=FilesystemSettings(allowed_directories=[str(tmp_path)]),
            bash=BashSettings(working_directory=str(tmp_path / "work")),
            git=GitSettings(repo_path=str(tmp_path / "repo")),
            memory=MemorySettings(storage_path=str(tmp_path / "memory")),
            resources=ResourcesSettings(path=str(tmp_path / "resources")),
        )
        registry = ToolRegistry()
        load_all_domains(registry, settings)

        for tool in registry.list_tools():
            assert tool.input_schema["type"] == "object"
            assert tool.description
