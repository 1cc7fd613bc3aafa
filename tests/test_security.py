"""Tests for the path, command and query classifiers."""

import os

import pytest

from security import (
    ACCESS_DENIED,
    CommandValidator,
    PathValidator,
    SecurityError,
    ValidationOutcome,
    is_read_only,
    validate_path,
    validate_query,
)


class TestValidationOutcome:
    """Tests for the classifier result type."""

    def test_success_and_failure(self):
        """Test both outcome shapes."""
        ok = ValidationOutcome.success("value")
        bad = ValidationOutcome.failure("nope")

        assert ok.ok and ok.unwrap() == "value"
        assert not bad.ok and bad.reason == "nope"

    def test_unwrap_failure_raises(self):
        """Test unwrapping a failure raises SecurityError."""
        with pytest.raises(SecurityError, match="nope"):
            ValidationOutcome.failure("nope").unwrap()


class TestPathValidator:
    """Tests for filesystem sandboxing."""

    def setup_method(self):
        """Set up test fixtures."""
        self.cwd = os.getcwd()

    def teardown_method(self):
        os.chdir(self.cwd)

    def test_path_inside_root(self, tmp_path):
        """Test a descendant of the root is accepted in canonical form."""
        root = tmp_path / "root"
        (root / "sub").mkdir(parents=True)

        outcome = validate_path(str(root / "sub" / "file.txt"), [str(root)])

        assert outcome.ok
        assert outcome.value == (root / "sub" / "file.txt").resolve()

    def test_root_itself_is_accepted(self, tmp_path):
        """Test the root directory itself is inside the sandbox."""
        outcome = validate_path(str(tmp_path), [str(tmp_path)])

        assert outcome.ok

    def test_dot_dot_escape_rejected(self, tmp_path):
        """Test escaping the root with .. segments."""
        root = tmp_path / "root"
        root.mkdir()

        outcome = validate_path(str(root / ".." / "outside.txt"), [str(root)])

        assert not outcome.ok
        assert outcome.reason == ACCESS_DENIED

    def test_dot_dot_within_root_allowed(self, tmp_path):
        """Test .. that stays inside the root is fine."""
        root = tmp_path / "root"
        (root / "a").mkdir(parents=True)

        outcome = validate_path(str(root / "a" / ".." / "b.txt"), [str(root)])

        assert outcome.ok
        assert outcome.value == (root / "b.txt").resolve()

    def test_sibling_prefix_rejected(self, tmp_path):
        """Test a sibling sharing the root's name prefix is outside."""
        root = tmp_path / "data"
        sibling = tmp_path / "data-evil"
        root.mkdir()
        sibling.mkdir()

        outcome = validate_path(str(sibling / "x"), [str(root)])

        assert not outcome.ok

    def test_symlink_escape_rejected(self, tmp_path):
        """Test a symlink inside the root pointing outside it."""
        root = tmp_path / "root"
        outside = tmp_path / "outside"
        root.mkdir()
        outside.mkdir()
        (outside / "secret.txt").write_text("secret")
        (root / "link").symlink_to(outside)

        outcome = validate_path(str(root / "link" / "secret.txt"), [str(root)])

        assert not outcome.ok
        assert outcome.reason == ACCESS_DENIED

    def test_symlink_then_dot_dot_resolved_physically(self, tmp_path):
        """Test .. is applied after following a symlink."""
        root = tmp_path / "root"
        deep = tmp_path / "elsewhere" / "deep"
        root.mkdir()
        deep.mkdir(parents=True)
        (root / "jump").symlink_to(deep)

        # Lexically this is root/x; physically it is elsewhere/x
        outcome = validate_path(str(root / "jump" / ".." / "x"), [str(root)])

        assert not outcome.ok

    def test_symlink_inside_root_allowed(self, tmp_path):
        """Test a symlink whose target stays in the root."""
        root = tmp_path / "root"
        (root / "real").mkdir(parents=True)
        (root / "alias").symlink_to(root / "real")

        outcome = validate_path(str(root / "alias" / "f.txt"), [str(root)])

        assert outcome.ok
        assert outcome.value == (root / "real" / "f.txt").resolve()

    def test_dangling_symlink_rejected(self, tmp_path):
        """Test a dangling final symlink fails validation."""
        root = tmp_path / "root"
        root.mkdir()
        (root / "dangling").symlink_to(tmp_path / "missing")

        outcome = validate_path(str(root / "dangling"), [str(root)])

        assert not outcome.ok

    def test_symlinked_root(self, tmp_path):
        """Test a root configured through a symlink is compared by target."""
        real = tmp_path / "real"
        real.mkdir()
        alias = tmp_path / "alias"
        alias.symlink_to(real)

        validator = PathValidator([str(alias)])

        assert validator.roots == (real.resolve(),)
        assert validator.validate(str(real / "f.txt")).ok
        assert validator.validate(str(alias / "f.txt")).ok

    def test_relative_path_resolves_against_cwd(self, tmp_path):
        """Test relative paths are taken from the working directory."""
        root = tmp_path / "root"
        root.mkdir()
        os.chdir(root)

        assert validate_path("./notes.txt", [str(root)]).ok
        assert not validate_path("../notes.txt", [str(root)]).ok

    def test_empty_and_nul_paths_rejected(self, tmp_path):
        """Test degenerate inputs."""
        validator = PathValidator([str(tmp_path)])

        assert not validator.validate("").ok
        assert not validator.validate(str(tmp_path / "a\x00b")).ok

    def test_multiple_roots(self, tmp_path):
        """Test any allowed root admits the path."""
        first = tmp_path / "first"
        second = tmp_path / "second"
        first.mkdir()
        second.mkdir()

        validator = PathValidator([str(first), str(second)])

        assert validator.validate(str(second / "x")).ok
        assert not validator.validate(str(tmp_path / "third" / "x")).ok


class TestCommandValidator:
    """Tests for command allowlisting and dangerous patterns."""

    def setup_method(self):
        """Set up test fixtures."""
        self.validator = CommandValidator(["ls", "echo", "chmod", "rm", "cat", "dd"])

    def test_allowed_command(self):
        """Test a plain allowlisted command."""
        outcome = self.validator.validate("ls", ["-la"])

        assert outcome.ok
        assert outcome.value == "ls"

    def test_command_not_in_allowlist(self):
        """Test the allowlist is checked on the leading token."""
        outcome = self.validator.validate("curl http://example.com")

        assert not outcome.ok
        assert outcome.reason == "Command not allowed: curl"

    def test_non_allowlisted_rejected_regardless_of_args(self):
        """Test harmless arguments do not help a disallowed command."""
        assert not self.validator.validate("python", ["--version"]).ok

    def test_empty_command(self):
        """Test an empty command is rejected."""
        assert not self.validator.validate("   ").ok

    def test_chmod_777_rejected(self):
        """Test dangerous permissions are caught even for an allowed command."""
        outcome = self.validator.validate("chmod 777 /tmp/x")

        assert not outcome.ok
        assert "world-writable permissions" in outcome.reason

    def test_pattern_split_across_arguments(self):
        """Test the reconstructed line catches patterns split over arguments."""
        outcome = self.validator.validate("chmod", ["777", "/tmp/x"])

        assert not outcome.ok
        assert "command line" in outcome.reason

    def test_pattern_inside_single_argument(self):
        """Test an argument carrying a dangerous command."""
        outcome = self.validator.validate("echo", ["hello; sudo reboot"])

        assert not outcome.ok
        assert "argument 0" in outcome.reason

    @pytest.mark.parametrize("command", [
        "rm -rf /",
        "rm -fr /home",
        "dd if=/dev/zero of=/dev/sda",
        "echo :(){ :|:& };:",
        "echo x && mkfs.ext4 /dev/sda1",
        "echo x; su root",
        "chmod -R a+w /srv",
        "rm -r -f /",
        "rm -f -R /var",
        "rm --recursive --force /",
        "rm --force -v --recursive /home",
        "chmod 666 notes.txt",
        "chmod 1777 /srv/share",
        "chmod 0662 notes.txt",
        "chmod a=rwx notes.txt",
        "chmod o=rw notes.txt",
        "chmod u+x,o+w notes.txt",
    ])
    def test_dangerous_patterns(self, command):
        """Test each known destructive shape is rejected."""
        assert not self.validator.validate(command).ok

    @pytest.mark.parametrize("command", [
        "rm file.txt",
        "rm -r build",
        "chmod 644 notes.txt",
        "chmod -R 755 build",
        "chmod u+w notes.txt",
        "chmod go-w notes.txt",
        "rm -f stale.lock",
        "rm -r -f build",
        "cat summary.txt",
        "echo pseudo",
    ])
    def test_benign_commands_pass(self, command):
        """Test similar-looking safe commands are accepted."""
        assert self.validator.validate(command).ok


class TestQueryClassifier:
    """Tests for read-only SQL classification."""

    @pytest.mark.parametrize("sql", [
        "SELECT * FROM users",
        "  select id from t where x = 1",
        "SHOW search_path",
        "DESCRIBE users",
        "EXPLAIN SELECT 1",
        "WITH a AS (SELECT 1) SELECT * FROM a",
    ])
    def test_read_only_queries(self, sql):
        """Test read verbs without write verbs are accepted."""
        assert is_read_only(sql)
        assert validate_query(sql).ok

    @pytest.mark.parametrize("sql", [
        "INSERT INTO users VALUES (1)",
        "UPDATE users SET name = 'x'",
        "DELETE FROM users",
        "VACUUM",
        "SELECT 1; DROP TABLE users",
        "WITH gone AS (DELETE FROM users RETURNING *) SELECT * FROM gone",
    ])
    def test_modifying_queries(self, sql):
        """Test write verbs anywhere are rejected."""
        outcome = validate_query(sql)

        assert not outcome.ok
        assert outcome.reason == "Only read-only queries are allowed. Found potentially modifying SQL."

    def test_keyword_inside_identifier_rejected(self):
        """Test the substring check is deliberately conservative."""
        assert not is_read_only("SELECT created_at FROM events")
