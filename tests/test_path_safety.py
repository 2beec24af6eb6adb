"""
Tests for the generated-file path policy and write-time containment.
"""

import os
from pathlib import Path

import pytest

from runtimes.path_safety import PathPolicy, Violation, resolve_within_root


class TestClassify:
    """Check order and reasons of PathPolicy.classify."""

    @pytest.mark.parametrize(
        "path",
        ["../etc/passwd", "src/../../x.ts", "src/..", "a\\..\\b.ts", "../.env"],
    )
    def test_parent_segment_is_traversal(self, policy: PathPolicy, path: str):
        verdict = policy.classify(path)
        assert not verdict.safe
        assert verdict.violation is Violation.PATH_TRAVERSAL
        assert verdict.reason == "Path traversal detected"

    def test_traversal_wins_over_later_checks(self, policy: PathPolicy):
        """A traversal path that is also protected and badly named still reports traversal."""
        verdict = policy.classify("node_modules/../.env.exe")
        assert verdict.violation is Violation.PATH_TRAVERSAL

    def test_dots_inside_names_are_not_traversal(self, policy: PathPolicy):
        assert policy.classify("src/a..b.ts").safe

    @pytest.mark.parametrize("path", ["/etc/passwd.txt", "C:\\Windows\\x.txt", "\\\\server\\share\\a.txt"])
    def test_absolute(self, policy: PathPolicy, path: str):
        verdict = policy.classify(path)
        assert verdict.violation is Violation.ABSOLUTE_PATH
        assert verdict.reason == "Absolute paths not allowed"

    @pytest.mark.parametrize("name", [".env", ".env.local", "package-lock.json", "yarn.lock", ".gitignore"])
    def test_protected_files(self, policy: PathPolicy, name: str):
        verdict = policy.classify(f"src/{name}")
        assert verdict.violation is Violation.PROTECTED_FILE
        assert verdict.reason == f"Protected file: {name}"

    def test_env_example_is_allowed(self, policy: PathPolicy):
        assert policy.classify(".env.example").safe

    @pytest.mark.parametrize("segment", ["node_modules", ".git", ".next", "dist", "build"])
    def test_protected_directories(self, policy: PathPolicy, segment: str):
        verdict = policy.classify(f"src/{segment}/index.js")
        assert verdict.violation is Violation.PROTECTED_DIRECTORY
        assert verdict.reason == f"Protected directory: {segment}"

    def test_extension_not_allowed(self, policy: PathPolicy):
        verdict = policy.classify("src/run.sh")
        assert verdict.violation is Violation.EXTENSION_NOT_ALLOWED
        assert verdict.reason == "File extension not allowed: .sh"

    def test_extension_check_is_case_insensitive(self, policy: PathPolicy):
        assert policy.classify("public/Logo.PNG").safe

    def test_no_extension_passes(self, policy: PathPolicy):
        assert policy.classify("Dockerfile").safe

    def test_safe_path_keeps_input(self, policy: PathPolicy):
        verdict = policy.classify("src/components/Button.tsx")
        assert verdict.safe
        assert verdict.path == "src/components/Button.tsx"
        assert verdict.reason is None

    def test_custom_lists(self, tmp_path: Path):
        policy = PathPolicy(tmp_path, protected_files=["*.secret"], allowed_extensions=[".py"])
        assert policy.classify("keys.secret").violation is Violation.PROTECTED_FILE
        assert policy.classify("app.py").safe
        assert policy.classify("app.ts").violation is Violation.EXTENSION_NOT_ALLOWED


class TestNormalize:
    """Default source-directory prefixing."""

    def test_strips_leading_slashes(self, policy: PathPolicy):
        assert policy.normalize("//src/app.ts") == "src/app.ts"

    def test_strips_leading_dot_slash(self, policy: PathPolicy):
        assert policy.normalize("./src/a.ts") == "src/a.ts"
        assert policy.normalize("./hooks/x.ts") == "src/hooks/x.ts"
        assert policy.normalize(".//./package.json") == "package.json"

    def test_prefixes_default_source_dir(self, policy: PathPolicy):
        assert policy.normalize("components/Button.tsx") == "components/Button.tsx"
        assert policy.normalize("hooks/useThing.ts") == "src/hooks/useThing.ts"

    def test_root_config_files_stay_at_root(self, policy: PathPolicy):
        assert policy.normalize("package.json") == "package.json"
        assert policy.normalize("tailwind.config.ts") == "tailwind.config.ts"

    def test_known_top_level_dirs(self, policy: PathPolicy):
        for d in ("public", "app", "pages", "lib", "styles", "utils"):
            assert policy.normalize(f"{d}/x.ts") == f"{d}/x.ts"

    def test_empty_default_dir_disables_prefix(self, tmp_path: Path):
        policy = PathPolicy(tmp_path, default_source_dir="")
        assert policy.normalize("/hooks/a.ts") == "hooks/a.ts"


class TestResolveWithinRoot:
    """Write-time containment."""

    def test_resolves_under_root(self, tmp_path: Path):
        resolved = resolve_within_root(tmp_path, "src/a.ts")
        assert resolved == (tmp_path / "src" / "a.ts").resolve()

    def test_rejects_traversal_and_absolute(self, tmp_path: Path):
        with pytest.raises(ValueError):
            resolve_within_root(tmp_path, "../x.ts")
        with pytest.raises(ValueError):
            resolve_within_root(tmp_path, "/x.ts")

    @pytest.mark.skipif(not hasattr(os, "symlink"), reason="symlinks unavailable")
    def test_rejects_symlink_escape(self, tmp_path: Path):
        root = tmp_path / "root"
        outside = tmp_path / "outside"
        root.mkdir()
        outside.mkdir()
        try:
            (root / "link").symlink_to(outside, target_is_directory=True)
        except OSError:
            pytest.skip("cannot create symlink")
        with pytest.raises(ValueError):
            resolve_within_root(root, "link/a.ts")
