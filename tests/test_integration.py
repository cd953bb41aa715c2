import json
import os
import re
import shutil
import subprocess
import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"

posix_only = pytest.mark.skipif(
    os.name == "nt", reason="fake tools are shebang scripts"
)


def _cli_env(**overrides: str) -> dict[str, str]:
    env = {
        key: value
        for key, value in os.environ.items()
        if not key.startswith("PYCPROJ_")
    }
    existing = env.get("PYTHONPATH")
    env["PYTHONPATH"] = str(SRC) + (os.pathsep + existing if existing else "")
    env.update(overrides)
    return env


def _run_cli(args: list[str], cwd: Path, **env: str) -> subprocess.CompletedProcess:
    return subprocess.run(
        [sys.executable, "-m", "pycproj", *args],
        cwd=cwd,
        env=_cli_env(**env),
        check=False,
        capture_output=True,
        text=True,
    )


def _fake_tool(path: Path, log_path: Path, exit_code: int = 0) -> Path:
    """Write an executable that appends its arguments to log_path as JSON."""
    path.write_text(
        f"#!{sys.executable}\n"
        "import json\n"
        "import sys\n"
        f"with open({str(log_path)!r}, 'a', encoding='utf-8') as handle:\n"
        "    handle.write(json.dumps(sys.argv[1:]) + '\\n')\n"
        f"sys.exit({exit_code})\n",
        encoding="utf-8",
    )
    path.chmod(0o755)
    return path


def _logged(log_path: Path) -> list[list[str]]:
    if not log_path.exists():
        return []
    return [json.loads(line) for line in log_path.read_text(encoding="utf-8").splitlines()]


def _has_real_toolchain() -> bool:
    cmake = shutil.which("cmake")
    if cmake is None:
        return False
    if not any(shutil.which(name) for name in ("c++", "g++", "clang++")):
        return False
    result = subprocess.run(
        [cmake, "--version"], capture_output=True, text=True, check=False
    )
    match = re.search(r"version (\d+)\.(\d+)", result.stdout)
    return bool(match) and (int(match.group(1)), int(match.group(2))) >= (3, 24)


@pytest.mark.integration
def test_cli_new_command_layout(tmp_path):
    result = _run_cli(["new", "foo", "--no-git"], tmp_path)

    assert result.returncode == 0, result.stderr
    project_dir = tmp_path / "foo"
    assert sorted(
        path.relative_to(project_dir).as_posix() for path in project_dir.rglob("*")
    ) == [
        ".gitignore",
        "CMakeLists.txt",
        "bin",
        "build",
        "include",
        "src",
        "src/main.cpp",
    ]
    cmake_lists = (project_dir / "CMakeLists.txt").read_text(encoding="utf-8")
    assert "project(foo CXX)" in cmake_lists
    assert "set(CMAKE_CXX_STANDARD 23)" in cmake_lists
    assert "-Wall -Wextra -Werror -pedantic -pedantic-errors" in cmake_lists


@pytest.mark.integration
def test_cli_new_rejects_non_empty_target(tmp_path):
    (tmp_path / "foo").mkdir()
    (tmp_path / "foo" / "keep.txt").write_text("", encoding="utf-8")

    result = _run_cli(["new", "foo", "--no-git"], tmp_path)

    assert result.returncode == 1
    assert "already exists" in result.stderr
    assert [path.name for path in (tmp_path / "foo").iterdir()] == ["keep.txt"]


@posix_only
@pytest.mark.integration
def test_cli_new_invokes_cmake_and_git(tmp_path):
    tools = tmp_path / "tools"
    tools.mkdir()
    cmake_log = tmp_path / "cmake.log"
    git_log = tmp_path / "git.log"
    cmake = _fake_tool(tools / "cmake", cmake_log)
    git = _fake_tool(tools / "git", git_log)
    workspace = tmp_path / "workspace"
    workspace.mkdir()

    result = _run_cli(
        ["new", "demo", "-f", "c", "--configure"],
        workspace,
        PYCPROJ_CMAKE=str(cmake),
        PYCPROJ_GIT=str(git),
        PYCPROJ_GENERATOR="Unix Makefiles",
    )

    assert result.returncode == 0, result.stderr
    project_dir = workspace.resolve() / "demo"
    assert _logged(cmake_log) == [
        [
            "-S",
            str(project_dir),
            "-B",
            str(project_dir / "build"),
            "-G",
            "Unix Makefiles",
        ]
    ]
    assert _logged(git_log) == [
        ["init"],
        ["add", "."],
        ["commit", "-m", "Initial commit"],
    ]
    assert (project_dir / "src" / "main.c").is_file()


@posix_only
@pytest.mark.integration
def test_cli_new_reports_configure_failure(tmp_path):
    cmake = _fake_tool(tmp_path / "cmake", tmp_path / "cmake.log", exit_code=4)
    workspace = tmp_path / "workspace"
    workspace.mkdir()

    result = _run_cli(
        ["new", "demo", "--configure", "--no-git"],
        workspace,
        PYCPROJ_CMAKE=str(cmake),
    )

    assert result.returncode == 0
    assert "cmake failed with exit code 4" in result.stderr
    assert (workspace / "demo" / "CMakeLists.txt").is_file()


@pytest.mark.integration
def test_cli_new_without_cmake(tmp_path):
    result = _run_cli(
        ["new", "foo", "--no-git"], tmp_path, PYCPROJ_CMAKE="pycproj-no-such-cmake"
    )

    assert result.returncode == 0, result.stderr
    project_dir = tmp_path / "foo"
    assert (project_dir / "src" / "main.cpp").is_file()
    assert list((project_dir / "build").iterdir()) == []

    configured = _run_cli(
        ["new", "bar", "--configure", "--no-git"],
        tmp_path,
        PYCPROJ_CMAKE="pycproj-no-such-cmake",
    )

    assert configured.returncode == 0
    assert "'pycproj-no-such-cmake' not found" in configured.stderr
    assert (tmp_path / "bar" / "CMakeLists.txt").is_file()


@posix_only
@pytest.mark.integration
def test_cli_run_forwards_args_and_exit_code(tmp_path):
    project_dir = tmp_path / "app"
    exec_dir = project_dir / "bin"
    exec_dir.mkdir(parents=True)
    executable = exec_dir / "app"
    executable.write_text(
        f"#!{sys.executable}\n"
        "import json\n"
        "import os\n"
        "import sys\n"
        "print(json.dumps({'args': sys.argv[1:], 'cwd': os.getcwd()}))\n"
        "sys.exit(7)\n",
        encoding="utf-8",
    )
    executable.chmod(0o755)

    result = _run_cli(
        ["run", "--no-build", "--", "a", "b c", "--flag"], project_dir
    )

    assert result.returncode == 7
    payload = json.loads(result.stdout)
    assert payload["args"] == ["a", "b c", "--flag"]
    assert Path(payload["cwd"]) == exec_dir.resolve()
    assert "[pycproj] running" in result.stderr


@posix_only
@pytest.mark.integration
def test_cli_format_passes_source_files_only(tmp_path):
    log_path = tmp_path / "clang-format.log"
    formatter = _fake_tool(tmp_path / "clang-format", log_path)
    project_dir = tmp_path / "proj"
    (project_dir / "src" / "detail").mkdir(parents=True)
    (project_dir / "include").mkdir()
    (project_dir / "src" / "main.cpp").write_text("", encoding="utf-8")
    (project_dir / "src" / "detail" / "impl.hpp").write_text("", encoding="utf-8")
    (project_dir / "include" / "api.hpp").write_text("", encoding="utf-8")

    result = _run_cli(["format"], project_dir, PYCPROJ_CLANG_FORMAT=str(formatter))

    assert result.returncode == 0, result.stderr
    root = project_dir.resolve()
    assert _logged(log_path) == [
        [
            "-i",
            "-style=file",
            str(root / "src" / "detail" / "impl.hpp"),
            str(root / "src" / "main.cpp"),
        ]
    ]


@pytest.mark.integration
def test_cli_uses_config_file(tmp_path):
    (tmp_path / "pycproj.json").write_text(
        json.dumps({"file_extension": "c", "source_dir": "code"}), encoding="utf-8"
    )

    result = _run_cli(["new", "tool", "--no-git"], tmp_path)

    assert result.returncode == 0, result.stderr
    assert (tmp_path / "tool" / "code" / "main.c").is_file()


@pytest.mark.integration
@pytest.mark.skipif(
    not _has_real_toolchain(), reason="needs cmake >= 3.24 and a C++ compiler"
)
def test_cli_build_and_run_with_real_toolchain(tmp_path):
    created = _run_cli(["new", "hello", "--configure", "--no-git"], tmp_path)
    assert created.returncode == 0, created.stderr

    project_dir = tmp_path / "hello"
    ran = _run_cli(["run"], project_dir)

    assert ran.returncode == 0, ran.stderr
    assert "Hello, world!" in ran.stdout
    assert (project_dir / "build" / "compile_commands.json").is_file()
