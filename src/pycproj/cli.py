#!/usr/bin/env python3
"""Scaffolding and build helper for small C/C++ CMake projects."""

import importlib.metadata
import json
import os
import re
import shlex
import shutil
import subprocess
import sys
import sysconfig
from pathlib import Path, PurePosixPath, PureWindowsPath
from typing import (
    Any,
    Mapping,
    NamedTuple,
    Optional,
    Sequence,
    TextIO,
    TypeAlias,
    TypedDict,
)


DEFAULT_FILE_EXTENSION = "cpp"
DEFAULT_SOURCE_DIR = "src"
DEFAULT_INCLUDE_DIR = "include"
DEFAULT_BUILD_DIR = "build"
DEFAULT_EXEC_DIR = "bin"
DEFAULT_PROJECT_NAME = "Project"
DEFAULT_CONFIG_FILE_NAME = "pycproj.json"
DEFAULT_CMAKE = "cmake"
DEFAULT_CLANG_FORMAT = "clang-format"
DEFAULT_GIT = "git"
DEFAULT_FORMAT_STYLE = "file"
DEFAULT_CMAKE_GENERATOR = "Ninja"
MIN_CMAKE_VERSION = "3.24"
CMAKE_LISTS_FILE_NAME = "CMakeLists.txt"
CMAKE_CACHE_FILE_NAME = "CMakeCache.txt"
GITIGNORE_FILE_NAME = ".gitignore"
MAIN_SOURCE_STEM = "main"
WARNING_FLAGS = ("-Wall", "-Wextra", "-Werror", "-pedantic", "-pedantic-errors")
DEBUG_FLAGS = ("-g",)
INITIAL_COMMIT_MESSAGE = "Initial commit"
CONFIG_FILE_ENV_VAR = "PYCPROJ_CONFIG_FILE"
DEFAULT_EXECUTABLE_SUFFIX = ".exe"
WINDOWS_BUILD_CONFIG_DIRS = ("Debug", "Release", "RelWithDebInfo", "MinSizeRel")
PROJECT_NAME_PATTERN = re.compile(r"^[A-Za-z0-9_][A-Za-z0-9_.+-]*$")


def is_windows() -> bool:
    return os.name == "nt"


def exe_suffix() -> str:
    suffix = sysconfig.get_config_var("EXE_SUFFIX")
    if suffix:
        return suffix
    return DEFAULT_EXECUTABLE_SUFFIX if is_windows() else ""


def exe_name(target: str) -> str:
    suffix = exe_suffix()
    return f"{target}{suffix}" if suffix else target


class PycprojError(Exception):
    """Base class for failures reported to the user with a non-zero exit."""

    exit_code = 1


class InvalidOptionError(PycprojError):
    exit_code = 2


class AlreadyExistsError(PycprojError):
    pass


class ProjectIOError(PycprojError):
    pass


class NotFoundError(PycprojError):
    pass


class ExternalToolError(PycprojError):
    def __init__(self, tool: str, returncode: int):
        super().__init__(f"{tool} failed with exit code {returncode}")
        self.tool = tool
        self.returncode = returncode
        self.exit_code = returncode if returncode > 0 else 1


class LanguageProfile(NamedTuple):
    cmake_language: str
    standard: str
    include_line: str
    main_signature: str
    hello_statement: str


LANGUAGE_PROFILES: dict[str, LanguageProfile] = {
    "cpp": LanguageProfile(
        cmake_language="CXX",
        standard="23",
        include_line="#include <iostream>",
        main_signature="int main()",
        hello_statement='std::cout << "Hello, world!" << std::endl;',
    ),
    "c": LanguageProfile(
        cmake_language="C",
        standard="17",
        include_line="#include <stdio.h>",
        main_signature="int main(void)",
        hello_statement='printf("Hello, world!\\n");',
    ),
}


class ProjectConfig(NamedTuple):
    project_name: str
    file_extension: str
    source_dir: str
    include_dir: str
    build_dir: str
    exec_dir: str


class GeneratedFile(NamedTuple):
    relative_path: PurePosixPath
    contents: str


class OptionSpec(NamedTuple):
    key: str
    flags: tuple[str, ...]
    takes_value: bool = True


class Settings(TypedDict):
    file_extension: str
    source_dir: str
    include_dir: str
    build_dir: str
    exec_dir: str
    exec_name: Optional[str]
    generator: Optional[str]
    format_style: str
    cmake: str
    clang_format: str
    git: str
    config_path: Optional[Path]
    project_root: Optional[Path]


class ResolvedSettings(TypedDict):
    project_root: Path
    source_dir: Path
    build_dir: Path
    exec_dir: Path
    exec_name: str
    generator: Optional[str]
    format_style: str


PathLike: TypeAlias = Path | str
ParsedArgs: TypeAlias = tuple[dict[str, Any], list[str], list[str]]


class SettingsManager:
    def __init__(
        self,
        file_extension: str = DEFAULT_FILE_EXTENSION,
        source_dir: str = DEFAULT_SOURCE_DIR,
        include_dir: str = DEFAULT_INCLUDE_DIR,
        build_dir: str = DEFAULT_BUILD_DIR,
        exec_dir: str = DEFAULT_EXEC_DIR,
        exec_name: Optional[str] = None,
        generator: Optional[str] = None,
        format_style: str = DEFAULT_FORMAT_STYLE,
        cmake: str = DEFAULT_CMAKE,
        clang_format: str = DEFAULT_CLANG_FORMAT,
        git: str = DEFAULT_GIT,
        config_path: Optional[Path] = None,
        project_root: Optional[Path] = None,
    ):
        self._file_extension = file_extension
        self._source_dir = source_dir
        self._include_dir = include_dir
        self._build_dir = build_dir
        self._exec_dir = exec_dir
        self._exec_name = exec_name
        self._generator = generator
        self._format_style = format_style
        self._cmake = cmake
        self._clang_format = clang_format
        self._git = git
        self._config_path = config_path
        self._project_root = project_root

    @property
    def file_extension(self) -> str:
        return self._file_extension

    @property
    def source_dir(self) -> str:
        return self._source_dir

    @property
    def include_dir(self) -> str:
        return self._include_dir

    @property
    def build_dir(self) -> str:
        return self._build_dir

    @property
    def exec_dir(self) -> str:
        return self._exec_dir

    @property
    def exec_name(self) -> Optional[str]:
        return self._exec_name

    @property
    def generator(self) -> Optional[str]:
        return self._generator

    @property
    def format_style(self) -> str:
        return self._format_style

    @property
    def cmake(self) -> str:
        return self._cmake

    @property
    def clang_format(self) -> str:
        return self._clang_format

    @property
    def git(self) -> str:
        return self._git

    @property
    def config_path(self) -> Optional[Path]:
        return self._config_path

    @property
    def project_root(self) -> Optional[Path]:
        return self._project_root

    def set_file_extension(self, value: str) -> None:
        self._file_extension = value

    def set_source_dir(self, value: str) -> None:
        self._source_dir = value

    def set_include_dir(self, value: str) -> None:
        self._include_dir = value

    def set_build_dir(self, value: str) -> None:
        self._build_dir = value

    def set_exec_dir(self, value: str) -> None:
        self._exec_dir = value

    def set_exec_name(self, value: Optional[str]) -> None:
        self._exec_name = value

    def set_generator(self, value: Optional[str]) -> None:
        self._generator = value

    def set_format_style(self, value: str) -> None:
        self._format_style = value

    def set_cmake(self, value: str) -> None:
        self._cmake = value

    def set_clang_format(self, value: str) -> None:
        self._clang_format = value

    def set_git(self, value: str) -> None:
        self._git = value

    def set_config_path(self, value: Optional[Path]) -> None:
        self._config_path = value

    def set_project_root(self, value: Optional[Path]) -> None:
        self._project_root = value

    def to_dict(self) -> Settings:
        data: Settings = {
            "file_extension": self._file_extension,
            "source_dir": self._source_dir,
            "include_dir": self._include_dir,
            "build_dir": self._build_dir,
            "exec_dir": self._exec_dir,
            "exec_name": self._exec_name,
            "generator": self._generator,
            "format_style": self._format_style,
            "cmake": self._cmake,
            "clang_format": self._clang_format,
            "git": self._git,
            "config_path": self._config_path,
            "project_root": self._project_root,
        }
        return data

    @classmethod
    def from_dict(cls, settings: Settings) -> "SettingsManager":
        return cls(**settings)


# Settings layers: defaults, config file, environment, command-line flags.
settings_manager = SettingsManager()

# Keys that can be set from the config file, the environment and flags.
SETTING_KEYS = (
    "file_extension",
    "source_dir",
    "include_dir",
    "build_dir",
    "exec_dir",
    "exec_name",
    "generator",
    "format_style",
)
TOOL_KEYS = ("cmake", "clang_format", "git")
ENV_OVERRIDES = {
    "PYCPROJ_FILE_EXT": "file_extension",
    "PYCPROJ_SOURCE_DIR": "source_dir",
    "PYCPROJ_INCLUDE_DIR": "include_dir",
    "PYCPROJ_BUILD_DIR": "build_dir",
    "PYCPROJ_EXEC_DIR": "exec_dir",
    "PYCPROJ_EXEC_NAME": "exec_name",
    "PYCPROJ_GENERATOR": "generator",
    "PYCPROJ_CMAKE": "cmake",
    "PYCPROJ_CLANG_FORMAT": "clang_format",
    "PYCPROJ_GIT": "git",
}


def _manager(config_manager: Optional[SettingsManager] = None) -> SettingsManager:
    if config_manager is not None:
        return config_manager
    return globals()["settings_manager"]


def _set_setting(manager: SettingsManager, key: str, value: Any) -> None:
    getattr(manager, f"set_{key}")(value)


def info(message: str, file: Optional[TextIO] = None) -> None:
    """Print a standard informational message."""
    print(f"[pycproj] {message}", file=file)


def error(message: str) -> None:
    """Print a standardized error message to stderr."""
    print(f"error: {message}", file=sys.stderr)


def _exit_status(returncode: int) -> int:
    # subprocess reports death by signal N as -N; shells report 128 + N
    if returncode < 0:
        return 128 - returncode
    return returncode


def run_cmd(
    cmd: Sequence[str],
    cwd: Optional[Path] = None,
    env: Optional[Mapping[str, str]] = None,
    report_failure: bool = True,
    echo_file: Optional[TextIO] = None,
) -> int:
    """Run a subprocess command and return its exit status.

    The child inherits stdout and stderr. A program that cannot be started
    raises NotFoundError (missing executable) or ProjectIOError.
    """
    print("+", " ".join(shlex.quote(str(part)) for part in cmd), file=echo_file, flush=True)
    try:
        subprocess.run(cmd, cwd=str(cwd) if cwd else None, check=True, env=env)
    except subprocess.CalledProcessError as exc:
        if report_failure:
            error(f"command failed with exit code {exc.returncode}")
        return _exit_status(exc.returncode)
    except FileNotFoundError as exc:
        raise NotFoundError(
            f"'{cmd[0]}' not found; is it installed and on PATH?"
        ) from exc
    except OSError as exc:
        raise ProjectIOError(f"failed to start '{cmd[0]}': {exc}") from exc
    return 0


class ExternalTool:
    """A command-line program the tool delegates to."""

    def __init__(self, name: str, executable: str):
        self.name = name
        self.executable = executable

    def invoke(
        self,
        args: Sequence[str],
        cwd: Optional[Path] = None,
        env: Optional[Mapping[str, str]] = None,
    ) -> int:
        return run_cmd([self.executable, *args], cwd=cwd, env=env)

    def require(
        self,
        args: Sequence[str],
        cwd: Optional[Path] = None,
        env: Optional[Mapping[str, str]] = None,
    ) -> None:
        returncode = self.invoke(args, cwd=cwd, env=env)
        if returncode != 0:
            raise ExternalToolError(self.name, returncode)


def cmake_tool(config_manager: Optional[SettingsManager] = None) -> ExternalTool:
    return ExternalTool("cmake", _manager(config_manager).cmake)


def clang_format_tool(
    config_manager: Optional[SettingsManager] = None,
) -> ExternalTool:
    return ExternalTool("clang-format", _manager(config_manager).clang_format)


def git_tool(config_manager: Optional[SettingsManager] = None) -> ExternalTool:
    return ExternalTool("git", _manager(config_manager).git)


def _resolve_path(path: PathLike) -> Path:
    try:
        return Path(path).resolve()
    except OSError:
        return Path(path).absolute()


def _cmake_escape(value: str) -> str:
    value = value.replace("\\", "\\\\").replace('"', '\\"')
    value = value.replace("$", "\\$")
    value = value.replace(";", "\\;")
    value = value.replace("#", "\\#")
    return value


def _sanitize_project_name(name: str) -> str:
    cleaned = re.sub(r"[^A-Za-z0-9_.+-]", "_", name.strip())
    if cleaned and not PROJECT_NAME_PATTERN.match(cleaned):
        cleaned = f"_{cleaned}"
    return cleaned or DEFAULT_PROJECT_NAME


def _validate_non_empty_string(value: Any, field_name: str) -> Optional[str]:
    """Validate a config value is a non-empty string.

    Returns the stripped string, or None when the value is absent.
    """
    if value is None:
        return None
    if isinstance(value, str) and value.strip():
        return value.strip()
    raise InvalidOptionError(f"config {field_name} must be a non-empty string")


def _validate_target_name(value: Any, field_name: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise InvalidOptionError(f"{field_name} must be a non-empty string")
    name = value.strip()
    if not PROJECT_NAME_PATTERN.match(name):
        raise InvalidOptionError(
            f"invalid {field_name} '{name}': use letters, digits, '_', '.', '+' "
            "or '-', starting with a letter, digit or '_'"
        )
    return name


def _validate_file_extension(value: Any) -> str:
    if not isinstance(value, str):
        raise InvalidOptionError("file extension must be a string")
    normalized = value.strip().lower().lstrip(".")
    if normalized not in LANGUAGE_PROFILES:
        raise InvalidOptionError(
            f"valid file extensions are 'cpp' and 'c'; got '{value}'"
        )
    return normalized


def _validate_path_segment(value: Any, field_name: str) -> str:
    """Validate a project-relative directory and return it in POSIX form.

    Rejects empty values, absolute paths (POSIX or Windows style) and any
    '..' component.
    """
    if not isinstance(value, str) or not value.strip():
        raise InvalidOptionError(f"{field_name} must be a non-empty path")
    raw = value.strip().replace("\\", "/")
    segment = PurePosixPath(raw)
    if segment.is_absolute() or PureWindowsPath(raw).anchor:
        raise InvalidOptionError(f"{field_name} must be a relative path; got '{value}'")
    if ".." in segment.parts:
        raise InvalidOptionError(f"{field_name} must not contain '..'; got '{value}'")
    normalized = segment.as_posix()
    if normalized == ".":
        raise InvalidOptionError(f"{field_name} must name a subdirectory; got '{value}'")
    return normalized


def _check_distinct_dirs(config: ProjectConfig) -> None:
    seen: dict[str, str] = {}
    for field_name in ("source_dir", "include_dir", "build_dir", "exec_dir"):
        directory = getattr(config, field_name)
        if directory in seen:
            raise InvalidOptionError(
                f"{field_name} and {seen[directory]} must differ; both are '{directory}'"
            )
        seen[directory] = field_name


def _pick(options: Mapping[str, Any], key: str, default: Any) -> Any:
    value = options.get(key)
    return default if value is None else value


def resolve_project_config(
    project_name: Any,
    options: Optional[Mapping[str, Any]] = None,
    config_manager: Optional[SettingsManager] = None,
) -> ProjectConfig:
    """Merge raw option values over the current settings into a ProjectConfig.

    Options that are missing or None fall back to the settings manager, which
    already carries the defaults, the config file and the environment.
    """
    manager = _manager(config_manager)
    options = options or {}
    config = ProjectConfig(
        project_name=_validate_target_name(project_name, "project name"),
        file_extension=_validate_file_extension(
            _pick(options, "file_extension", manager.file_extension)
        ),
        source_dir=_validate_path_segment(
            _pick(options, "source_dir", manager.source_dir), "source_dir"
        ),
        include_dir=_validate_path_segment(
            _pick(options, "include_dir", manager.include_dir), "include_dir"
        ),
        build_dir=_validate_path_segment(
            _pick(options, "build_dir", manager.build_dir), "build_dir"
        ),
        exec_dir=_validate_path_segment(
            _pick(options, "exec_dir", manager.exec_dir), "exec_dir"
        ),
    )
    _check_distinct_dirs(config)
    return config


def _default_generator(config_manager: Optional[SettingsManager] = None) -> Optional[str]:
    generator = _manager(config_manager).generator
    if generator:
        return generator
    return DEFAULT_CMAKE_GENERATOR if shutil.which("ninja") else None


def resolve_settings(
    root_dir: Optional[PathLike] = None,
    config_manager: Optional[SettingsManager] = None,
) -> ResolvedSettings:
    """Resolve absolute paths for the init, build, run and format commands."""
    manager = _manager(config_manager)
    if root_dir:
        project_root = _resolve_path(Path(root_dir).expanduser())
    else:
        project_root = _resolve_path(manager.project_root or Path.cwd())
    source_dir = _validate_path_segment(manager.source_dir, "source_dir")
    build_dir = _validate_path_segment(manager.build_dir, "build_dir")
    exec_dir = _validate_path_segment(manager.exec_dir, "exec_dir")
    return {
        "project_root": project_root,
        "source_dir": project_root / source_dir,
        "build_dir": project_root / build_dir,
        "exec_dir": project_root / exec_dir,
        # validated by run_project, the only command that uses it
        "exec_name": manager.exec_name or _sanitize_project_name(project_root.name),
        "generator": _default_generator(manager),
        "format_style": manager.format_style,
    }


def _apply_config_file(
    path: Path, config_manager: Optional[SettingsManager] = None
) -> None:
    """Load and validate a JSON config file into the settings manager."""
    manager = _manager(config_manager)
    try:
        contents = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ProjectIOError(f"failed to read config file {path}: {exc}") from exc
    try:
        data = json.loads(contents)
    except json.JSONDecodeError as exc:
        raise InvalidOptionError(f"invalid JSON in {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise InvalidOptionError(f"config file {path} must contain a JSON object")

    unknown = sorted(set(data) - set(SETTING_KEYS) - {"tools"})
    if unknown:
        raise InvalidOptionError(
            f"unknown keys in config file {path}: {', '.join(unknown)}"
        )

    for key in SETTING_KEYS:
        value = _validate_non_empty_string(data.get(key), key)
        if value is not None:
            _set_setting(manager, key, value)

    tools = data.get("tools")
    if tools is None:
        return
    if not isinstance(tools, dict):
        raise InvalidOptionError("config tools must be a JSON object")
    unknown = sorted(set(tools) - set(TOOL_KEYS))
    if unknown:
        raise InvalidOptionError(f"unknown tools in config file: {', '.join(unknown)}")
    for key in TOOL_KEYS:
        value = _validate_non_empty_string(tools.get(key), f"tools.{key}")
        if value is not None:
            _set_setting(manager, key, value)


def _apply_env_overrides(config_manager: Optional[SettingsManager] = None) -> None:
    manager = _manager(config_manager)
    for var_name, key in ENV_OVERRIDES.items():
        value = os.environ.get(var_name)
        if value and value.strip():
            _set_setting(manager, key, value.strip())


def _apply_option_overrides(
    options: Mapping[str, Any], config_manager: Optional[SettingsManager] = None
) -> None:
    manager = _manager(config_manager)
    for key in SETTING_KEYS:
        value = options.get(key)
        if value is not None:
            _set_setting(manager, key, value)


def _discover_config_path(start_dir: Path, names: Sequence[str]) -> Optional[Path]:
    current = Path(start_dir).resolve()
    while True:
        for name in names:
            candidate = current / name
            if candidate.is_file():
                return candidate
        if current.parent == current:
            break
        current = current.parent
    return None


def _load_configuration(
    config_path: Optional[str], config_manager: Optional[SettingsManager] = None
) -> None:
    """Apply the config file layer (if any) and then the environment layer."""
    manager = _manager(config_manager)
    config_env = os.environ.get(CONFIG_FILE_ENV_VAR)
    explicit = config_path or config_env
    if explicit:
        candidate = Path(explicit).expanduser()
        if not candidate.is_absolute():
            candidate = Path.cwd() / candidate
        if not candidate.is_file():
            raise NotFoundError(f"config file {candidate} not found")
    else:
        candidate = _discover_config_path(Path.cwd(), [DEFAULT_CONFIG_FILE_NAME])

    if candidate:
        manager.set_config_path(candidate)
        _apply_config_file(candidate, manager)
        manager.set_project_root(_resolve_path(candidate).parent)

    _apply_env_overrides(manager)


# Template generation. Nothing below touches the filesystem.
def _render_main_source(config: ProjectConfig) -> str:
    profile = LANGUAGE_PROFILES[config.file_extension]
    return (
        f"{profile.include_line}\n"
        "\n"
        f"{profile.main_signature} {{\n"
        f"    {profile.hello_statement}\n"
        "    return 0;\n"
        "}\n"
    )


def _render_gitignore(config: ProjectConfig) -> str:
    lines = [
        "# Editor and tool caches",
        ".*",
        f"!{GITIGNORE_FILE_NAME}",
        "",
        "# Build and executable directories",
        config.build_dir,
        config.exec_dir,
    ]
    return "\n".join(lines) + "\n"


def _render_cmakelists(config: ProjectConfig) -> str:
    profile = LANGUAGE_PROFILES[config.file_extension]
    lang = profile.cmake_language
    name = config.project_name
    flags = " ".join(WARNING_FLAGS + DEBUG_FLAGS)
    main_source = _cmake_escape(
        f"{config.source_dir}/{MAIN_SOURCE_STEM}.{config.file_extension}"
    )
    include_dir = _cmake_escape(config.include_dir)
    exec_dir = _cmake_escape(config.exec_dir)

    lines = []
    lines.append(f"cmake_minimum_required(VERSION {MIN_CMAKE_VERSION})")
    lines.append(f"project({name} {lang})")
    lines.append("")
    lines.append("# Language standard and compiler flags")
    lines.append(f"set(CMAKE_{lang}_STANDARD {profile.standard})")
    lines.append(f"set(CMAKE_{lang}_STANDARD_REQUIRED ON)")
    lines.append(f"set(CMAKE_{lang}_EXTENSIONS OFF)")
    lines.append(f'set(CMAKE_{lang}_FLAGS "${{CMAKE_{lang}_FLAGS}} {flags}")')
    lines.append("set(CMAKE_EXPORT_COMPILE_COMMANDS ON)")
    lines.append("")
    lines.append("# Project headers")
    lines.append(f'include_directories("${{CMAKE_CURRENT_SOURCE_DIR}}/{include_dir}")')
    lines.append("")
    lines.append("# Sources for the executable")
    lines.append(f'set(SOURCE_FILES "{main_source}")')
    lines.append("")
    lines.append("# Place the executable in the executable directory")
    lines.append(
        f'set(CMAKE_RUNTIME_OUTPUT_DIRECTORY "${{CMAKE_CURRENT_SOURCE_DIR}}/{exec_dir}")'
    )
    lines.append(f"add_executable({name} ${{SOURCE_FILES}})")
    return "\n".join(lines) + "\n"


def main_source_path(config: ProjectConfig) -> PurePosixPath:
    return PurePosixPath(config.source_dir) / (
        f"{MAIN_SOURCE_STEM}.{config.file_extension}"
    )


def generate_project_files(config: ProjectConfig) -> tuple[GeneratedFile, ...]:
    """Render the starter files for a project, in a fixed order."""
    return (
        GeneratedFile(main_source_path(config), _render_main_source(config)),
        GeneratedFile(PurePosixPath(GITIGNORE_FILE_NAME), _render_gitignore(config)),
        GeneratedFile(
            PurePosixPath(CMAKE_LISTS_FILE_NAME), _render_cmakelists(config)
        ),
    )


# Scaffolding.
def _write_text_file(path: Path, contents: str) -> None:
    """Write UTF-8 text to a file, creating parent dirs as needed."""
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(contents, encoding="utf-8", newline="\n")
    except OSError as exc:
        raise ProjectIOError(f"failed to write {path}: {exc}") from exc


def _ensure_target_available(target: Path) -> None:
    if not target.exists():
        return
    if not target.is_dir():
        raise AlreadyExistsError(f"'{target}' already exists and is not a directory")
    try:
        occupied = any(target.iterdir())
    except OSError as exc:
        raise ProjectIOError(f"failed to inspect {target}: {exc}") from exc
    if occupied:
        raise AlreadyExistsError(f"project directory '{target}' already exists and is not empty")


def scaffold_project(
    target: Path, config: ProjectConfig, files: Sequence[GeneratedFile]
) -> list[Path]:
    """Create the project tree under target and write the generated files.

    Fails before touching the filesystem when target is a file or a
    non-empty directory. Returns the written file paths.
    """
    _ensure_target_available(target)
    for directory in (
        config.source_dir,
        config.include_dir,
        config.build_dir,
        config.exec_dir,
    ):
        path = target / directory
        try:
            path.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise ProjectIOError(f"failed to create {path}: {exc}") from exc

    written = []
    for generated in files:
        path = target / generated.relative_path
        _write_text_file(path, generated.contents)
        info(f"created {path}")
        written.append(path)
    return written


# CMake backend adapter.
def cmake_configure(
    source_root: Path,
    build_dir: Path,
    generator: Optional[str] = None,
    config_manager: Optional[SettingsManager] = None,
) -> None:
    """Run the CMake configure step for source_root into build_dir."""
    info(f"configuring {build_dir}")
    args = ["-S", str(source_root), "-B", str(build_dir)]
    if generator:
        args.extend(["-G", generator])
    cmake_tool(config_manager).require(args)


def cmake_build(
    build_dir: Path, config_manager: Optional[SettingsManager] = None
) -> None:
    """Build the default target of a configured build directory."""
    info("building")
    cmake_tool(config_manager).require(["--build", str(build_dir)])


def clang_format(
    files: Sequence[Path],
    style: str = DEFAULT_FORMAT_STYLE,
    config_manager: Optional[SettingsManager] = None,
) -> None:
    clang_format_tool(config_manager).require(
        ["-i", f"-style={style}", *(str(path) for path in files)]
    )


def git_init(
    directory: Path, config_manager: Optional[SettingsManager] = None
) -> bool:
    """Create a repository with an initial commit. Failures are not fatal."""
    tool = git_tool(config_manager)
    for args in (["init"], ["add", "."], ["commit", "-m", INITIAL_COMMIT_MESSAGE]):
        try:
            returncode = tool.invoke(args, cwd=directory)
        except PycprojError as exc:
            error(f"version control initialization skipped: {exc}")
            return False
        if returncode != 0:
            error("version control initialization failed; project files were kept")
            return False
    info(f"initialized git repository in {directory}")
    return True


# Runner helpers.
def _candidate_executable_paths(exec_dir: Path, target: str) -> list[Path]:
    name = exe_name(target)
    candidates = [exec_dir / name]
    if is_windows():
        candidates.extend(
            exec_dir / config / name for config in WINDOWS_BUILD_CONFIG_DIRS
        )
    return candidates


def _find_executable_path(exec_dir: Path, target: str) -> Optional[Path]:
    for candidate in _candidate_executable_paths(exec_dir, target):
        if candidate.is_file():
            return candidate
    return None


def _missing_executable_message(exec_dir: Path, target: str) -> str:
    candidates = _candidate_executable_paths(exec_dir, target)
    search = ", ".join(str(path) for path in candidates)
    return f"missing executable '{target}' (searched: {search}); pass --exec-name if it differs"


def _collect_format_files(
    source_dir: Path, excluded: Sequence[Path] = ()
) -> list[Path]:
    """Every regular file under source_dir, sorted.

    Files inside an excluded directory nested in source_dir are left out.
    """
    skipped = [
        directory
        for directory in excluded
        if directory != source_dir and directory.is_relative_to(source_dir)
    ]
    return sorted(
        path
        for path in source_dir.rglob("*")
        if path.is_file()
        and not any(path.is_relative_to(directory) for directory in skipped)
    )


# Commands.
def _configure_new_project(
    target: Path, config: ProjectConfig, manager: SettingsManager
) -> bool:
    try:
        cmake_configure(
            target, target / config.build_dir, _default_generator(manager), manager
        )
    except PycprojError as exc:
        error(f"CMake configure step skipped: {exc}; run 'pycproj init' later")
        return False
    return True


def new_project(
    project_name: Any,
    options: Optional[Mapping[str, Any]] = None,
    configure: bool = False,
    init_vcs: bool = True,
    parent_dir: Optional[Path] = None,
    config_manager: Optional[SettingsManager] = None,
) -> int:
    """Scaffold a project directory and put it under git.

    With configure=True the CMake configure step also runs. Neither it nor
    git can fail the command once the files are written.
    """
    manager = _manager(config_manager)
    config = resolve_project_config(project_name, options, manager)
    target = (parent_dir or Path.cwd()) / config.project_name
    scaffold_project(target, config, generate_project_files(config))
    if configure:
        _configure_new_project(target, config, manager)
    if init_vcs:
        git_init(target, manager)
    info(f"created new project '{config.project_name}'")
    return 0


def init_project(
    settings: ResolvedSettings, config_manager: Optional[SettingsManager] = None
) -> int:
    """Configure the build directory, writing starter files that are missing."""
    manager = _manager(config_manager)
    root = settings["project_root"]
    if not root.is_dir():
        raise NotFoundError(f"project root {root} does not exist")

    if not (root / CMAKE_LISTS_FILE_NAME).exists():
        config = resolve_project_config(
            _sanitize_project_name(root.name), config_manager=manager
        )
        for generated in generate_project_files(config):
            if generated.relative_path.name == GITIGNORE_FILE_NAME:
                continue
            path = root / generated.relative_path
            if path.exists():
                continue
            _write_text_file(path, generated.contents)
            info(f"created {path}")

    cmake_configure(root, settings["build_dir"], settings["generator"], manager)
    info(f"initialized project in '{settings['build_dir']}'")
    return 0


def build_project(
    settings: ResolvedSettings, config_manager: Optional[SettingsManager] = None
) -> int:
    build_dir = settings["build_dir"]
    if not (build_dir / CMAKE_CACHE_FILE_NAME).is_file():
        raise NotFoundError(
            f"build directory {build_dir} is not configured; run 'pycproj init' first"
        )
    cmake_build(build_dir, config_manager)
    info("build successful")
    return 0


def run_project(
    settings: ResolvedSettings,
    args: Sequence[str],
    build: bool = True,
    config_manager: Optional[SettingsManager] = None,
) -> int:
    """Build (optionally) and run the executable, returning its exit status.

    Messages about the run itself go to stderr; stdout belongs to the program.
    """
    target = _validate_target_name(settings["exec_name"], "executable name")
    if build:
        build_project(settings, config_manager)
    exec_dir = settings["exec_dir"]
    exe_path = _find_executable_path(exec_dir, target)
    if not exe_path:
        raise NotFoundError(_missing_executable_message(exec_dir, target))
    info(f"running {exe_path}", file=sys.stderr)
    return run_cmd(
        [str(exe_path), *args],
        cwd=exec_dir,
        report_failure=False,
        echo_file=sys.stderr,
    )


def format_project(
    settings: ResolvedSettings, config_manager: Optional[SettingsManager] = None
) -> int:
    source_dir = settings["source_dir"]
    if not source_dir.is_dir():
        raise NotFoundError(f"source directory {source_dir} does not exist")
    files = _collect_format_files(
        source_dir, (settings["build_dir"], settings["exec_dir"])
    )
    if not files:
        info(f"nothing to format in {source_dir}")
        return 0
    clang_format(files, settings["format_style"], config_manager)
    info(f"formatted {len(files)} file(s) in {source_dir}")
    return 0


# Command line.
COMMAND_ALIASES = {
    "n": "new",
    "i": "init",
    "b": "build",
    "r": "run",
    "f": "format",
    "h": "help",
}

GLOBAL_OPTIONS = (OptionSpec("config", ("--config",)),)

COMMAND_OPTIONS: dict[str, tuple[OptionSpec, ...]] = {
    "new": (
        OptionSpec("name", ("-n", "--name")),
        OptionSpec("file_extension", ("-f", "--file-ext")),
        OptionSpec("source_dir", ("-s", "--src-dir")),
        OptionSpec("include_dir", ("-i", "--include-dir")),
        OptionSpec("build_dir", ("-b", "--build-dir")),
        OptionSpec("exec_dir", ("-e", "--exec-dir")),
        OptionSpec("configure", ("--configure",), takes_value=False),
        OptionSpec("no_git", ("--no-git",), takes_value=False),
    ),
    "init": (
        OptionSpec("root_dir", ("-r", "--root-dir")),
        OptionSpec("build_dir", ("-b", "--build-dir")),
        OptionSpec("generator", ("-G", "--generator")),
    ),
    "build": (OptionSpec("build_dir", ("-b", "--build-dir")),),
    "run": (
        OptionSpec("build_dir", ("-b", "--build-dir")),
        OptionSpec("exec_dir", ("-r", "--runtime-dir", "--exec-dir")),
        OptionSpec("exec_name", ("-e", "--exec-name")),
        OptionSpec("no_build", ("--no-build",), takes_value=False),
    ),
    "format": (
        OptionSpec("source_dir", ("-s", "--src-dir")),
        OptionSpec("format_style", ("--style",)),
    ),
}


def parse_command_args(command: str, args: Sequence[str]) -> ParsedArgs:
    """Split a command's arguments into options, positionals and pass-through.

    Everything after the first '--' is passed through untouched.
    """
    specs = COMMAND_OPTIONS[command] + GLOBAL_OPTIONS
    by_flag = {flag: spec for spec in specs for flag in spec.flags}
    options: dict[str, Any] = {}
    positionals: list[str] = []
    passthrough: list[str] = []
    index = 0
    while index < len(args):
        arg = args[index]
        if arg == "--":
            passthrough = list(args[index + 1 :])
            break
        flag, has_value, inline_value = arg, False, ""
        if arg.startswith("--") and "=" in arg:
            flag, _, inline_value = arg.partition("=")
            has_value = True
        spec = by_flag.get(flag)
        if spec is None:
            if arg.startswith("-") and arg != "-":
                raise InvalidOptionError(f"unknown option '{flag}' for '{command}'")
            positionals.append(arg)
            index += 1
            continue
        if not spec.takes_value:
            if has_value:
                raise InvalidOptionError(f"option {flag} does not take a value")
            options[spec.key] = True
            index += 1
            continue
        if has_value:
            value = inline_value
            index += 1
        else:
            if index + 1 >= len(args) or args[index + 1] == "--":
                raise InvalidOptionError(f"usage: {flag} <value>")
            value = args[index + 1]
            index += 2
        if not value:
            raise InvalidOptionError(f"usage: {flag} <value>")
        options[spec.key] = value
    return options, positionals, passthrough


def _new_project_name(options: Mapping[str, Any], positionals: Sequence[str]) -> str:
    if len(positionals) > 1:
        raise InvalidOptionError("usage: pycproj new <name> [options]")
    if positionals and options.get("name"):
        raise InvalidOptionError("pass the project name either positionally or with --name")
    name = options.get("name") or (positionals[0] if positionals else None)
    if not name:
        raise InvalidOptionError("usage: pycproj new <name> [options]")
    return name


def usage() -> None:
    print("usage: pycproj <command> [options] [-- args...]")
    print("")
    print("commands:")
    print("  new (n) <name>   create a new C/C++ project directory")
    print("  init (i)         configure the CMake build directory")
    print("  build (b)        build a configured project")
    print("  run (r)          build and run the project executable")
    print("  format (f)       run clang-format over the source directory")
    print("  help (h)         show this help text")
    print("")
    print("new options:")
    print("  -f, --file-ext <cpp|c>     language of the project (default: cpp)")
    print("  -s, --src-dir <dir>        source directory (default: src)")
    print("  -i, --include-dir <dir>    include directory (default: include)")
    print("  -b, --build-dir <dir>      build directory (default: build)")
    print("  -e, --exec-dir <dir>       executable directory (default: bin)")
    print("  --configure                also run the CMake configure step")
    print("  --no-git                   skip git initialization")
    print("")
    print("other options:")
    print("  init:   -r/--root-dir <dir>, -b/--build-dir <dir>, -G/--generator <name>")
    print("  build:  -b/--build-dir <dir>")
    print("  run:    -b/--build-dir <dir>, -r/--runtime-dir <dir>,")
    print("          -e/--exec-name <name>, --no-build")
    print("  format: -s/--src-dir <dir>, --style <style>")
    print(f"  --config <path>  load settings from a JSON file (default: {DEFAULT_CONFIG_FILE_NAME})")
    print("")
    print("examples:")
    print("  pycproj new hello")
    print("  pycproj new hello_c --file-ext c --no-git")
    print("  pycproj init --build-dir out")
    print("  pycproj build")
    print("  pycproj run -- --verbose input.txt")
    print("  pycproj format")


def _version() -> str:
    try:
        return importlib.metadata.version("pycproj")
    except importlib.metadata.PackageNotFoundError:
        return "0.1.0"


def _dispatch(command: str, args: Sequence[str]) -> int:
    options, positionals, passthrough = parse_command_args(command, args)
    manager = _manager()
    _load_configuration(options.get("config"), manager)
    _apply_option_overrides(options, manager)

    if command == "new":
        if passthrough:
            raise InvalidOptionError("'new' does not take arguments after '--'")
        return new_project(
            _new_project_name(options, positionals),
            configure=bool(options.get("configure")),
            init_vcs=not options.get("no_git"),
            config_manager=manager,
        )

    if positionals:
        hint = "; pass program arguments after '--'" if command == "run" else ""
        raise InvalidOptionError(f"unexpected argument '{positionals[0]}'{hint}")
    if passthrough and command != "run":
        raise InvalidOptionError(f"'{command}' does not take arguments after '--'")

    settings = resolve_settings(options.get("root_dir"), manager)
    if command == "init":
        return init_project(settings, manager)
    if command == "build":
        return build_project(settings, manager)
    if command == "run":
        return run_project(
            settings, passthrough, build=not options.get("no_build"), config_manager=manager
        )
    return format_project(settings, manager)


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = list(sys.argv[1:] if argv is None else argv)
    if not args:
        usage()
        return 2

    command = args[0]
    if command in {"-v", "--version"}:
        print(f"pycproj {_version()}")
        return 0
    command = COMMAND_ALIASES.get(command, command)
    if command in {"help", "-h", "--help"}:
        usage()
        return 0
    if command not in COMMAND_OPTIONS:
        error(f"unknown command '{command}'")
        usage()
        return 2

    try:
        return _dispatch(command, args[1:])
    except PycprojError as exc:
        error(str(exc))
        return exc.exit_code


if __name__ == "__main__":
    raise SystemExit(main())
