"""
Test Data Factory — Self-contained fake project for incremake tests

Provides a real on-disk project layout plus in-memory collaborators, so
the orchestrator runs end-to-end without a real compiler:
- FakeProject: modules with main/test source roots and output dirs
- FakeCompiler / FakeParser: a toy backend that "compiles" sources
  written in a tiny line format and reports like a real compiler
- FakeDependencyCache: artifact metadata plus declared dependencies
- FakeLocator / FakeChunker: name lookup and cycle-aware module order

Toy source format (one declaration per line):
    package pkg.sub;
    class Foo           -> artifact pkg/sub/Foo.class
    class Foo$Inner     -> artifact pkg/sub/Foo$Inner.class
    broken Foo$1        -> artifact with unparseable metadata
    error Missing type  -> "path:N: error: Missing type"

Artifact content is "qualified.Name|SourceName.java".

Usage:
    @pytest.fixture
    def app_env(tmp_path):
        factory = IncremakeTestFactory(tmp_path)
        factory.project.add_module("app")
        factory.project.add_source("app", "pkg/Foo.java")
        return factory

    def test_something(app_env):
        driver = app_env.create_driver(app_env.project.units())
        items = driver.compile()
"""

import itertools
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple

from incremake.config import Config, CompilerConfig, PipelineConfig, DEFAULT_MAIN_MARKER
from incremake.core.context import CompileContext
from incremake.core.diagnostics import ArtifactWritten, Diagnostic, Severity, SourceProcessed
from incremake.core.errors import BadArtifactFormatError, CacheCorruptedError
from incremake.core.interfaces import (
    BackendCompiler, DependencyCache, ModuleChunker, OutputParser,
    ProgressIndicator, ProjectIndex, SourceLocator, SourceTransformer,
)
from incremake.core.units import Module, SourceUnit, TargetKind
from incremake.orchestrator import DependencyFixpointDriver
from incremake.state import BuildStateStore


# =============================================================================
# Toy source format
# =============================================================================

@dataclass
class ParsedSource:
    package: str
    classes: List[str]
    broken: List[str]
    errors: List[Tuple[int, str]]


def render_source(
    package: str,
    classes: Sequence[str],
    broken: Sequence[str] = (),
    errors: Sequence[str] = (),
) -> str:
    lines = []
    if package:
        lines.append(f"package {package};")
    lines.extend(f"class {name}" for name in classes)
    lines.extend(f"broken {name}" for name in broken)
    lines.extend(f"error {message}" for message in errors)
    return "\n".join(lines) + "\n"


def parse_source(text: str) -> ParsedSource:
    parsed = ParsedSource(package="", classes=[], broken=[], errors=[])
    for line_no, line in enumerate(text.splitlines(), start=1):
        keyword, _, rest = line.strip().partition(" ")
        if keyword == "package":
            parsed.package = rest.rstrip(";").strip()
        elif keyword == "class":
            parsed.classes.append(rest.strip())
        elif keyword == "broken":
            parsed.broken.append(rest.strip())
        elif keyword == "error":
            parsed.errors.append((line_no, rest.strip()))
    return parsed


def artifact_content(qualified_name: str, source_name: str) -> str:
    return f"{qualified_name}|{source_name}"


# =============================================================================
# Project
# =============================================================================

@dataclass
class ModuleLayout:
    module: Module
    main_root: Path
    test_root: Path
    output: Optional[str]
    test_output: Optional[str]
    prefix: str = ""


@dataclass
class SourceInfo:
    module: Module
    package: str
    is_test: bool


class FakeProject(ProjectIndex):
    """
    Project index over a real directory tree.

    Layout per module:
        <base>/src/<module>/main, <base>/src/<module>/test
        <base>/out/<module>/main, <base>/out/<module>/test
    """

    name = "demo"

    def __init__(self, base: Path):
        self.base = Path(base)
        self.layouts: Dict[str, ModuleLayout] = {}
        self._sources: Dict[SourceUnit, SourceInfo] = {}
        self.excluded: Set[SourceUnit] = set()
        self.invalidated: Set[SourceUnit] = set()
        self.refreshed: List[str] = []

    # Building

    def add_module(
        self,
        name: str,
        separate_tests: bool = False,
        prefix: str = "",
        has_output: bool = True,
    ) -> Module:
        main_root = self.base / "src" / name / "main"
        test_root = self.base / "src" / name / "test"
        main_root.mkdir(parents=True, exist_ok=True)
        test_root.mkdir(parents=True, exist_ok=True)

        output = str(self.base / "out" / name / "main") if has_output else None
        test_output = str(self.base / "out" / name / "test") if separate_tests else output

        layout = ModuleLayout(Module(name), main_root, test_root, output, test_output, prefix)
        self.layouts[name] = layout
        return layout.module

    def add_source(
        self,
        module: str,
        relative: str,
        classes: Optional[Sequence[str]] = None,
        test: bool = False,
        broken: Sequence[str] = (),
        errors: Sequence[str] = (),
    ) -> SourceUnit:
        """Write a toy source file; classes default to the file's stem."""
        layout = self.layouts[module]
        root = layout.test_root if test else layout.main_root
        path = root / relative

        parts = [p for p in layout.prefix.split(".") if p] + list(Path(relative).parent.parts)
        package = ".".join(parts)
        if classes is None:
            classes = [path.stem]

        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(render_source(package, classes, broken, errors))

        unit = SourceUnit(str(path))
        self._sources[unit] = SourceInfo(layout.module, package, test)
        return unit

    def units(self) -> List[SourceUnit]:
        return sorted(self._sources, key=lambda u: u.path)

    def info(self, unit: SourceUnit) -> SourceInfo:
        return self._sources[unit]

    def qualified_name(self, unit: SourceUnit) -> str:
        info = self._sources[unit]
        stem = Path(unit.path).stem
        return f"{info.package}.{stem}" if info.package else stem

    def output_path(self, module: str, relative: str, test: bool = False) -> Path:
        layout = self.layouts[module]
        return Path(layout.test_output if test else layout.output) / relative

    # ProjectIndex

    def module_for(self, unit: SourceUnit) -> Optional[Module]:
        if unit in self.invalidated:
            return None
        info = self._sources.get(unit)
        return info.module if info else None

    def is_test_source(self, unit: SourceUnit) -> bool:
        info = self._sources.get(unit)
        return bool(info and info.is_test)

    def output_dir(self, module: Module) -> Optional[str]:
        return self.layouts[module.name].output

    def test_output_dir(self, module: Module) -> Optional[str]:
        return self.layouts[module.name].test_output

    def source_roots(self, module: Module, kind: TargetKind) -> List[str]:
        layout = self.layouts[module.name]
        if kind == TargetKind.MAIN:
            return [str(layout.main_root)]
        if kind == TargetKind.TEST:
            return [str(layout.test_root)]
        return [str(layout.main_root), str(layout.test_root)]

    def package_prefix(self, root: str) -> str:
        for layout in self.layouts.values():
            if root in (str(layout.main_root), str(layout.test_root)):
                return layout.prefix
        return ""

    def iter_source_units(self, root: str) -> Iterable[SourceUnit]:
        for path in sorted(Path(root).rglob("*.java")):
            yield SourceUnit(str(path))

    def is_excluded(self, unit: SourceUnit) -> bool:
        return unit in self.excluded

    def refresh_files(self, paths: Sequence[str]) -> None:
        self.refreshed.extend(paths)


# =============================================================================
# Backend
# =============================================================================

class FakeParser(OutputParser):
    """Parses the toy compiler's output lines."""

    ERROR_PATTERN = re.compile(r"^(?P<path>.+?):(?P<line>\d+): error: (?P<message>.*)$")

    def parse_line(self, line: str):
        if line.startswith("[wrote ") and line.endswith("]"):
            return [ArtifactWritten(line[len("[wrote "):-1])]
        if line.startswith("[parsing completed ") and line.endswith("]"):
            return [SourceProcessed(line[len("[parsing completed "):-1])]
        match = self.ERROR_PATTERN.match(line)
        if match:
            return [Diagnostic(
                Severity.ERROR,
                match.group("message"),
                SourceUnit(match.group("path")),
                int(match.group("line"))
            )]
        if line.strip():
            return [Diagnostic(Severity.INFORMATION, line)]
        return []


class FakeCompiler(BackendCompiler):
    """
    Toy backend compiler.

    Embedded mode compiles via compile_in_process(). For external mode,
    pass a launcher command (e.g. [sys.executable, script]).
    """

    def __init__(self, launcher: Optional[Sequence[str]] = None, main_marker: str = DEFAULT_MAIN_MARKER):
        self.launcher = list(launcher) if launcher else ["incremake-fake-launcher"]
        self.main_marker = main_marker
        self.commands: List[List[str]] = []
        self.invocations: List[List[str]] = []
        self.terminated = 0
        self.exit_code: Optional[int] = None
        self.fail_with: Optional[BaseException] = None

    def build_command(self, chunk, output_dir: str) -> List[str]:
        files = [unit.path for unit in chunk.files_to_compile()]
        command = [*self.launcher, self.main_marker, "-d", output_dir, *files]
        self.commands.append(command)
        return command

    def create_output_parser(self) -> OutputParser:
        return FakeParser()

    def compile_in_process(self, arguments: List[str], writer) -> int:
        self.invocations.append(list(arguments))
        if self.fail_with is not None:
            raise self.fail_with

        d_index = arguments.index("-d")
        output_dir = Path(arguments[d_index + 1])
        failed = False
        for file in arguments[d_index + 2:]:
            parsed = parse_source(Path(file).read_text())
            for line_no, message in parsed.errors:
                writer.println(f"{file}:{line_no}: error: {message}")
                failed = True

            source_name = Path(file).name
            for name, content in self._artifacts(parsed, source_name):
                artifact = output_dir.joinpath(*parsed.package.split("."), f"{name}.class") \
                    if parsed.package else output_dir / f"{name}.class"
                artifact.parent.mkdir(parents=True, exist_ok=True)
                artifact.write_text(content)
                writer.println(f"[wrote {artifact}]")
            writer.println(f"[parsing completed {file}]")

        if self.exit_code is not None:
            return self.exit_code
        return 1 if failed else 0

    def process_terminated(self) -> None:
        self.terminated += 1

    def _artifacts(self, parsed: ParsedSource, source_name: str):
        for name in parsed.classes:
            qualified = f"{parsed.package}.{name}" if parsed.package else name
            yield name, artifact_content(qualified, source_name)
        for name in parsed.broken:
            yield name, "garbage"


# =============================================================================
# Dependency cache, locator, chunker
# =============================================================================

class FakeDependencyCache(DependencyCache):
    """In-memory dependency cache with switchable corruption."""

    def __init__(self):
        self._ids: Dict[str, int] = {}
        self._names: Dict[int, Tuple[str, str]] = {}
        self._dependents: List[Tuple[int, SourceUnit]] = []
        self._counter = itertools.count(1)
        self.reparsed: List[str] = []
        self.find_calls: List[Set[SourceUnit]] = []
        self.update_count = 0
        self.corrupt_on_reparse = False
        self.corrupt_on_find = False

    def register(self, qualified_name: str, source_name: str) -> int:
        identity = self._ids.get(qualified_name)
        if identity is None:
            identity = next(self._counter)
            self._ids[qualified_name] = identity
        self._names[identity] = (qualified_name, source_name)
        return identity

    def declare_dependency(self, qualified_name: str, source_name: str, on: SourceUnit) -> None:
        """qualified_name (declared in source_name) depends on unit `on`."""
        self._dependents.append((self.register(qualified_name, source_name), on))

    def reparse_artifact(self, path: str) -> int:
        if self.corrupt_on_reparse:
            raise CacheCorruptedError("Dependency cache is corrupted")
        content = Path(path).read_text()
        qualified_name, sep, source_name = content.partition("|")
        if not sep or not source_name:
            raise BadArtifactFormatError("truncated metadata", path)
        self.reparsed.append(path)
        return self.register(qualified_name, source_name)

    def source_file_name(self, identity: int) -> str:
        return self._names[identity][1]

    def resolve(self, identity: int) -> str:
        return self._names[identity][0]

    def find_dependents(self, compiled: Set[SourceUnit]) -> Iterable[int]:
        self.find_calls.append(set(compiled))
        if self.corrupt_on_find:
            raise CacheCorruptedError("Dependency cache is corrupted")
        found: List[int] = []
        for identity, on in self._dependents:
            if on in compiled and identity not in found:
                found.append(identity)
        return found

    def update(self) -> None:
        self.update_count += 1


class FakeLocator(SourceLocator):
    """Finds sources registered in a FakeProject."""

    def __init__(self, project: FakeProject):
        self._project = project

    def find_source_file(self, qualified_name: str, source_name: Optional[str]) -> Optional[SourceUnit]:
        package, _, simple_name = qualified_name.rpartition(".")
        if source_name is None:
            source_name = simple_name.split("$", 1)[0] + ".java"
        for unit in self._project.units():
            if self._project.info(unit).package == package and unit.name == source_name:
                return unit
        return None


class FakeChunker(ModuleChunker):
    """Strongly connected components, dependencies first (Tarjan)."""

    def __init__(self, dependencies: Optional[Dict[str, Iterable[str]]] = None):
        self.dependencies: Dict[str, Set[str]] = {
            name: set(deps) for name, deps in (dependencies or {}).items()
        }
        self.calls: List[List[str]] = []

    def depends(self, module: str, *on: str) -> None:
        self.dependencies.setdefault(module, set()).update(on)

    def sorted_chunks(self, modules: Sequence[Module]) -> List[Sequence[Module]]:
        self.calls.append([m.name for m in modules])
        by_name = {m.name: m for m in modules}
        index: Dict[str, int] = {}
        low: Dict[str, int] = {}
        stack: List[str] = []
        on_stack: Set[str] = set()
        chunks: List[Sequence[Module]] = []
        counter = itertools.count()

        def visit(name: str) -> None:
            index[name] = low[name] = next(counter)
            stack.append(name)
            on_stack.add(name)
            for dep in sorted(self.dependencies.get(name, ())):
                if dep not in by_name:
                    continue
                if dep not in index:
                    visit(dep)
                    low[name] = min(low[name], low[dep])
                elif dep in on_stack:
                    low[name] = min(low[name], index[dep])
            if low[name] == index[name]:
                group = []
                while True:
                    member = stack.pop()
                    on_stack.discard(member)
                    group.append(by_name[member])
                    if member == name:
                        break
                chunks.append(sorted(group, key=lambda m: m.name))

        for name in sorted(by_name):
            if name not in index:
                visit(name)
        return chunks


# =============================================================================
# Progress and transformers
# =============================================================================

class RecordingProgress(ProgressIndicator):
    """Progress indicator remembering every text it was given."""

    def __init__(self):
        super().__init__()
        self.texts: List[str] = []
        self.texts2: List[str] = []

    def set_text(self, text: str) -> None:
        super().set_text(text)
        self.texts.append(text)

    def set_text2(self, text: str) -> None:
        super().set_text2(text)
        self.texts2.append(text)


class AppendClassTransformer(SourceTransformer):
    """Adds a generated declaration to copies of matching sources."""

    def __init__(self, source_name: str, extra_class: str):
        self.source_name = source_name
        self.extra_class = extra_class
        self.transformed: List[Tuple[SourceUnit, SourceUnit]] = []

    def is_transformable(self, unit: SourceUnit) -> bool:
        return unit.name == self.source_name

    def transform(self, context, copy: SourceUnit, original: SourceUnit) -> bool:
        with open(copy.path, "a") as f:
            f.write(f"class {self.extra_class}\n")
        self.transformed.append((copy, original))
        return True


# =============================================================================
# Factory
# =============================================================================

class IncremakeTestFactory:
    """
    Factory for isolated orchestrator environments.

    All files live under pytest's tmp_path. The default config compiles
    in-process with a small queue so backpressure is exercised.
    """

    def __init__(self, tmp_path: Path):
        """
        Args:
            tmp_path: pytest tmp_path fixture for isolated temp directory
        """
        self.tmp_path = tmp_path
        self.project = FakeProject(tmp_path / "project")
        self.cache = FakeDependencyCache()
        self.locator = FakeLocator(self.project)
        self.compiler = FakeCompiler()
        self.chunker = FakeChunker()
        self.progress = RecordingProgress()
        self.state = BuildStateStore(tmp_path / "state")
        self.config = Config(
            pipeline=PipelineConfig(queue_size=4, idle_backoff=0.001),
            compiler=CompilerConfig(embedded=True)
        )
        self.context: Optional[CompileContext] = None

    def create_context(self, scope=None) -> CompileContext:
        self.context = CompileContext(self.project, self.cache, self.progress, scope, self.state)
        return self.context

    def create_driver(
        self,
        files: Iterable[SourceUnit],
        scope=None,
        transformers: Sequence[SourceTransformer] = (),
        config: Optional[Config] = None,
    ) -> DependencyFixpointDriver:
        context = self.create_context(scope)
        return DependencyFixpointDriver(
            context, self.compiler, self.chunker, self.locator,
            files, config or self.config, transformers
        )

    def add_dependency(self, dependent: SourceUnit, on: SourceUnit) -> None:
        """Declare that `dependent`'s main declaration uses `on`."""
        self.cache.declare_dependency(self.project.qualified_name(dependent), dependent.name, on)


def create_incremake_factory(tmp_path: Path) -> IncremakeTestFactory:
    """
    Create an IncremakeTestFactory for use in test fixtures.

    Example:
        @pytest.fixture
        def incremake_env(tmp_path):
            return create_incremake_factory(tmp_path)
    """
    return IncremakeTestFactory(tmp_path)
