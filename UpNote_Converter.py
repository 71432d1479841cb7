from __future__ import annotations

import argparse
import json
import logging
import re
import shutil
import sys
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Optional, List, Dict, Tuple, Any, Iterable, Set
from urllib.parse import unquote

import frontmatter  # pip install python-frontmatter
from tqdm import tqdm


# Enums for configuration options
class TreeMode(Enum):
    """Where the notebook hierarchy of an input folder comes from."""
    AUTO = "auto"
    MIRROR = "mirror"
    SYNTHESIZE = "synthesize"


class FailureKind(Enum):
    """Category of a failed operation."""
    PARSE = "parse"
    RESOLUTION = "resolution"
    FILESYSTEM = "filesystem"
    STRUCTURAL = "structural"


class MatchTier(Enum):
    """Which matching strategy located a notebook for a category segment."""
    EXACT = "exact"
    NORMALIZED = "normalized"
    PARTIAL = "partial"


CATEGORY_SEPARATOR = " / "
ASSETS_DIRNAME = "Files"
DEFAULT_NOTEBOOKS_DIRNAME = "Notebooks"
TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"
# Characters that cannot appear in a folder name on common filesystems.
INVALID_PATH_CHARS = '/:?*<>|"'

HTML_ENTITY_REPLACEMENTS = {
    "&lt;": "<",
    "&gt;": ">",
    "&amp;": "&",
    "&nbsp;": " ",
}

HTML_TAGS_TO_REMOVE = (
    "<em>", "</em>",
    "<strong>", "</strong>",
    "<u>", "</u>",
    "<s>", "</s>",
    "<code>", "</code>",
    "<mark>", "</mark>",
    "<br>", "<br/>", "<br />",
)

LATEX_COMMANDS_TO_REMOVE = (
    r"\\newpage",
)


# Data models
@dataclass(frozen=True)
class Outcome:
    """Result of a fallible operation: a value, or an error message with its kind.

    A failed outcome may still carry a partial value (e.g. the report of a
    folder whose processing was aborted half-way).
    """
    value: Any = None
    error: Optional[str] = None
    kind: Optional[FailureKind] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: Any = None) -> "Outcome":
        return cls(value=value)

    @classmethod
    def failure(cls, error: str, kind: FailureKind, value: Any = None) -> "Outcome":
        return cls(value=value, error=error, kind=kind)


@dataclass(frozen=True)
class Note:
    """A parsed UpNote markdown export file."""
    path: Path
    name: str
    date: datetime
    created: datetime
    categories: Tuple[str, ...]  # most specific last
    content: str


@dataclass
class TreeNode:
    """A notebook in the hierarchy tree.

    ``path`` is a filesystem path for mirrored notebook folders and the joined
    category prefix (e.g. "Matura / Physik") for synthesized trees.
    """
    label: str
    path: str
    children: List["TreeNode"] = field(default_factory=list)


@dataclass(frozen=True)
class Resolution:
    """Nodes matched while walking a category path down from the root."""
    node: TreeNode
    trail: Tuple[TreeNode, ...]
    tiers: Tuple[MatchTier, ...]

    @property
    def labels(self) -> List[str]:
        return [node.label for node in self.trail]


@dataclass(frozen=True)
class PlacementResult:
    """Where a note goes, or why it cannot be placed."""
    note: Note
    resolution: Optional[Resolution] = None
    error: Optional[str] = None

    @property
    def placed(self) -> bool:
        return self.resolution is not None

    def target_segments(self) -> List[str]:
        if self.resolution is None:
            return []
        return [sanitize_segment(label) for label in self.resolution.labels]


@dataclass
class CopySummary:
    """Totals of one selective asset copy run."""
    assets_copied: int = 0
    directories: int = 0
    missing: List[str] = field(default_factory=list)
    unreadable_notes: List[str] = field(default_factory=list)


@dataclass
class ConversionConfig:
    """Configuration for a conversion run."""
    input_dir: Path
    output_dir: Path
    assets_dirname: str = ASSETS_DIRNAME
    notebooks_dirname: Optional[str] = None
    tree_mode: TreeMode = TreeMode.AUTO
    keep_frontmatter: bool = True
    dry_run: bool = False
    skip_assets: bool = False
    latex_commands: Tuple[str, ...] = LATEX_COMMANDS_TO_REMOVE
    report_path: Optional[Path] = None
    report_format: str = "json"
    no_progress: bool = False


@dataclass
class FolderReport:
    """Per input folder counters and warnings."""
    folder: str
    tree_mode: str = ""
    notes_found: int = 0
    notes_written: int = 0
    notes_skipped: int = 0
    assets_copied: int = 0
    assets_missing: int = 0
    warnings: List[str] = field(default_factory=list)
    error: Optional[str] = None

    def skip(self, message: str) -> None:
        logger.warning(message)
        self.warnings.append(message)
        self.notes_skipped += 1


# Logging configuration
logger = logging.getLogger(__name__)


def setup_logging(verbose: int = 0, quiet: bool = False, log_file: Optional[Path] = None) -> None:
    """Configure logging based on verbosity settings.

    Args:
        verbose: Verbosity level (0=WARNING, 1=INFO, 2+=DEBUG)
        quiet: If True, only show ERROR messages
        log_file: Optional path to log file (always logs at DEBUG level)

    Examples:
        >>> setup_logging(verbose=1)  # INFO level
        >>> setup_logging(quiet=True)  # ERROR level only
    """
    if quiet:
        level = logging.ERROR
    elif verbose >= 2:
        level = logging.DEBUG
    elif verbose == 1:
        level = logging.INFO
    else:
        level = logging.WARNING

    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S',
        force=True  # Override any existing config
    )

    if log_file:
        fh = logging.FileHandler(log_file)
        fh.setLevel(logging.DEBUG)  # Always log DEBUG to file
        formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )
        fh.setFormatter(formatter)
        logging.getLogger().addHandler(fh)
        logger.info(f"Logging to file: {log_file}")


# Metadata header fields
DATE_RE = re.compile(r"^date:[ \t]*(.*?)[ \t]*$", re.MULTILINE)
CREATED_RE = re.compile(r"^created:[ \t]*(.*?)[ \t]*$", re.MULTILINE)
CATEGORIES_BLOCK_RE = re.compile(
    r"^categories:[ \t]*\r?\n((?:[ \t]*- .+(?:\r?\n|$))+)", re.MULTILINE
)
CATEGORIES_INLINE_RE = re.compile(r"^categories:[ \t]*(\S.*?)[ \t]*$", re.MULTILINE)
CATEGORY_LINE_RE = re.compile(r"^[ \t]*- (.+)$", re.MULTILINE)

# Content normalization
HTML_TAG_RE = re.compile(r"<[^>]+>", re.IGNORECASE)
MATH_SPAN_RE = re.compile(r"\$([^$]*)\$")
STRAY_BACKSLASH_RE = re.compile(r"\\(?![a-zA-Z%=])")

# Asset references. Where a pattern has two groups the second one holds the path.
ASSET_REFERENCE_PATTERNS = tuple(
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        r"!\[[^\]]*\]\(([^)]+)\)",             # ![alt](path)
        r"!\[[^\]]*\]\[\s*([^\]]+?)\s*\]",     # ![alt][ref]
        r"\[([^\]]+)\]:\s*(\S+)",              # [ref]: path
        r"""<img[^>]+src=["']([^"']+)["']""",  # <img src="path">
        r"""<a[^>]+href=["']([^"']+)["']""",   # <a href="path">
    )
)
LINK_TITLE_RE = re.compile(r"""\s+(?:"[^"]*"|'[^']*')$""")
PATH_SEPARATOR_RE = re.compile(r"[/\\]")

# Notebook name matching
MATCH_STRIPPED_CHARS = ":,()"
# En dash, minus sign, and the separators that get folded into folder names.
MATCH_DASH_VARIANTS = "–−/_"
WHITESPACE_RUN_RE = re.compile(r"\s+")

_HEADER_HANDLER = frontmatter.YAMLHandler()


def split_header(text: str) -> Tuple[str, str]:
    """Split a note into its metadata header (fences included) and body.

    Returns ("", text) when the note has no complete ``---`` fenced header.
    """
    if not _HEADER_HANDLER.detect(text):
        return "", text
    try:
        _fm, body = _HEADER_HANDLER.split(text)
    except ValueError:
        # Opening fence without a closing one.
        return "", text
    return text[: len(text) - len(body)], body


def _extract_timestamp(pattern: re.Pattern, field_name: str, header: str,
                       errors: List[str]) -> Optional[datetime]:
    match = pattern.search(header)
    if not match:
        errors.append(f"{field_name.capitalize()} not found in markdown file")
        return None
    raw = match.group(1).strip("'\"")
    try:
        return datetime.strptime(raw, TIMESTAMP_FORMAT)
    except ValueError:
        errors.append(f"Invalid {field_name} format: {raw}")
        return None


def _extract_categories(header: str, errors: List[str]) -> Tuple[str, ...]:
    block = CATEGORIES_BLOCK_RE.search(header)
    if block:
        lines = [m.group(1) for m in CATEGORY_LINE_RE.finditer(block.group(1))]
    else:
        inline = CATEGORIES_INLINE_RE.search(header)
        if not inline:
            errors.append("Categories not found in markdown file")
            return ()
        lines = [] if inline.group(1) == "[]" else [inline.group(1)]

    categories = tuple(c for c in (line.strip().strip("'\"").strip() for line in lines) if c)
    if not categories:
        errors.append("No categories found")
    return categories


def parse_note_content(path: Path, text: str) -> Outcome:
    """Parse the metadata header of an UpNote export note.

    The header is located with python-frontmatter but its fields are read
    with regular expressions: UpNote category names routinely contain
    colons, which a YAML loader would turn into mappings.

    Args:
        path: Original file path, kept for reference
        text: Full file content

    Returns:
        Outcome holding a Note, or a parse failure listing every missing or
        malformed field.
    """
    header, _body = split_header(text)
    scope = header or text
    errors: List[str] = []

    date = _extract_timestamp(DATE_RE, "date", scope, errors)
    created = _extract_timestamp(CREATED_RE, "created date", scope, errors)
    categories = _extract_categories(scope, errors)

    if errors:
        return Outcome.failure("; ".join(errors), FailureKind.PARSE)
    return Outcome.success(Note(
        path=path,
        name=path.name,
        date=date,
        created=created,
        categories=categories,
        content=text,
    ))


def parse_note_file(path: Path) -> Outcome:
    """Read and parse one note file."""
    try:
        text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        return Outcome.failure(f"Failed to read file: {path}. Error: {e}", FailureKind.FILESYSTEM)
    return parse_note_content(path, text)


def _normalize_once(text: str, latex_commands: Iterable[str]) -> str:
    for entity, literal in HTML_ENTITY_REPLACEMENTS.items():
        text = text.replace(entity, literal)

    for tag in HTML_TAGS_TO_REMOVE:
        text = text.replace(tag, "")

    text = HTML_TAG_RE.sub("", text)

    for command in latex_commands:
        text = re.sub(command, "", text, flags=re.IGNORECASE)

    text = text.replace("\\\\", "\\")
    text = text.replace("$$", "$")
    text = MATH_SPAN_RE.sub(lambda m: f"${m.group(1).strip()}$", text)

    # Must run after the doubled backslashes are collapsed.
    return STRAY_BACKSLASH_RE.sub("", text)


def normalize_content(text: str, latex_commands: Iterable[str] = LATEX_COMMANDS_TO_REMOVE) -> str:
    """Clean UpNote markdown for Obsidian.

    Pipeline, in order: HTML entities to literals, known inline HTML tags
    removed, any other HTML tag removed, LaTeX page commands removed,
    ``\\\\`` to ``\\``, ``$$`` to ``$``, whitespace trimmed inside ``$...$``,
    and finally every backslash not followed by a letter, ``%`` or ``=``
    dropped.

    The pipeline is re-applied until the text stops changing, which makes
    the function idempotent. Every step only shortens the text, so this
    terminates; ordinary notes settle after a single pass.

    The trade-off: doubly escaped markup is fully unescaped and then
    stripped. ``&amp;lt;div&amp;gt;`` becomes ``<div>`` on the first pass
    and is removed as a tag on the second, where a single pass would have
    left ``&lt;div&gt;``.

    Args:
        text: Markdown body
        latex_commands: Regex patterns of LaTeX commands to remove

    Returns:
        Normalized markdown

    Examples:
        >>> normalize_content("Energy $$ E=mc^2 $$ rest")
        'Energy $E=mc^2$ rest'
    """
    latex_commands = tuple(latex_commands)
    previous = None
    while text != previous:
        previous = text
        text = _normalize_once(text, latex_commands)
    return text


def _filename_from_target(target: str) -> str:
    target = target.strip()
    if target.startswith("<") and target.endswith(">"):
        target = target[1:-1].strip()
    else:
        target = LINK_TITLE_RE.sub("", target)
    target = target.split("#", 1)[0].split("?", 1)[0]
    return PATH_SEPARATOR_RE.split(target)[-1].strip()


def decode_asset_name(name: str) -> str:
    """Percent-decode a filename, keeping it raw if it is not valid UTF-8."""
    try:
        return unquote(name, errors="strict")
    except UnicodeDecodeError:
        logger.debug(f"Could not URL-decode asset name {name!r}, keeping it as is")
        return name


def extract_asset_references(text: str) -> Set[str]:
    """Find the filenames of every asset a note references.

    Covers inline images, reference-style images, reference definitions, and
    HTML ``img``/``a`` tags. Directory, query and fragment parts are dropped
    and names are percent-decoded.

    Args:
        text: Note content (raw or normalized)

    Returns:
        Set of filenames, unique case-insensitively (first spelling seen wins)

    Examples:
        >>> extract_asset_references("![x](Files/image%206.png)")
        {'image 6.png'}
    """
    found: Dict[str, str] = {}
    for pattern in ASSET_REFERENCE_PATTERNS:
        for match in pattern.finditer(text):
            target = next((group for group in reversed(match.groups()) if group), "")
            name = _filename_from_target(target)
            if not name:
                continue
            name = decode_asset_name(name)
            found.setdefault(name.casefold(), name)
    return set(found.values())


def split_category_path(category_path: str) -> List[str]:
    """Split "A / B / C" into ["A", "B", "C"], dropping blank segments.

    Only the spaced separator splits, so "(III/IV) A 1" stays one segment.
    """
    segments = (segment.strip() for segment in category_path.split(CATEGORY_SEPARATOR))
    return [segment for segment in segments if segment]


def join_category_path(segments: Iterable[str]) -> str:
    return CATEGORY_SEPARATOR.join(segments)


def sanitize_segment(segment: str) -> str:
    """Replace characters that are invalid in folder names with underscores.

    Segments made only of dots ("." and "..") are replaced as well, so a
    category can never point outside the output folder.
    """
    for char in INVALID_PATH_CHARS:
        segment = segment.replace(char, "_")
    if segment and not segment.strip("."):
        return "_" * len(segment)
    return segment


def reserve_assets_dirname(segments: List[str], assets_dirname: str = ASSETS_DIRNAME) -> List[str]:
    """Rename folder segments that would collide with the local assets folder.

    Examples:
        >>> reserve_assets_dirname(["Work", "Files"])
        ['Work', 'Files_']
    """
    reserved = assets_dirname.casefold()
    return [f"{segment}_" if segment.casefold() == reserved else segment for segment in segments]


def category_to_dir_segments(category_path: str) -> List[str]:
    """Folder names for a category path.

    Examples:
        >>> category_to_dir_segments("Matura / Physik / (III/IV) A 1 Mechanik")
        ['Matura', 'Physik', '(III_IV) A 1 Mechanik']
    """
    return [sanitize_segment(segment) for segment in split_category_path(category_path)]


def collect_category_paths(notes: Iterable[Note]) -> List[str]:
    """All category paths of all notes, in first-seen order, without duplicates."""
    return list(dict.fromkeys(category for note in notes for category in note.categories))


def _prefix_key(segments: List[str]) -> str:
    return join_category_path(segment.casefold() for segment in segments)


def synthesize_category_tree(category_paths: Iterable[str]) -> TreeNode:
    """Build a notebook tree purely from category metadata.

    Nodes are created for every distinct prefix first and linked to their
    parents in a second pass, so a path may introduce a child before its
    parent has been seen. Prefixes are keyed case-insensitively, the first
    spelling encountered becomes the node label.

    Args:
        category_paths: Category path strings, e.g. "Matura / Physik"

    Returns:
        Root node (label "root", empty path); childless for empty input
    """
    split_paths = [segments for segments in map(split_category_path, category_paths) if segments]
    nodes: Dict[str, TreeNode] = {}

    for segments in split_paths:
        for depth in range(1, len(segments) + 1):
            key = _prefix_key(segments[:depth])
            if key not in nodes:
                nodes[key] = TreeNode(segments[depth - 1], join_category_path(segments[:depth]))

    linked: Set[str] = set()
    for segments in split_paths:
        for depth in range(1, len(segments)):
            child_key = _prefix_key(segments[:depth + 1])
            if child_key in linked:
                continue
            nodes[_prefix_key(segments[:depth])].children.append(nodes[child_key])
            linked.add(child_key)

    root = TreeNode("root", "")
    for segments in split_paths:
        top_key = _prefix_key(segments[:1])
        if top_key not in linked:
            root.children.append(nodes[top_key])
            linked.add(top_key)
    return root


def _mirror_directory(directory: Path, label: str) -> TreeNode:
    node = TreeNode(label, str(directory))
    seen: Set[str] = set()
    for child in sorted((p for p in directory.iterdir() if p.is_dir()), key=lambda p: p.name):
        key = child.name.casefold()
        if key in seen:
            logger.warning(f"Ignoring notebook folder {child}: a sibling differs only in case")
            continue
        seen.add(key)
        node.children.append(_mirror_directory(child, child.name))
    return node


def mirror_notebook_tree(notebooks_dir: Path) -> Outcome:
    """Build a notebook tree from an existing folder structure.

    A missing folder yields a childless root rather than a failure.

    Returns:
        Outcome holding the root TreeNode, or a filesystem failure
    """
    if not notebooks_dir.is_dir():
        logger.debug(f"Notebook folder {notebooks_dir} not found, using an empty tree")
        return Outcome.success(TreeNode("root", str(notebooks_dir)))
    try:
        return Outcome.success(_mirror_directory(notebooks_dir, "root"))
    except OSError as e:
        return Outcome.failure(
            f"Failed to build notebook structure from: {notebooks_dir}. Error: {e}",
            FailureKind.FILESYSTEM,
        )


def normalize_for_matching(label: str) -> str:
    """Loose form of a notebook name used by the fuzzy matching tiers.

    Examples:
        >>> normalize_for_matching("(III/IV) A 1")
        'iii-iv a 1'
    """
    for char in MATCH_STRIPPED_CHARS:
        label = label.replace(char, "")
    for char in MATCH_DASH_VARIANTS:
        label = label.replace(char, "-")
    return WHITESPACE_RUN_RE.sub(" ", label).strip().casefold()


def match_child(node: TreeNode, segment: str) -> Optional[Tuple[TreeNode, MatchTier]]:
    """Find the child of node that a category segment refers to.

    Tries, in order: case-insensitive equality, equality of the normalized
    forms, then containment of either normalized form in the other. Within a
    tier the first child in order wins.
    """
    wanted = segment.casefold()
    for child in node.children:
        if child.label.casefold() == wanted:
            return child, MatchTier.EXACT

    normalized = normalize_for_matching(segment)
    candidates = [(child, normalize_for_matching(child.label)) for child in node.children]
    for child, candidate in candidates:
        if candidate == normalized:
            return child, MatchTier.NORMALIZED

    if not normalized:
        return None
    for child, candidate in candidates:
        if candidate and (normalized in candidate or candidate in normalized):
            return child, MatchTier.PARTIAL
    return None


def resolve_category_path(root: TreeNode, category_path: str) -> Outcome:
    """Walk a category path down the tree one segment at a time.

    Returns:
        Outcome holding a Resolution, or a resolution failure naming the
        path and the segment that could not be matched
    """
    segments = split_category_path(category_path)
    if not segments:
        return Outcome.failure(f"Empty category path: {category_path!r}", FailureKind.RESOLUTION)

    node = root
    trail: List[TreeNode] = []
    tiers: List[MatchTier] = []
    for segment in segments:
        found = match_child(node, segment)
        if found is None:
            return Outcome.failure(
                f"Node not found: {join_category_path(segments)} (failed at: {segment})",
                FailureKind.RESOLUTION,
            )
        node, tier = found
        if tier is not MatchTier.EXACT:
            logger.debug(f"Matched {segment!r} to {node.label!r} ({tier.value})")
        trail.append(node)
        tiers.append(tier)
    return Outcome.success(Resolution(node=node, trail=tuple(trail), tiers=tuple(tiers)))


def resolve_note(note: Note, root: TreeNode) -> PlacementResult:
    """Locate the notebook of a note from its last (most specific) category."""
    if not note.categories:
        return PlacementResult(note=note, error="File has no categories")
    outcome = resolve_category_path(root, note.categories[-1])
    if not outcome.ok:
        return PlacementResult(note=note, error=outcome.error)
    return PlacementResult(note=note, resolution=outcome.value)


def _index_directory(directory: Path, index: Dict[str, Path]) -> None:
    entries = sorted(directory.iterdir(), key=lambda p: p.name)
    for entry in entries:
        if entry.is_file():
            index.setdefault(entry.name.casefold(), entry)
    for entry in entries:
        if entry.is_dir():
            _index_directory(entry, index)


def index_asset_pool(pool_dir: Path) -> Dict[str, Path]:
    """Map lower-cased filenames to files in the pool.

    Files of a folder take precedence over those in its subfolders; the
    first match found wins.
    """
    index: Dict[str, Path] = {}
    _index_directory(pool_dir, index)
    return index


def _is_note_file(path: Path) -> bool:
    return path.is_file() and path.suffix.lower() == ".md"


def _copy_assets_into(directory: Path, pool_index: Dict[str, Path],
                      assets_dirname: str, summary: CopySummary) -> None:
    note_paths = sorted(p for p in directory.iterdir() if _is_note_file(p))

    if note_paths:
        references: Dict[str, str] = {}
        for note_path in note_paths:
            try:
                text = note_path.read_text(encoding="utf-8")
            except (OSError, UnicodeDecodeError) as e:
                logger.warning(f"Failed to read markdown file {note_path}: {e}")
                summary.unreadable_notes.append(str(note_path))
                continue
            for name in extract_asset_references(text):
                references.setdefault(name.casefold(), name)

        if references:
            assets_dir = directory / assets_dirname
            assets_dir.mkdir(parents=True, exist_ok=True)
            summary.directories += 1
            for key in sorted(references):
                source = pool_index.get(key)
                if source is None:
                    logger.debug(f"Asset {references[key]} referenced in {directory} is not in the pool")
                    summary.missing.append(references[key])
                    continue
                shutil.copy2(source, assets_dir / source.name)
                summary.assets_copied += 1

    for child in sorted(p for p in directory.iterdir() if p.is_dir()):
        _copy_assets_into(child, pool_index, assets_dirname, summary)


def copy_referenced_assets(output_dir: Path, asset_pool_dir: Path,
                           assets_dirname: str = ASSETS_DIRNAME) -> Outcome:
    """Copy into every output folder only the assets its notes reference.

    Each folder that directly holds notes gets its own ``assets_dirname``
    subfolder with the union of its notes' references; folders are handled
    independently, so an asset used in two siblings is copied into both.

    Args:
        output_dir: Root of the placed notes, walked recursively
        asset_pool_dir: Folder holding all exported assets, searched recursively
        assets_dirname: Name of the local assets folder

    Returns:
        Outcome holding a CopySummary. A missing or unreadable pool is a
        successful no-op; a failed copy is a filesystem failure.
    """
    summary = CopySummary()
    if not asset_pool_dir.is_dir():
        logger.info(f"No asset pool at {asset_pool_dir}, nothing to copy")
        return Outcome.success(summary)
    try:
        pool_index = index_asset_pool(asset_pool_dir)
    except OSError as e:
        logger.warning(f"Asset pool {asset_pool_dir} is unreadable, skipping assets: {e}")
        return Outcome.success(summary)

    if not output_dir.is_dir():
        return Outcome.success(summary)
    try:
        _copy_assets_into(output_dir, pool_index, assets_dirname, summary)
    except OSError as e:
        return Outcome.failure(
            f"Failed to copy assets into: {output_dir}. Error: {e}",
            FailureKind.FILESYSTEM,
            value=summary,
        )
    return Outcome.success(summary)


def list_note_files(folder: Path) -> List[Path]:
    """Markdown files directly inside folder, sorted by name."""
    return sorted((p for p in folder.iterdir() if _is_note_file(p)), key=lambda p: p.name.lower())


def find_notebooks_dir(input_folder: Path, config: ConversionConfig) -> Optional[Path]:
    """Locate the pre-existing notebook structure of an input folder.

    Uses the configured folder name when given, otherwise the only
    subfolder besides the asset pool.
    """
    if config.notebooks_dirname:
        candidate = input_folder / config.notebooks_dirname
        return candidate if candidate.is_dir() else None

    candidates = [
        p for p in sorted(input_folder.iterdir())
        if p.is_dir() and p.name != config.assets_dirname
    ]
    if len(candidates) == 1:
        return candidates[0]
    if candidates:
        logger.warning(
            f"Several possible notebook folders in {input_folder}; "
            "use --notebooks-dir to pick one. Building the hierarchy from categories."
        )
    return None


def build_hierarchy(input_folder: Path, notes: List[Note], config: ConversionConfig) -> Outcome:
    """Build the notebook tree for one input folder.

    Returns:
        Outcome holding (root TreeNode, TreeMode actually used)
    """
    notebooks_dir = None
    if config.tree_mode is not TreeMode.SYNTHESIZE:
        try:
            notebooks_dir = find_notebooks_dir(input_folder, config)
        except OSError as e:
            return Outcome.failure(
                f"Failed to look for notebooks in: {input_folder}. Error: {e}",
                FailureKind.FILESYSTEM,
            )
        if notebooks_dir is None and config.tree_mode is TreeMode.MIRROR:
            notebooks_dir = input_folder / (config.notebooks_dirname or DEFAULT_NOTEBOOKS_DIRNAME)

    if notebooks_dir is not None:
        logger.info(f"Mirroring notebook structure from {notebooks_dir}")
        mirrored = mirror_notebook_tree(notebooks_dir)
        if not mirrored.ok:
            return mirrored
        return Outcome.success((mirrored.value, TreeMode.MIRROR))

    root = synthesize_category_tree(collect_category_paths(notes))
    logger.info(f"Built notebook structure from categories: {len(root.children)} top-level notebooks")
    return Outcome.success((root, TreeMode.SYNTHESIZE))


def render_note(note: Note, keep_frontmatter: bool = True,
                latex_commands: Iterable[str] = LATEX_COMMANDS_TO_REMOVE) -> str:
    """Output text of a note: header kept verbatim (optionally) plus normalized body."""
    header, body = split_header(note.content)
    body = normalize_content(body, latex_commands)
    if keep_frontmatter:
        return header + body
    return body.lstrip("\r\n")


def write_note(note: Note, target_dir: Path, content: str) -> Outcome:
    """Write the rendered note into target_dir under its original filename."""
    target_path = target_dir / note.name
    try:
        target_dir.mkdir(parents=True, exist_ok=True)
        with open(target_path, "w", encoding="utf-8") as outfile:
            outfile.write(content)
    except OSError as e:
        return Outcome.failure(
            f"Failed to write processed file to: {target_path}. Error: {e}",
            FailureKind.FILESYSTEM,
        )
    return Outcome.success(target_path)


def convert_folder(input_folder: Path, config: ConversionConfig, show_progress: bool = False) -> Outcome:
    """Convert one exported folder into ``config.output_dir / input_folder.name``.

    Notes that fail to parse or to resolve are skipped with a warning. A
    filesystem error aborts the folder; the partial FolderReport travels
    with the failure.

    Args:
        input_folder: Export folder with notes at the top level and a Files/ pool
        config: Conversion configuration
        show_progress: Display a tqdm progress bar over the notes

    Returns:
        Outcome holding the FolderReport
    """
    report = FolderReport(folder=input_folder.name)
    output_folder = config.output_dir / input_folder.name

    def fail(outcome: Outcome) -> Outcome:
        report.error = outcome.error
        return Outcome.failure(outcome.error, outcome.kind, value=report)

    try:
        note_paths = list_note_files(input_folder)
    except OSError as e:
        return fail(Outcome.failure(
            f"Failed to get markdown files from: {input_folder}. Error: {e}",
            FailureKind.FILESYSTEM,
        ))
    report.notes_found = len(note_paths)
    logger.info(f"Found {len(note_paths)} markdown files in {input_folder.name}")

    notes: List[Note] = []
    for path in note_paths:
        parsed = parse_note_file(path)
        if parsed.ok:
            notes.append(parsed.value)
        else:
            report.skip(f"Failed to parse {path.name}: {parsed.error}")

    hierarchy = build_hierarchy(input_folder, notes, config)
    if not hierarchy.ok:
        return fail(hierarchy)
    root, tree_mode = hierarchy.value
    report.tree_mode = tree_mode.value

    iterable = notes
    if show_progress:
        iterable = tqdm(notes, desc=f"Converting {input_folder.name}", unit="note")

    for note in iterable:
        placement = resolve_note(note, root)
        if not placement.placed:
            report.skip(f"Failed to place {note.name}: {placement.error}")
            continue

        segments = reserve_assets_dirname(placement.target_segments(), config.assets_dirname)
        target_dir = output_folder.joinpath(*segments)
        logger.debug(f"{note.name} -> {target_dir}")
        if config.dry_run:
            continue

        content = render_note(note, config.keep_frontmatter, config.latex_commands)
        written = write_note(note, target_dir, content)
        if not written.ok:
            return fail(written)
        report.notes_written += 1

    if config.dry_run or config.skip_assets:
        return Outcome.success(report)

    copied = copy_referenced_assets(output_folder, input_folder / config.assets_dirname,
                                    config.assets_dirname)
    summary = copied.value or CopySummary()
    report.assets_copied = summary.assets_copied
    report.assets_missing = len(summary.missing)
    report.warnings.extend(f"Failed to read markdown file {p}" for p in summary.unreadable_notes)
    if not copied.ok:
        return fail(copied)
    return Outcome.success(report)


def convert_all(config: ConversionConfig) -> Outcome:
    """Convert every folder under the input root, each one independently.

    Returns:
        Outcome holding the list of FolderReports. It fails when the input
        root is missing (structural) or when any folder failed, with one
        message per failed folder.
    """
    input_root = config.input_dir
    if not input_root.is_dir():
        return Outcome.failure(f"Input path does not exist: {input_root}", FailureKind.STRUCTURAL)

    try:
        if not config.dry_run:
            config.output_dir.mkdir(parents=True, exist_ok=True)
        folders = sorted(p for p in input_root.iterdir() if p.is_dir())
    except OSError as e:
        return Outcome.failure(
            f"Failed to process input folders from: {input_root}. Error: {e}",
            FailureKind.STRUCTURAL,
        )

    show_progress = not config.no_progress and sys.stdout.isatty()
    reports: List[FolderReport] = []
    errors: List[str] = []
    kind = None
    for folder in folders:
        logger.info(f"Processing folder: {folder.name}")
        outcome = convert_folder(folder, config, show_progress=show_progress)
        reports.append(outcome.value)
        if outcome.ok:
            logger.info(f"Successfully processed: {folder.name}")
        else:
            logger.error(f"Failed to process: {folder.name} - {outcome.error}")
            errors.append(f"{folder.name}: {outcome.error}")
            kind = kind or outcome.kind

    if errors:
        return Outcome.failure("; ".join(errors), kind, value=reports)
    return Outcome.success(reports)


def initialize_report(config: ConversionConfig) -> Dict[str, Any]:
    """Initialize the conversion report structure."""
    return {
        "generated_utc": datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ"),
        "dry_run": bool(config.dry_run),
        "input_dir": config.input_dir.as_posix(),
        "output_dir": config.output_dir.as_posix(),
        "tree_mode": config.tree_mode.value,
        "keep_frontmatter": bool(config.keep_frontmatter),
        "skip_assets": bool(config.skip_assets),
        "summary": {
            "folders_processed": 0,
            "folders_failed": 0,
            "notes_found": 0,
            "notes_written": 0,
            "notes_skipped": 0,
            "assets_copied": 0,
            "assets_missing": 0,
        },
        "folders": [],
    }


def add_folder_reports(report: Dict[str, Any], folder_reports: Iterable[FolderReport]) -> None:
    """Accumulate folder reports into the run report."""
    summary = report["summary"]
    for folder_report in folder_reports:
        summary["folders_processed"] += 1
        if folder_report.error:
            summary["folders_failed"] += 1
        for key in ("notes_found", "notes_written", "notes_skipped", "assets_copied", "assets_missing"):
            summary[key] += getattr(folder_report, key)
        report["folders"].append(asdict(folder_report))


def write_report(report_path: Path, report_format: str, data: Dict[str, Any]) -> None:
    """Write conversion report to file.

    Args:
        report_path: Output file path
        report_format: "json" or "md" (markdown)
        data: Report data dictionary
    """
    if report_format == "json":
        report_path.write_text(json.dumps(data, indent=2, ensure_ascii=False), encoding="utf-8")
        return

    # Markdown
    summary = data["summary"]
    lines = []
    lines.append("# UpNote Conversion Report")
    lines.append("")
    lines.append(f"- Generated: {data['generated_utc']}")
    lines.append(f"- Dry run: {data['dry_run']}")
    lines.append(f"- Folders processed: {summary['folders_processed']}")
    lines.append(f"- Folders failed: {summary['folders_failed']}")
    lines.append(f"- Notes found: {summary['notes_found']}")
    lines.append(f"- Notes written: {summary['notes_written']}")
    lines.append(f"- Notes skipped: {summary['notes_skipped']}")
    lines.append(f"- Assets copied: {summary['assets_copied']}")
    lines.append(f"- Assets missing: {summary['assets_missing']}")
    lines.append("")
    lines.append("## Folders")
    lines.append("")
    for folder in data["folders"]:
        lines.append(f"### {folder['folder']}")
        lines.append("")
        lines.append(f"- Hierarchy: {folder['tree_mode'] or 'None'}")
        lines.append(f"- Notes written: {folder['notes_written']} of {folder['notes_found']}")
        lines.append(f"- Assets copied: {folder['assets_copied']}")
        if folder["error"]:
            lines.append(f"- Error: {folder['error']}")
        if folder["warnings"]:
            lines.append("Warnings:")
            for warning in folder["warnings"]:
                lines.append(f"- {warning}")
        lines.append("")
    report_path.write_text("\n".join(lines) + "\n", encoding="utf-8")


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        description="Convert UpNote markdown exports into an Obsidian notebook hierarchy."
    )
    parser.add_argument("--input-dir", default="input",
                        help="Folder holding one subfolder per UpNote export.")
    parser.add_argument("--output-dir", default="output", help="Output base directory.")
    parser.add_argument("--assets-dir", default=ASSETS_DIRNAME,
                        help="Name of the asset folder in each export and in each output folder.")
    parser.add_argument(
        "--notebooks-dir",
        default=None,
        help="Name of the existing notebook structure folder inside each export.",
    )
    parser.add_argument(
        "--tree-mode",
        choices=[mode.value for mode in TreeMode],
        default=TreeMode.AUTO.value,
        help="auto (mirror the notebook folder when present), mirror, or synthesize from categories",
    )
    parser.add_argument(
        "--strip-frontmatter",
        action="store_true",
        help="Drop the UpNote metadata header from output notes.",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Do not write files; only report planned placements.",
    )
    parser.add_argument(
        "--skip-assets",
        action="store_true",
        help="Do not copy referenced assets.",
    )
    parser.add_argument(
        "--report",
        default="conversion-report.json",
        help="Path to report file (JSON or MD).",
    )
    parser.add_argument(
        "--report-format",
        choices=["json", "md"],
        default="json",
        help="Report format.",
    )
    parser.add_argument(
        "--no-progress",
        action="store_true",
        help="Disable progress bar",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="count",
        default=0,
        help="Increase verbosity (-v for INFO, -vv for DEBUG)",
    )
    parser.add_argument(
        "--quiet", "-q",
        action="store_true",
        help="Quiet mode (only show errors)",
    )
    parser.add_argument(
        "--log-file",
        type=Path,
        help="Write detailed logs to file (always DEBUG level)",
    )
    parser.add_argument(
        "--validate-only",
        action="store_true",
        help="Validate setup and exit (don't process files)",
    )
    return parser.parse_args(argv)


def config_from_args(args: argparse.Namespace) -> ConversionConfig:
    """Build a ConversionConfig from parsed command-line arguments."""
    return ConversionConfig(
        input_dir=Path(args.input_dir),
        output_dir=Path(args.output_dir),
        assets_dirname=args.assets_dir.strip() or ASSETS_DIRNAME,
        notebooks_dirname=args.notebooks_dir,
        tree_mode=TreeMode(args.tree_mode),
        keep_frontmatter=not args.strip_frontmatter,
        dry_run=args.dry_run,
        skip_assets=args.skip_assets,
        report_path=Path(args.report) if args.report else None,
        report_format=args.report_format,
        no_progress=args.no_progress,
    )


def validate_conversion_setup(input_dir: Path, output_dir: Path, assets_dirname: str,
                              dry_run: bool) -> List[str]:
    """Validate the conversion setup before processing.

    Checks that the input root exists and holds export folders, warns about
    folders without notes or asset pool, and (unless dry-run) that the output
    directory is writable.

    Returns:
        List of error messages (empty if validation passes)
    """
    errors = []

    if not input_dir.exists():
        errors.append(f"Input directory not found: {input_dir}")
        return errors

    if not input_dir.is_dir():
        errors.append(f"Input is not a directory: {input_dir}")
        return errors

    folders = [p for p in input_dir.iterdir() if p.is_dir()]
    if not folders:
        errors.append(f"No export folders found in input directory: {input_dir}")

    for folder in folders:
        if not list(folder.glob("*.md")):
            logger.warning(f"No .md files found in {folder}")
        if not (folder / assets_dirname).is_dir():
            logger.warning(f"{assets_dirname}/ directory not found in {folder}; no assets will be copied")

    if not dry_run:
        try:
            output_dir.mkdir(parents=True, exist_ok=True)
            test_file = output_dir / ".write_test"
            test_file.touch()
            test_file.unlink()
        except PermissionError:
            errors.append(f"Cannot write to output directory: {output_dir}")
        except OSError as e:
            errors.append(f"Error accessing output directory {output_dir}: {e}")

    return errors


def main(argv: Optional[List[str]] = None) -> None:
    """Main entry point for UpNote to Obsidian conversion."""
    args = parse_args(argv)
    setup_logging(verbose=args.verbose, quiet=args.quiet, log_file=args.log_file)
    config = config_from_args(args)

    logger.debug(f"Input directory: {config.input_dir}")
    logger.debug(f"Output directory: {config.output_dir}")
    logger.debug(f"Tree mode: {config.tree_mode.value}")
    logger.debug(f"Dry run: {config.dry_run}")

    logger.info("Running pre-flight validation...")
    validation_errors = validate_conversion_setup(
        config.input_dir, config.output_dir, config.assets_dirname, config.dry_run
    )
    if validation_errors:
        logger.error("Validation failed:")
        for error in validation_errors:
            logger.error(f"  - {error}")
        sys.exit(1)

    logger.info("Pre-flight validation passed")
    if args.validate_only:
        logger.info("Validate-only mode: Setup is valid, exiting without processing")
        sys.exit(0)

    report = initialize_report(config)
    outcome = convert_all(config)
    if outcome.value:
        add_folder_reports(report, outcome.value)

    if config.report_path:
        write_report(config.report_path, config.report_format, report)

    if not outcome.ok:
        logger.error(f"Conversion failed: {outcome.error}")
        sys.exit(1)

    summary = report["summary"]
    logger.info(f"Conversion complete: {summary['folders_processed']} folders, "
                f"{summary['notes_written']} notes written, "
                f"{summary['notes_skipped']} notes skipped, "
                f"{summary['assets_copied']} assets copied")
    if summary["notes_skipped"]:
        logger.warning(f"Total skipped notes: {summary['notes_skipped']}")


if __name__ == "__main__":
    main()
