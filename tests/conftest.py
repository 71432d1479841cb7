"""Pytest fixtures for UpNote Converter tests."""

import pytest


NOTE_TEMPLATE = """---
date: {date}
created: {created}
{categories}
---
{body}"""


def build_note_text(categories, body="", date="2023-05-01 10:00:00", created="2023-04-30 09:15:00"):
    """Render an UpNote export note with the given category paths."""
    if categories:
        category_block = "categories:\n" + "\n".join(f"- {c}" for c in categories)
    else:
        category_block = "categories:"
    return NOTE_TEMPLATE.format(date=date, created=created, categories=category_block, body=body)


@pytest.fixture
def export_dirs(tmp_path):
    """Create an input root holding one export folder with an asset pool.

    The pool holds a.png, b.png and sub/c.png.

    Returns:
        Tuple of (input_root, export_folder, output_root) Path objects
    """
    input_root = tmp_path / "input"
    export = input_root / "Export"
    pool = export / "Files"
    (pool / "sub").mkdir(parents=True)
    (pool / "a.png").write_bytes(b"a-image")
    (pool / "b.png").write_bytes(b"b-image")
    (pool / "sub" / "c.png").write_bytes(b"c-image")
    output_root = tmp_path / "output"
    return input_root, export, output_root


@pytest.fixture
def write_note():
    """Factory writing a note file into a folder.

    Returns:
        Callable(folder, name, categories, body="") -> Path
    """
    def _write(folder, name, categories, body=""):
        path = folder / name
        path.write_text(build_note_text(categories, body), encoding="utf-8")
        return path
    return _write


@pytest.fixture
def sample_note_text():
    """Note with math, HTML and an encoded asset reference."""
    return build_note_text(
        ["Matura / Physik / (III/IV) A 1 Mechanik"],
        "Energy $$ E=mc^2 $$ rest<br>\n![x](Files/image%206.png)\n",
    )
