"""Marker-delimited text block replacement.

A PatchBlock step rewrites the text between two marker strings in an
existing file, leaving everything outside the markers untouched:

    before <!-- start -->old<!-- end --> after

With the markers kept the replacement is inserted right after the start
marker and right before the end marker. With the markers stripped the marker
strings themselves are removed as well.
"""

from __future__ import annotations

from dataclasses import dataclass

from misfit.errors import MarkerNotFound


@dataclass
class MarkedBlock:
    """Location of a marker-delimited block within file content."""

    start_pos: int  # index of the start marker
    content_start: int  # first index after the start marker
    content_end: int  # index of the end marker
    end_pos: int  # first index after the end marker

    def inner(self, file_content: str) -> str:
        """Return the text between the markers."""
        return file_content[self.content_start : self.content_end]


def find_marked_block(file_content: str, start_marker: str, end_marker: str) -> MarkedBlock:
    """Locate the first start marker and the first end marker after it.

    Args:
        file_content: The full file content
        start_marker: Marker opening the block
        end_marker: Marker closing the block

    Returns:
        The located block

    Raises:
        MarkerNotFound: With which="start" or which="end" for the missing marker
    """
    start_pos = file_content.find(start_marker)
    if start_pos == -1:
        raise MarkerNotFound(start_marker, "start")

    content_start = start_pos + len(start_marker)
    content_end = file_content.find(end_marker, content_start)
    if content_end == -1:
        raise MarkerNotFound(end_marker, "end")

    return MarkedBlock(
        start_pos=start_pos,
        content_start=content_start,
        content_end=content_end,
        end_pos=content_end + len(end_marker),
    )


def replace_between_markers(
    file_content: str,
    start_marker: str,
    end_marker: str,
    content: str,
    strip_markers: bool = False,
) -> str:
    """Replace the block between two markers.

    Args:
        file_content: The full file content
        start_marker: Marker opening the block
        end_marker: Marker closing the block
        content: Replacement text, inserted verbatim
        strip_markers: Remove the marker strings from the output

    Returns:
        Updated file content
    """
    block = find_marked_block(file_content, start_marker, end_marker)
    if strip_markers:
        return file_content[: block.start_pos] + content + file_content[block.end_pos :]
    return file_content[: block.content_start] + content + file_content[block.content_end :]
