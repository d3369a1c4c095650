"""
Tests for the artwork metadata section of the guide cache.
"""

from __future__ import annotations

import json
from pathlib import Path

from guideart.models.images import ImageCandidate, ProgramMetadata
from guideart.services.metadata_cache import ProgramMetadataCache
from tests.fakes import PROGRAM_ID, candidate


class TestProgramMetadataCache:
    """Tests for ProgramMetadataCache."""

    def test_missing_file_is_empty(self, tmp_path: Path) -> None:
        """No cache file, no metadata."""
        cache = ProgramMetadataCache(tmp_path / "guide_cache.json")

        assert len(cache) == 0
        assert cache.get(PROGRAM_ID) is None
        assert cache.title_for(PROGRAM_ID) is None

    def test_put_then_get(self, tmp_path: Path) -> None:
        """Stored candidates come back as models."""
        cache = ProgramMetadataCache(tmp_path / "guide_cache.json")
        cache.put(
            ProgramMetadata(
                program_id=PROGRAM_ID,
                title="The Example Show",
                candidates=[ImageCandidate(uri="abc.jpg", category="Poster Art", aspect="2x3")],
            )
        )

        reloaded = ProgramMetadataCache(tmp_path / "guide_cache.json")
        metadata = reloaded.get(PROGRAM_ID)

        assert PROGRAM_ID in reloaded
        assert metadata is not None
        assert metadata.title == "The Example Show"
        assert [c.image_id for c in metadata.candidates] == ["abc"]

    def test_other_top_level_keys_are_preserved(self, tmp_path: Path) -> None:
        """Writing metadata leaves the guide builder's sections alone."""
        path = tmp_path / "guide_cache.json"
        path.write_text(json.dumps({"Schedule": {"s1": [1, 2]}, "Program": {}}))

        cache = ProgramMetadataCache(path)
        cache.put(ProgramMetadata(program_id=PROGRAM_ID, candidates=[]))

        document = json.loads(path.read_text())
        assert document["Schedule"] == {"s1": [1, 2]}
        assert PROGRAM_ID in document["Metadata"]

    def test_title_falls_back_to_program_section(self, tmp_path: Path) -> None:
        """Programs without a metadata title use Program.titles[].title120."""
        path = tmp_path / "guide_cache.json"
        path.write_text(
            json.dumps(
                {
                    "Program": {PROGRAM_ID: {"titles": [{"title120": "From Program"}]}},
                    "Metadata": {PROGRAM_ID: {"data": [candidate("abc")]}},
                }
            )
        )

        cache = ProgramMetadataCache(path)

        assert cache.title_for(PROGRAM_ID) == "From Program"
        assert cache.get(PROGRAM_ID).title == "From Program"  # type: ignore[union-attr]
        assert cache.get(PROGRAM_ID).candidates[0].width == 240  # type: ignore[union-attr]

    def test_remove(self, tmp_path: Path) -> None:
        """remove() reports whether an entry existed."""
        cache = ProgramMetadataCache(tmp_path / "guide_cache.json")
        cache.put(ProgramMetadata(program_id=PROGRAM_ID, candidates=[]))

        assert cache.remove(PROGRAM_ID) is True
        assert cache.remove(PROGRAM_ID) is False

    def test_corrupt_file_is_ignored(self, tmp_path: Path) -> None:
        """Unparsable JSON loads as empty."""
        path = tmp_path / "guide_cache.json"
        path.write_text("[[[")

        assert len(ProgramMetadataCache(path)) == 0
