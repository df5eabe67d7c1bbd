"""
Unit tests for asset collection.
"""

from redbook.assets import collect_assets


class TestCollectAssets:
    """Tests for collect_assets."""

    def test_sorted_images_without_diagnostics(self, tmp_path):
        for name in ["page_02.png", "page_01.JPG", "page_10.webp", "debug_01_navigated.png", "notes.txt"]:
            (tmp_path / name).write_bytes(b"x")
        (tmp_path / "nested.png").mkdir()

        assets = collect_assets(tmp_path)

        assert [p.name for p in assets] == ["page_01.JPG", "page_02.png", "page_10.webp"]

    def test_missing_directory(self, tmp_path):
        assert collect_assets(tmp_path / "missing") == []
