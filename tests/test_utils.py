from datetime import date, datetime

import pytest

from finroots.services.storage import StorageService
from finroots.settings import Settings
from finroots.utils.cleanup import audio_workspace, cleanup_file, safe_filename
from finroots.utils.dates import add_years, epoch_seconds, parse_timestamp


class TestDates:

    def test_parse_normalises_to_naive_utc(self):
        assert parse_timestamp("2026-10-19T10:30:00+05:30") == datetime(2026, 10, 19, 5, 0)
        assert parse_timestamp("2026-10-19T05:00:00Z") == datetime(2026, 10, 19, 5, 0)

    @pytest.mark.parametrize("value", [None, "", "yesterday"])
    def test_unparseable_is_none(self, value):
        assert parse_timestamp(value) is None

    def test_missing_is_epoch(self):
        assert epoch_seconds(None) == 0

    def test_add_years(self):
        assert add_years(date(2026, 5, 1), 1) == date(2027, 5, 1)
        assert add_years(date(2024, 2, 29), 1) == date(2025, 3, 1)


class TestCleanup:

    def test_workspace_removed_after_error(self):
        with pytest.raises(RuntimeError):
            with audio_workspace() as workdir:
                (workdir / "chunk.webm").write_bytes(b"x")
                raise RuntimeError("transcription failed")
        assert not workdir.exists()

    def test_cleanup_file_removes_empty_parent(self, tmp_path):
        folder = tmp_path / "note"
        folder.mkdir()
        audio = folder / "a.webm"
        audio.write_bytes(b"x")
        cleanup_file(str(audio))
        assert not folder.exists()

    def test_safe_filename(self):
        assert safe_filename("../../my note.webm") == "my_note.webm"
        assert safe_filename("") == "audio.webm"


class TestLocalStorage:

    def _storage(self, tmp_path):
        settings = Settings(
            bucket_name=None,
            data_file=str(tmp_path / "snapshot.json"),
            upload_dir=str(tmp_path / "uploads"),
        )
        return StorageService(settings)

    def test_missing_snapshot_is_empty(self, tmp_path):
        snapshot = self._storage(tmp_path).load_snapshot()
        assert snapshot.members == []
        assert len(snapshot.task_statuses) == 6

    def test_snapshot_survives_save_and_load(self, tmp_path, snapshot):
        storage = self._storage(tmp_path)
        storage.save_snapshot(snapshot)
        assert storage.load_snapshot() == snapshot

    def test_audio_saved_locally(self, tmp_path):
        storage = self._storage(tmp_path)
        location = storage.save_audio(b"audio", "member", "m-1", "vn-1", "my note.webm")
        assert location.endswith("member/m-1/vn-1_my_note.webm")
        assert storage.fetch_audio(location, tmp_path) == location
