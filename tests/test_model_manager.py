"""Tests for the landmark model asset manager."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import MagicMock, patch

import httpx
import pytest

from ovalmosaic.config import Settings
from ovalmosaic.ml.model_manager import MODEL_REGISTRY, TaskModelManager

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _make_settings(**overrides: object) -> Settings:
    defaults: dict[str, object] = {
        "models_dir": "/tmp/ovalmosaic_test_models",
        "landmarker_model": "face_landmarker_float16",
    }
    defaults.update(overrides)
    return Settings(**defaults)  # type: ignore[arg-type]


def _stream_returning(*chunks: bytes) -> MagicMock:
    response = MagicMock()
    response.iter_bytes.return_value = list(chunks)
    stream = MagicMock()
    stream.return_value.__enter__.return_value = response
    return stream


# ---------------------------------------------------------------------------
# Model registry tests
# ---------------------------------------------------------------------------


class TestModelRegistry:
    def test_known_model_lookup(self) -> None:
        spec = MODEL_REGISTRY["face_landmarker_float16"]
        assert spec.name == "face_landmarker_float16"
        assert spec.filename.endswith(".task")
        assert spec.url.startswith("https://storage.googleapis.com/mediapipe-models/")

    def test_unknown_model_raises_keyerror(self) -> None:
        with pytest.raises(KeyError):
            MODEL_REGISTRY["nonexistent_model"]

    def test_filenames_are_distinct(self) -> None:
        filenames = [spec.filename for spec in MODEL_REGISTRY.values()]
        assert len(filenames) == len(set(filenames))


# ---------------------------------------------------------------------------
# TaskModelManager tests
# ---------------------------------------------------------------------------


class TestTaskModelManager:
    def test_downloads_missing_model(self, tmp_path: Path) -> None:
        stream = _stream_returning(b"task-", b"bytes")
        mgr = TaskModelManager(_make_settings(models_dir=str(tmp_path / "models")))

        with patch("ovalmosaic.ml.model_manager.httpx.stream", stream):
            path = mgr.ensure_downloaded("face_landmarker_float16")

        assert path == tmp_path / "models" / "face_landmarker.task"
        assert path.read_bytes() == b"task-bytes"
        stream.assert_called_once()
        assert stream.call_args.args == ("GET", MODEL_REGISTRY["face_landmarker_float16"].url)
        assert not (tmp_path / "models" / "face_landmarker.task.part").exists()

    def test_skips_existing_file(self, tmp_path: Path) -> None:
        (tmp_path / "face_landmarker.task").write_bytes(b"cached")
        stream = _stream_returning(b"new")
        mgr = TaskModelManager(_make_settings(models_dir=str(tmp_path)))

        with patch("ovalmosaic.ml.model_manager.httpx.stream", stream):
            path = mgr.ensure_downloaded("face_landmarker_float16")

        stream.assert_not_called()
        assert path.read_bytes() == b"cached"

    def test_second_call_uses_cached_path(self, tmp_path: Path) -> None:
        stream = _stream_returning(b"x")
        mgr = TaskModelManager(_make_settings(models_dir=str(tmp_path)))

        with patch("ovalmosaic.ml.model_manager.httpx.stream", stream):
            first = mgr.ensure_downloaded("face_landmarker_float16")
            second = mgr.ensure_downloaded("face_landmarker_float16")

        assert first == second
        stream.assert_called_once()

    def test_local_task_file_used_directly(self, tmp_path: Path) -> None:
        local = tmp_path / "custom.task"
        local.write_bytes(b"local")
        mgr = TaskModelManager(_make_settings(models_dir=str(tmp_path / "models")))

        with patch("ovalmosaic.ml.model_manager.httpx.stream") as stream:
            assert mgr.ensure_downloaded(str(local)) == local
        stream.assert_not_called()

    def test_failed_download_leaves_no_file(self, tmp_path: Path) -> None:
        response = MagicMock()
        response.raise_for_status.side_effect = httpx.HTTPStatusError(
            "404", request=MagicMock(), response=MagicMock()
        )
        stream = MagicMock()
        stream.return_value.__enter__.return_value = response
        mgr = TaskModelManager(_make_settings(models_dir=str(tmp_path)))

        with patch("ovalmosaic.ml.model_manager.httpx.stream", stream), pytest.raises(httpx.HTTPStatusError):
            mgr.ensure_downloaded("face_landmarker_float16")

        assert list(tmp_path.iterdir()) == []

    def test_unknown_model_raises_keyerror(self) -> None:
        mgr = TaskModelManager(_make_settings())
        with pytest.raises(KeyError, match="Unknown model"):
            mgr.ensure_downloaded("totally_fake_model")
