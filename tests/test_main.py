"""Tests for the command line entry point."""

import json

import pytest

import main as cli
from facecloak.config import Config, save_config
from facecloak.pipeline import ProcessedVideo


@pytest.fixture(autouse=True)
def in_tmp_path(tmp_path, monkeypatch):
    # The log file is written to the working directory
    monkeypatch.chdir(tmp_path)


def write_config(tmp_path, **kwargs) -> str:
    path = tmp_path / "config.yaml"
    save_config(Config(output_dir=tmp_path / "output", debug_dir=tmp_path / "debug", **kwargs), str(path))
    return str(path)


def test_validate_only_missing_input(tmp_path):
    assert cli.main(["--config", write_config(tmp_path), "--validate-only"]) == 1


def test_validate_only_existing_input(tmp_path):
    video = tmp_path / "clip.mp4"
    video.write_bytes(b"")
    assert cli.main(["--config", write_config(tmp_path), "--input", str(video), "--validate-only"]) == 0


def test_invalid_override_fails(tmp_path):
    assert cli.main(["--config", write_config(tmp_path), "--detection-interval", "0"]) == 1


def test_overrides_applied(tmp_path):
    app = cli.FaceCloakApp(write_config(tmp_path), {"effect": "emoji", "detection_interval": 2, "input_video": None})
    assert app.config.effect == "emoji"
    assert app.config.detection_interval == 2


def test_successful_run_writes_report(tmp_path, monkeypatch):
    video = tmp_path / "clip.mp4"
    video.write_bytes(b"")

    def fake_process_file(self, input_path, output_path=None, progress_callback=None, cancel_event=None):
        progress_callback(1.0)
        return ProcessedVideo(original_path=input_path, processed_path=tmp_path / "out.mp4", max_faces_concealed=2)

    monkeypatch.setattr(cli.PipelineCoordinator, "process_file", fake_process_file)

    code = cli.main(["--config", write_config(tmp_path), "--input", str(video), "--report"])

    assert code == 0
    report = json.loads((tmp_path / "debug" / "processing_report.json").read_text(encoding="utf-8"))
    assert report["max_faces_concealed"] == 2
    assert report["pipeline_status"] == "not_started"


def test_cancelled_run_exits_130(tmp_path, monkeypatch):
    from facecloak.errors import CancellationError

    video = tmp_path / "clip.mp4"
    video.write_bytes(b"")

    def cancelled(self, *args, **kwargs):
        raise CancellationError("Processing was cancelled.")

    monkeypatch.setattr(cli.PipelineCoordinator, "process_file", cancelled)
    assert cli.main(["--config", write_config(tmp_path), "--input", str(video)]) == 130
