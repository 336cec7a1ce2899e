import os
from unittest.mock import MagicMock

import pytest

import file_ops
from converter import Converter
from models.audio_info import SynthesisRequest, TargetLayout
from models.config import AppConfig
from transaction import FileTransaction, TxState, build_job
from errors import BackupFailure, SynthesisFailure, MergeFailure, JobCancelled
from conftest import FakeRunner, stream

ORIGINAL = b"original movie bytes" * 100


def request():
    return SynthesisRequest(target=TargetLayout.SURROUND, source_stream_number=1,
                            source_stream_index=2, source_channels=8)


def make_transaction(library, scratch, runner=None, config=None):
    source = library / "movie.mkv"
    source.write_bytes(ORIGINAL)
    config = config or AppConfig()
    ffprobe = MagicMock()
    ffprobe.get_audio_streams.return_value = [stream(1, 2), stream(2, 8, "dts")]
    ffprobe.count_streams.side_effect = lambda path, selector: 2 if selector == "a" else 0
    converter = Converter(config, ffprobe, runner or FakeRunner(), ffmpeg_path="ffmpeg")
    job = build_job(str(source), [request()], str(scratch), config)
    return FileTransaction(job, converter), source


def leftovers(library, scratch):
    return sorted(os.listdir(library)), sorted(os.listdir(scratch))


def test_build_job_paths(library, scratch):
    config = AppConfig()
    job_a = build_job(str(library / "movie.mkv"), [request()], str(scratch), config)
    job_b = build_job(str(library / "movie.mkv"), [request()], str(scratch), config)

    assert job_a.backup_path == str(library / "movie.mkv.backup")
    assert os.path.dirname(job_a.staged_output_path) == str(scratch)
    assert job_a.staged_output_path.endswith(".mkv")
    assert job_a.synthesized_audio_paths[0].endswith(".ac3")
    assert job_a.chosen_source_stream_number == 1
    # Per-job names so parallel jobs never collide
    assert job_a.staged_output_path != job_b.staged_output_path


def test_successful_transaction_replaces_source_and_cleans_up(library, scratch):
    tx, source = make_transaction(library, scratch)
    tx.run()

    assert tx.state == TxState.DONE
    assert source.read_bytes() == b"merge output"
    assert leftovers(library, scratch) == (["movie.mkv"], [])


def test_merge_failure_leaves_original_untouched(library, scratch):
    tx, source = make_transaction(library, scratch, FakeRunner(fail_labels=("merge",)))
    with pytest.raises(MergeFailure) as excinfo:
        tx.run()

    assert excinfo.value.exit_status == 1
    assert tx.state == TxState.ABORTED
    assert source.read_bytes() == ORIGINAL
    assert leftovers(library, scratch) == (["movie.mkv"], [])


def test_empty_merge_output_is_failure(library, scratch):
    tx, source = make_transaction(library, scratch, FakeRunner(empty_labels=("merge",)))
    with pytest.raises(MergeFailure):
        tx.run()
    assert source.read_bytes() == ORIGINAL
    assert leftovers(library, scratch) == (["movie.mkv"], [])


def test_synthesis_failure_aborts_before_merge(library, scratch):
    runner = FakeRunner(fail_labels=("synthesize",))
    tx, source = make_transaction(library, scratch, runner)
    with pytest.raises(SynthesisFailure):
        tx.run()

    assert [label for label, _ in runner.commands] == ["synthesize 5.1"]
    assert source.read_bytes() == ORIGINAL
    assert leftovers(library, scratch) == (["movie.mkv"], [])


def test_empty_synthesis_output_is_failure(library, scratch):
    tx, source = make_transaction(library, scratch, FakeRunner(empty_labels=("synthesize",)))
    with pytest.raises(SynthesisFailure):
        tx.run()
    assert leftovers(library, scratch) == (["movie.mkv"], [])


def test_backup_size_mismatch(library, scratch, monkeypatch):
    runner = FakeRunner()
    tx, source = make_transaction(library, scratch, runner)

    def short_copy(src, dst):
        with open(dst, "wb") as f:
            f.write(b"short")

    monkeypatch.setattr(file_ops.shutil, "copy2", short_copy)
    with pytest.raises(BackupFailure, match="size mismatch"):
        tx.run()

    assert runner.commands == []
    assert source.read_bytes() == ORIGINAL
    assert leftovers(library, scratch) == (["movie.mkv"], [])


def test_stale_backup_is_overwritten_and_removed(library, scratch):
    tx, source = make_transaction(library, scratch)
    (library / "movie.mkv.backup").write_bytes(b"stale")
    tx.run()
    assert leftovers(library, scratch) == (["movie.mkv"], [])


def test_cancel_rolls_back(library, scratch):
    runner = FakeRunner()
    tx, source = make_transaction(library, scratch, runner)

    original_run = runner.run

    def cancel_during_merge(cmd, label, path, observer=None):
        if label == "merge":
            runner.cancel()
        return original_run(cmd, label, path, observer)

    runner.run = cancel_during_merge
    with pytest.raises(JobCancelled):
        tx.run()

    assert tx.state == TxState.ABORTED
    assert source.read_bytes() == ORIGINAL
    assert leftovers(library, scratch) == (["movie.mkv"], [])


def test_transaction_runs_once(library, scratch):
    tx, _ = make_transaction(library, scratch)
    tx.run()
    with pytest.raises(RuntimeError):
        tx.run()


def test_atomic_replace_across_filesystems(tmp_path, monkeypatch):
    staged = tmp_path / "staged.mkv"
    target = tmp_path / "movie.mkv"
    staged.write_bytes(b"new")
    target.write_bytes(b"old")

    real_replace = os.replace
    calls = []

    def replace(src, dst):
        calls.append(src)
        if len(calls) == 1:
            raise OSError(18, "Invalid cross-device link")
        return real_replace(src, dst)

    monkeypatch.setattr(file_ops.os, "replace", replace)
    file_ops.atomic_replace(str(staged), str(target))

    assert target.read_bytes() == b"new"
    assert calls[1] == file_ops.partial_sibling(str(target))
    assert sorted(os.listdir(tmp_path)) == ["movie.mkv"]


def test_scratch_directory_removed_on_error(tmp_path):
    parent = tmp_path / "scratch"
    with pytest.raises(ValueError):
        with file_ops.scratch_directory(str(parent)) as path:
            with open(os.path.join(path, "leftover.ac3"), "wb") as f:
                f.write(b"x")
            raise ValueError("boom")
    assert not os.path.exists(path)
    assert parent.is_dir()


def test_scratch_directory_leaves_parent_contents_alone(tmp_path):
    parent = tmp_path / "shared"
    parent.mkdir()
    (parent / "unrelated_user_file.txt").write_text("keep me")

    with file_ops.scratch_directory(str(parent)) as first:
        with file_ops.scratch_directory(str(parent)) as second:
            assert first != second
            assert os.path.dirname(first) == str(parent)
            assert os.path.basename(first).startswith(file_ops.SCRATCH_PREFIX)

    assert os.listdir(parent) == ["unrelated_user_file.txt"]
    assert (parent / "unrelated_user_file.txt").read_text() == "keep me"
