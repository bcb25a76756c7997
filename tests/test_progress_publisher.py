import json

from fabcli.progress import FileProgressPublisher, ProgressSnapshot, snapshot_from_dict, snapshot_to_dict


def _snapshot(ts: float, succeeded: int, failed: int = 0) -> ProgressSnapshot:
    return ProgressSnapshot(ts=ts, total=100, succeeded=succeeded, failed=failed, elapsed_s=ts / 10)


def test_snapshot_round_trip() -> None:
    original = _snapshot(3.0, 7, 2)
    rebuilt = snapshot_from_dict(snapshot_to_dict(original))
    assert rebuilt == original
    assert rebuilt.completed == 9


def test_snapshot_from_dict_tolerates_missing_fields() -> None:
    rebuilt = snapshot_from_dict({"total": "5", "succeeded": None})
    assert rebuilt.total == 5
    assert rebuilt.succeeded == 0
    assert rebuilt.failed == 0


def test_file_progress_publisher_writes_latest_snapshot(tmp_path) -> None:
    out = tmp_path / "progress" / "snapshot.json"
    publisher = FileProgressPublisher(out)

    for i in range(50):
        publisher.publish(_snapshot(float(i), i))
    publisher.close()

    raw = json.loads(out.read_text(encoding="utf-8"))
    assert raw["ts"] == 49.0
    assert raw["succeeded"] == 49
    assert raw["total"] == 100
    assert raw["completed"] == 49
    assert 1 <= publisher.writes <= 50
    assert list(out.parent.iterdir()) == [out]


def test_publish_after_close_is_ignored(tmp_path) -> None:
    out = tmp_path / "snapshot.json"
    publisher = FileProgressPublisher(out)
    publisher.publish(_snapshot(1.0, 1))
    publisher.close()
    publisher.publish(_snapshot(2.0, 2))
    publisher.close()

    assert json.loads(out.read_text(encoding="utf-8"))["succeeded"] == 1


def test_write_failure_disables_publisher(tmp_path) -> None:
    out = tmp_path / "snapshot.json"
    out.mkdir()
    publisher = FileProgressPublisher(out)

    publisher.publish(_snapshot(1.0, 1))
    publisher.close()

    assert isinstance(publisher.error, OSError)
    assert publisher.writes == 0
    publisher.publish(_snapshot(2.0, 2))
    assert list(tmp_path.glob(".*.tmp")) == []
