from __future__ import annotations

from datetime import UTC, datetime, timedelta

from sqlalchemy import select

from clips.sweep import expire_clips, select_expired
from db.models import Video

NOW = datetime(2025, 3, 10, 3, 0, tzinfo=UTC)


def _seed(session_factory, client_id, venue_id, expires: list[datetime | None]) -> list[str]:
    paths = []
    with session_factory() as session:
        for index, expires_at in enumerate(expires):
            path = f"temp/{client_id}/{venue_id}/clip-{index}.mp4"
            session.add(
                Video(
                    clip_id=f"clip-{index}",
                    client_id=client_id,
                    venue_id=venue_id,
                    contract="per_video",
                    status="uploaded_temp",
                    storage_path=path,
                    captured_at=NOW - timedelta(days=10),
                    expires_at=expires_at,
                )
            )
            paths.append(path)
        session.commit()
    return paths


def _rows(session_factory) -> dict[str, Video]:
    with session_factory() as session:
        return {video.clip_id: video for video in session.execute(select(Video)).scalars()}


def test_sweep_converges_across_failed_deletes(session_factory, store, make_venue) -> None:
    client_id, venue_id = make_venue()
    paths = _seed(session_factory, client_id, venue_id, [NOW - timedelta(hours=i + 1) for i in range(6)])
    for path in paths:
        store.put(path, 10)
    failing = {path for index, path in enumerate(paths) if index % 2 == 1}
    store.fail_delete.update(failing)

    first = expire_clips(session_factory, store, batch_size=50, now=NOW)

    assert first.selected == 6
    assert first.expired == 3
    assert first.failed == 3
    assert sorted(first.failed_clip_ids) == ["clip-1", "clip-3", "clip-5"]
    rows = _rows(session_factory)
    for index in range(6):
        video = rows[f"clip-{index}"]
        if index % 2 == 0:
            assert video.status == "expired"
            assert video.storage_path is None
            assert video.deleted_at is not None
        else:
            assert video.status == "uploaded_temp"
            assert video.storage_path == paths[index]

    store.fail_delete.clear()
    second = expire_clips(session_factory, store, batch_size=50, now=NOW)

    assert second.selected == 3
    assert second.expired == 3
    assert second.failed == 0
    assert all(video.status == "expired" for video in _rows(session_factory).values())
    assert store.objects == {}


def test_sweep_treats_missing_object_as_reclaimed(session_factory, store, make_venue) -> None:
    client_id, venue_id = make_venue()
    _seed(session_factory, client_id, venue_id, [NOW - timedelta(days=1)])

    report = expire_clips(session_factory, store, now=NOW)

    assert report.expired == 1
    assert report.already_missing == 1
    video = _rows(session_factory)["clip-0"]
    assert video.status == "expired"
    assert video.storage_path is None


def test_sweep_skips_unexpired_and_unset_expiry(session_factory, store, make_venue) -> None:
    client_id, venue_id = make_venue()
    paths = _seed(
        session_factory,
        client_id,
        venue_id,
        [NOW + timedelta(minutes=1), None, NOW],
    )
    for path in paths:
        store.put(path, 1)

    report = expire_clips(session_factory, store, now=NOW)

    assert report.selected == 0
    assert store.deleted == []
    assert {video.status for video in _rows(session_factory).values()} == {"uploaded_temp"}


def test_select_expired_oldest_first_within_batch(session_factory, make_venue) -> None:
    client_id, venue_id = make_venue()
    _seed(
        session_factory,
        client_id,
        venue_id,
        [NOW - timedelta(days=1), NOW - timedelta(days=3), NOW - timedelta(days=2)],
    )

    with session_factory() as session:
        selected = select_expired(session, NOW, batch_size=2)
        assert [video.clip_id for video in selected] == ["clip-1", "clip-2"]


def test_sweep_does_not_reprocess_expired_clips(session_factory, store, make_venue) -> None:
    client_id, venue_id = make_venue()
    paths = _seed(session_factory, client_id, venue_id, [NOW - timedelta(days=1)])
    store.put(paths[0], 1)

    expire_clips(session_factory, store, now=NOW)
    again = expire_clips(session_factory, store, now=NOW + timedelta(days=1))

    assert again.selected == 0
    assert store.deleted == [paths[0]]


def test_sweep_report_as_dict(session_factory, store) -> None:
    report = expire_clips(session_factory, store, now=NOW)
    assert report.as_dict() == {
        "selected": 0,
        "expired": 0,
        "already_missing": 0,
        "failed": 0,
        "failed_clip_ids": [],
    }
